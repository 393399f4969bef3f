"""Request dependencies -- current user, progress bus and scan task registry."""

from uuid import UUID

import jwt as pyjwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from diffguard.auth import decode_token
from diffguard.errors import AuthError
from diffguard.progress_bus import ProgressBroadcaster
from diffguard.repos.user_repo import get_user_by_id
from diffguard.services.scan.registry import ScanTaskRegistry

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> dict:
    """Resolve the bearer token to a user row; 401 on any problem."""
    if credentials is None:
        raise AuthError("Missing authentication token")

    try:
        payload = decode_token(credentials.credentials)
    except pyjwt.ExpiredSignatureError:
        raise AuthError("Token has expired")
    except pyjwt.PyJWTError:
        raise AuthError("Invalid authentication token")

    try:
        user_id = UUID(payload.get("sub") or "")
    except ValueError:
        raise AuthError("Invalid token payload")

    user = await get_user_by_id(user_id)
    if user is None:
        raise AuthError("User not found")
    return user


def get_progress_bus(request: Request) -> ProgressBroadcaster:
    return request.app.state.progress_bus


def get_scan_registry(request: Request) -> ScanTaskRegistry:
    return request.app.state.scan_registry
