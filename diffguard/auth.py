"""JWT helpers -- session tokens are issued elsewhere; DiffGuard verifies them."""

from datetime import datetime, timedelta, timezone

import jwt

from diffguard.config import settings

ALGORITHM = "HS256"
TOKEN_EXPIRY_HOURS = 24
_JWT_AUD = "diffguard"
_JWT_ISS = "diffguard"


def create_token(user_id: str, email: str | None = None) -> str:
    """Create a session token for *user_id* (used by the auth service and tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": _JWT_AUD,
        "iss": _JWT_ISS,
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a session token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[ALGORITHM],
        audience=_JWT_AUD,
        issuer=_JWT_ISS,
        options={"require": ["exp", "iat", "sub", "aud", "iss"]},
    )
