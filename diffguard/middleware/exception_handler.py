"""Global exception handlers.

Every error leaves the API in the same JSON shape
(``{"error", "detail", "request_id"}``).  Unexpected exceptions are logged
with their traceback server-side and reported to the client as a bare 500.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from diffguard.errors import DiffGuardError, format_error_response

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """Request ID set by ``RequestIDMiddleware`` (fresh UUID when it did not run)."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_response(request: Request, status_code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=error, detail=detail, request_id=_get_request_id(request),
        ),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all -- 500 without leaking the traceback."""
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method, request.url.path, _get_request_id(request),
        exc_info=exc,
    )
    return _error_response(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error", "Internal server error",
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """``HTTPException`` keeps its status code."""
    logger.warning(
        "HTTP %s on %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail,
    )
    detail = str(exc.detail) if exc.detail else None
    return _error_response(request, exc.status_code, detail or "Error", detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation errors -- 422 with the error list as detail."""
    errors = exc.errors()
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, errors)
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors,
    )


async def diffguard_error_handler(request: Request, exc: DiffGuardError) -> JSONResponse:
    """Domain errors map to their own status code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return _error_response(request, exc.status_code, str(exc), str(exc))


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Plain ``ValueError`` -- 404 when it says "not found", else 400."""
    detail = str(exc)
    if "not found" in detail.lower():
        return _error_response(request, 404, "Not Found", detail)
    return _error_response(request, 400, "Bad Request", detail)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register every handler on *app* (call before including routers)."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DiffGuardError, diffguard_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, value_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
