"""
shared/utils/exceptions.py
Application error taxonomy and the handlers that turn it into the
`{"success": false, "message": ...}` response shape.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An internal server error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        headers: Optional[dict[str, str]] = None,
        **extra: Any,
    ):
        self.message = message or self.default_message
        self.headers = headers
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        return {"success": False, "message": self.message, **self.extra}


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The request data failed validation"


class ConflictError(AppError):
    """Duplicate resource or an operation that is already done."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Resource already exists"


class InvalidTransitionError(AppError):
    """Requested status change is not an edge of the state machine."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid status transition"


class AuthenticationError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, **extra: Any):
        if code:
            extra["code"] = code
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions to access this resource"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class RateLimitError(AppError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None, **extra: Any):
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        super().__init__(message, headers=headers, **extra)


class ServiceUnavailableError(AppError):
    """A required external call (email, storage) failed."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An external service failed. Please try again."


class FeatureDisabledError(AppError):
    status_code = status.HTTP_501_NOT_IMPLEMENTED
    default_message = "This feature is not configured"


# ── Handlers ──────────────────────────────────────────────────

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg")})

    first = errors[0] if errors else None
    if first and first["field"]:
        message = f"Invalid value for '{first['field']}': {first['message']}"
    elif first:
        message = first["message"]
    else:
        message = "The request data failed validation"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": message, "errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all. Never expose exception text outside debug mode."""
    request_id = getattr(request.state, "request_id", None)
    logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=exc)

    message = str(exc) if settings.DEBUG else "An internal server error occurred"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": message, "requestId": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
