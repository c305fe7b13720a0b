"""
Global Exception Handlers

Every second-factor error reaches the client in the same envelope:

{
    "error": {
        "status_code": 423,
        "error_code": "ACCOUNT_LOCKED",
        "message": "Too many failed attempts. Please try again in 15 minute(s).",
        "type": "Locked",
        "details": {"remaining_seconds": 900},
        "path": "/api/v1/2fa/challenge/abc/code"
    }
}
"""

import logging
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from twofactor.exceptions import AccountLockedError, ResendCooldownError, TwoFactorError

logger = logging.getLogger(__name__)


def create_error_response(
    status_code: int,
    message: str,
    error_code: str | None = None,
    details: dict[str, Any] | None = None,
    path: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error_response: dict[str, Any] = {
        "error": {
            "status_code": status_code,
            "message": message,
            "type": get_error_type(status_code),
        }
    }

    if error_code:
        error_response["error"]["error_code"] = error_code

    if details:
        error_response["error"]["details"] = details

    if path:
        error_response["error"]["path"] = path

    return JSONResponse(status_code=status_code, content=error_response, headers=headers)


def get_error_type(status_code: int) -> str:
    """Get a human-readable error type based on status code."""
    error_types = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        409: "Conflict",
        422: "Validation Error",
        423: "Locked",
        429: "Too Many Requests",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return error_types.get(status_code, "Error")


async def two_factor_exception_handler(request: Request, exc: TwoFactorError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message} on {request.url.path}")
    else:
        logger.warning(f"{exc.error_code}: {exc.message} on {request.url.path}")

    headers = None
    if isinstance(exc, AccountLockedError):
        headers = {"Retry-After": str(exc.remaining_seconds)}
    elif isinstance(exc, ResendCooldownError):
        headers = {"Retry-After": str(exc.retry_after)}

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details or None,
        path=request.url.path,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning(f"HTTPException: {exc.detail} on {request.url.path}")
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        path=request.url.path,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({"field": field, "message": error["msg"], "type": error["type"]})

    logger.warning(f"Validation error on {request.url.path}")

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_FAILED",
        details={"validation_errors": errors},
        path=request.url.path,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)

    # Don't expose internal error details
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_ERROR",
        path=request.url.path,
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(TwoFactorError, two_factor_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
