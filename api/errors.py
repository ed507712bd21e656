"""Exception handlers that turn failures into the error envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from auth.exceptions import AuthError, RateLimitedError
from api.base import json_error, ErrorCodes

logger = logging.getLogger(__name__)


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code} on {request.url.path}: {exc}")
        return json_error(request, exc.status_code, exc.error_code, str(exc), headers=headers)

    # Body validation failures are 400 here, not FastAPI's default 422
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return json_error(
            request, 400, ErrorCodes.VALIDATION_ERROR, _describe_validation_errors(exc)
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return json_error(request, 400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.url.path}")
        return json_error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
