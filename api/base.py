"""Response envelope shared by every endpoint, and the generic error codes."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import JSONResponse

from utils.timezone import now_utc


class APIError(BaseModel):
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")


class APIMeta(BaseModel):
    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Same value as the X-Request-ID header")


class APIResponse(BaseModel):
    """
    Envelope for all API responses.

    Relying sites and the login UI branch on `success`, then read either
    `data` or `error.code`.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def request_id_of(request: Request | None) -> str:
    """The id RequestIDMiddleware assigned, or a fresh one outside a request."""
    if request is not None:
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            return request_id
    return str(uuid4())


def _meta(request_id: str | None) -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=request_id or str(uuid4()))


def success_response(data: Any, request_id: str | None = None) -> APIResponse:
    return APIResponse(success=True, data=data, meta=_meta(request_id))


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    return APIResponse(
        success=False,
        error=APIError(code=code, message=message),
        meta=_meta(request_id),
    )


def json_error(
    request: Request | None,
    status_code: int,
    code: str,
    message: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Error envelope as a ready-to-send response."""
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(code, message, request_id_of(request)).model_dump(mode="json"),
    )


class ErrorCodes:
    """
    Error codes not tied to an AuthError subclass.

    Domain failures carry their own code (AuthError.error_code); these cover
    the middleware and the generic handlers.
    """

    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
