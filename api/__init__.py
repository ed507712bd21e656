"""HTTP layer: app factory, response envelope, middleware and error handlers."""

from api.base import (
    APIError,
    APIMeta,
    APIResponse,
    ErrorCodes,
    error_response,
    json_error,
    request_id_of,
    success_response,
)
