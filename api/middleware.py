"""Request-scoped middleware for API requests."""

import logging
import re
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Inbound ids are echoed into logs and headers, so keep them short and plain
_INBOUND_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id for tracing across the relying site and us.

    A well-formed X-Request-ID from the caller is kept; anything else gets a
    fresh UUID.
    """

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(REQUEST_ID_HEADER)
        if inbound and _INBOUND_ID_PATTERN.match(inbound):
            request_id = inbound
        else:
            request_id = str(uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"({elapsed_ms:.1f}ms) request_id={request_id}"
        )
        return response
