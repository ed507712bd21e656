"""Security middleware for FastAPI - session cookie validation."""

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from auth.exceptions import SessionExpiredError
from auth.service import AuthService
from api.base import json_error, ErrorCodes


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the session cookie on protected routes.

    For protected routes:
    1. Extracts the session token from the session cookie
    2. Validates signature, expiry and revocation via AuthService, off the
       event loop since the revocation check is a blocking Valkey call
    3. Sets user_id and session_claims in request.state

    Public paths bypass authentication entirely. The login flow itself is
    public; only steps that act on an already signed-in user are protected.
    """

    PUBLIC_PATHS = [
        "/api/auth/init",
        "/api/auth/check-user",
        "/api/auth/send-otp",
        "/api/auth/verify-otp",
        "/api/auth/credentials",
        "/api/auth/verify-claim",
        "/api/auth/logout",
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, auth_service: AuthService, cookie_name: str):
        super().__init__(app)
        self._auth_service = auth_service
        self._cookie_name = cookie_name

    def _is_public_path(self, path: str) -> bool:
        return any(path == public or path.startswith(public + "/") for public in self.PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        session_token = request.cookies.get(self._cookie_name)
        if not session_token:
            return json_error(request, 401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            claims = await run_in_threadpool(self._auth_service.validate_session, session_token)
        except SessionExpiredError as e:
            return json_error(request, 401, e.error_code, str(e))

        request.state.user_id = claims.user_id
        request.state.session_claims = claims

        return await call_next(request)
