"""HTTP routes for authentication and profiles.

Bodies and responses are camelCase. AuthError subclasses raised by the
service are rendered by the handlers in api/errors.py.
"""

import ipaddress

from fastapi import APIRouter, Request, Response

from auth.exceptions import NotAuthenticatedError
from auth.service import AuthService
from auth.session import SessionIssuer
from auth.types import (
    AuthenticateRequest,
    CompleteProfileRequest,
    CredentialsRequest,
    EmailRequest,
    InitRequest,
    IssuedSession,
    SendOtpRequest,
    SessionClaims,
    UpdateProfileRequest,
    User,
    UserProfile,
    VerifyClaimRequest,
    VerifyOtpRequest,
)
from api.base import request_id_of, success_response


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _require_claims(request: Request) -> SessionClaims:
    """Session claims set by AuthMiddleware."""
    claims = getattr(request.state, "session_claims", None)
    if claims is None:
        raise NotAuthenticatedError("Authentication required")
    return claims


def _ok(request: Request, data):
    return success_response(data, request_id_of(request))


def _profile_json(user: User) -> dict:
    return UserProfile.from_user(user).model_dump(by_alias=True, mode="json")


def _set_session_cookie(response: Response, session_issuer: SessionIssuer, session: IssuedSession) -> None:
    response.set_cookie(
        key=session_issuer.cookie_name,
        value=session.token,
        **session_issuer.cookie_options(),
    )


def create_auth_router(auth_service: AuthService, session_issuer: SessionIssuer) -> APIRouter:
    """Create auth router with injected service."""
    router = APIRouter(tags=["auth"])

    @router.post("/init")
    def init(request: Request, body: InitRequest):
        """Start a login attempt for the relying site at frozenOrigin."""
        auth_request = auth_service.start_request(
            body.frozen_origin,
            ip_address=_get_client_ip(request),
        )
        return _ok(request, {
            "requestId": auth_request.request_id,
            "frozenOrigin": auth_request.frozen_origin,
        })

    @router.post("/check-user")
    def check_user(request: Request, body: EmailRequest):
        status = auth_service.check_user(body.email)
        return _ok(request, {
            "isNewUser": status.is_new_user,
            "hasPasswordAuth": status.has_password_auth,
            "profileCompleted": status.profile_completed,
        })

    @router.post("/send-otp")
    def send_otp(request: Request, body: SendOtpRequest):
        """Email a one-time code.

        Rate limited per email; 429 responses carry Retry-After.
        """
        result = auth_service.send_otp(
            body.email,
            request_id=body.request_id,
            otp_type=body.type,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _ok(request, {
            "isNewUser": result.is_new_user,
            "hasPasswordAuth": result.has_password_auth,
        })

    @router.post("/verify-otp")
    def verify_otp(request: Request, response: Response, body: VerifyOtpRequest):
        """Check a one-time code. Creates the account on first login.

        Sets the session cookie on success.
        """
        result = auth_service.verify_otp(
            body.email,
            body.otp,
            otp_type=body.type,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        _set_session_cookie(response, session_issuer, result.session)
        return _ok(request, {
            "userId": str(result.user_id),
            "isNewUser": result.is_new_user,
            "profileCompleted": result.profile_completed,
        })

    @router.put("/credentials")
    def verify_credentials(request: Request, response: Response, body: CredentialsRequest):
        """Check email + password. Sets the session cookie on success."""
        result = auth_service.verify_password(
            body.email,
            body.password,
            request_id=body.request_id,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        _set_session_cookie(response, session_issuer, result.session)
        return _ok(request, {
            "userId": str(result.user_id),
            "profileCompleted": result.profile_completed,
        })

    @router.post("/authenticate")
    def authenticate(request: Request, response: Response, body: AuthenticateRequest):
        """Bind the signed-in user to the login attempt.

        Returns the URL the browser should go to next: the relying site's
        callback carrying the claim token, or the profile page when the
        attempt started on this service.
        """
        result = auth_service.authenticate(
            body.request_id,
            _require_claims(request),
            user_id=body.user_id,
            ip_address=_get_client_ip(request),
        )
        _set_session_cookie(response, session_issuer, result.session)
        return _ok(request, {"redirectUrl": result.outcome.redirect_url})

    @router.post("/verify-claim")
    def verify_claim(request: Request, body: VerifyClaimRequest):
        """Redeem a claim token. Called by the relying site's callback.

        The returned session token is for the relying site to set as its own
        cookie.
        """
        result = auth_service.verify_claim(
            body.request_id,
            body.claim_token,
            origin=body.origin or request.headers.get("Origin"),
            ip_address=_get_client_ip(request),
        )
        return _ok(request, {
            "profile": _profile_json(result.user),
            "sessionToken": result.session.token,
            "sessionCookieName": session_issuer.cookie_name,
            "sessionDurationMs": session_issuer.max_age_seconds * 1000,
        })

    @router.post("/complete-profile")
    def complete_profile(request: Request, body: CompleteProfileRequest):
        user = auth_service.complete_profile(
            _require_claims(request),
            body.username,
            roll_number=body.roll_number,
            batch=body.batch,
            branch=body.branch,
            password=body.password,
            user_id=body.user_id,
        )
        return _ok(request, {"profile": _profile_json(user)})

    @router.get("/session")
    def get_session(request: Request):
        """Current signed-in user."""
        user = auth_service.current_user(_require_claims(request))
        return _ok(request, {
            "authenticated": True,
            "user": _profile_json(user),
        })

    @router.post("/logout")
    def logout(request: Request, response: Response):
        """Logout - revoke session and clear cookie."""
        auth_service.logout(
            request.cookies.get(session_issuer.cookie_name),
            ip_address=_get_client_ip(request),
        )

        options = session_issuer.cookie_options()
        response.delete_cookie(
            key=session_issuer.cookie_name,
            path=options["path"],
            secure=options["secure"],
            httponly=options["httponly"],
            samesite=options["samesite"],
        )

        return _ok(request, {"message": "Logged out successfully"})

    return router


def create_profile_router(auth_service: AuthService) -> APIRouter:
    """Create profile router (session required on every route)."""
    router = APIRouter(tags=["profile"])

    @router.get("")
    def get_profile(request: Request):
        user = auth_service.current_user(_require_claims(request))
        return _ok(request, _profile_json(user))

    @router.put("")
    def update_profile(request: Request, body: UpdateProfileRequest):
        user = auth_service.update_profile(
            _require_claims(request),
            body.username,
            roll_number=body.roll_number,
            batch=body.batch,
            branch=body.branch,
            new_password=body.new_password,
        )
        return _ok(request, _profile_json(user))

    return router
