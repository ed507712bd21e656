"""Authentication service - orchestrates the cross-origin login flow.

Routes call this; it strings together the verifier, the broker, the
session issuer and the profile service, and issues a session for the
identity service's own domain after each successful verification step.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from auth.broker import AuthenticationOutcome, AuthRequestBroker
from auth.exceptions import (
    AuthError,
    NotAuthenticatedError,
    SessionRevokedError,
    UserNotFoundError,
)
from auth.profile import ProfileService
from auth.security_logger import SecurityEvent, SecurityLogger, log_quietly
from auth.session import SessionDenylist, SessionIssuer
from auth.types import AuthRequest, IssuedSession, OtpType, SessionClaims, User
from auth.verifier import CredentialVerifier, OtpIssueResult, UserStatus

logger = logging.getLogger(__name__)


@dataclass
class SignInResult:
    """A verified user plus the identity-service session minted for them."""

    user_id: UUID
    email: str
    is_new_user: bool
    profile_completed: bool
    session: IssuedSession


@dataclass
class AuthenticationResult:
    outcome: AuthenticationOutcome
    session: IssuedSession


@dataclass
class ClaimResult:
    """What a relying site gets for a redeemed claim token."""

    user: User
    session: IssuedSession


class AuthService:
    """Orchestrates the login handoff.

    Handles:
    - Starting a login attempt for a relying site
    - Password and one-time code verification
    - Binding the verified user to the attempt and redeeming the claim
    - Session validation, profile completion and logout
    """

    def __init__(
        self,
        broker: AuthRequestBroker,
        verifier: CredentialVerifier,
        session_issuer: SessionIssuer,
        profile_service: ProfileService,
        security_logger: SecurityLogger,
        denylist: SessionDenylist | None = None,
    ):
        self._broker = broker
        self._verifier = verifier
        self._session_issuer = session_issuer
        self._profile_service = profile_service
        self._security_logger = security_logger
        self._denylist = denylist

    def _issue_session(
        self,
        user_id: UUID,
        email: str,
        ip_address: str | None,
        audience: str,
    ) -> IssuedSession:
        session = self._session_issuer.issue_session(user_id, email)
        log_quietly(
            self._security_logger,
            SecurityEvent.SESSION_CREATED,
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            details={"audience": audience, "jti": session.claims.jti},
        )
        return session

    def start_request(self, frozen_origin: str | None, ip_address: str | None = None) -> AuthRequest:
        return self._broker.init(frozen_origin, ip_address=ip_address)

    def check_user(self, email: str | None) -> UserStatus:
        return self._verifier.check_user(email)

    def send_otp(
        self,
        email: str | None,
        request_id: str | None = None,
        otp_type: OtpType = OtpType.LOGIN,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> OtpIssueResult:
        return self._verifier.issue_otp(
            email,
            request_id=request_id,
            otp_type=otp_type,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def verify_otp(
        self,
        email: str | None,
        otp: str | None,
        otp_type: OtpType = OtpType.LOGIN,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SignInResult:
        verified = self._verifier.verify_otp(
            email, otp, otp_type=otp_type, ip_address=ip_address, user_agent=user_agent
        )
        return SignInResult(
            user_id=verified.user_id,
            email=verified.email,
            is_new_user=verified.is_new_user,
            profile_completed=verified.profile_completed,
            session=self._issue_session(verified.user_id, verified.email, ip_address, "service"),
        )

    def verify_password(
        self,
        email: str | None,
        password: str | None,
        request_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SignInResult:
        verified = self._verifier.verify_password(
            email, password, request_id=request_id, ip_address=ip_address, user_agent=user_agent
        )
        return SignInResult(
            user_id=verified.user_id,
            email=verified.email,
            is_new_user=False,
            profile_completed=verified.profile_completed,
            session=self._issue_session(verified.user_id, verified.email, ip_address, "service"),
        )

    def authenticate(
        self,
        request_id: str,
        claims: SessionClaims,
        user_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> AuthenticationResult:
        """Bind the signed-in user to a waiting request.

        The user comes from the identity-service session; a userId in the
        body is only accepted when it names the same user.

        Raises:
            NotAuthenticatedError: user_id differs from the session's user.
            UserNotFoundError: The session's user no longer exists.
            InvalidOrExpiredRequestError: Request not waiting.
        """
        if user_id is not None and user_id != claims.user_id:
            raise NotAuthenticatedError("Session does not belong to this user")

        user = self._profile_service.get_profile(claims.user_id)
        outcome = self._broker.authenticate(request_id, user.id, ip_address=ip_address)

        return AuthenticationResult(
            outcome=outcome,
            session=self._issue_session(user.id, user.email, ip_address, "service"),
        )

    def verify_claim(
        self,
        request_id: str,
        claim_token: str,
        origin: str | None = None,
        ip_address: str | None = None,
    ) -> ClaimResult:
        """Redeem a claim token and mint the relying site's session.

        Raises:
            InvalidOrExpiredRequestError (and subclasses), OriginMismatchError:
                See AuthRequestBroker.redeem.
            UserNotFoundError: The authenticated user no longer exists.
        """
        user_id = self._broker.redeem(
            request_id, claim_token, caller_origin=origin, ip_address=ip_address
        )

        user = self._profile_service.get_profile(user_id)
        return ClaimResult(
            user=user,
            session=self._issue_session(user.id, user.email, ip_address, origin or "relying_site"),
        )

    def validate_session(self, token: str | None) -> SessionClaims:
        """Verify a session token and check it hasn't been revoked.

        Raises:
            SessionExpiredError: Invalid or expired token.
            SessionRevokedError: Token was logged out.
        """
        claims = self._session_issuer.verify_session(token)
        if self._denylist is not None and self._denylist.is_revoked(claims.jti):
            raise SessionRevokedError("Session has been revoked")
        return claims

    def current_user(self, claims: SessionClaims) -> User:
        try:
            return self._profile_service.get_profile(claims.user_id)
        except UserNotFoundError:
            raise NotAuthenticatedError("Not authenticated")

    def complete_profile(
        self,
        claims: SessionClaims,
        username: str | None,
        roll_number: str | None = None,
        batch: str | None = None,
        branch: str | None = None,
        password: str | None = None,
        user_id: UUID | None = None,
    ) -> User:
        if user_id is not None and user_id != claims.user_id:
            raise NotAuthenticatedError("Session does not belong to this user")
        return self._profile_service.complete_profile(
            claims.user_id, username, roll_number, batch, branch, password=password
        )

    def update_profile(
        self,
        claims: SessionClaims,
        username: str | None,
        roll_number: str | None = None,
        batch: str | None = None,
        branch: str | None = None,
        new_password: str | None = None,
    ) -> User:
        return self._profile_service.update_profile(
            claims.user_id, username, roll_number, batch, branch, new_password=new_password
        )

    def logout(self, session_token: str | None, ip_address: str | None = None) -> None:
        """Revoke the session (logout).

        Safe to call with a missing or invalid token.
        """
        try:
            claims = self.validate_session(session_token)
        except AuthError:
            return

        if self._denylist is not None:
            self._denylist.revoke(claims)

        log_quietly(
            self._security_logger,
            SecurityEvent.SESSION_REVOKED,
            email=claims.email,
            user_id=claims.user_id,
            ip_address=ip_address,
            details={"jti": claims.jti},
        )
