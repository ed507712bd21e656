"""Cross-origin handoff: init -> authenticate -> redeem.

A relying site starts a login attempt and gets back a request id bound to
its origin (the frozen origin). Once the user proves who they are, the
request is marked authenticated and a short-lived claim token is minted.
The relying site's callback trades request id + claim token for the user's
identity exactly once, and only from the frozen origin.

    waiting --authenticate--> authenticated --redeem--> claimed
       |                           |
       +---------- expiry ---------+--> treated as absent, purged later

Each transition is one conditional write in AuthDatabase; reads are only
used to pick the outcome or explain a failure.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import urlencode, urlsplit
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import (
    AlreadyClaimedError,
    AuthError,
    ClaimExpiredError,
    InvalidClaimError,
    InvalidInputError,
    InvalidOrExpiredRequestError,
    OriginMismatchError,
)
from auth.security_logger import SecurityEvent, SecurityLogger, log_quietly
from auth.tokens import TokenService
from auth.types import AuthRequest, AuthRequestStatus
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

PROFILE_PATH = "/profile"


@dataclass
class AuthenticationOutcome:
    """Where to send the browser after a request is authenticated.

    direct=True means the login started on the identity service itself: the
    request was consumed and there is no claim token to redeem.
    """

    redirect_url: str
    frozen_origin: str
    direct: bool
    claim_token: str | None = None
    claim_token_expires_at: datetime | None = None


def validate_origin(origin: str | None) -> str:
    """Check origin is a bare http(s) origin and return it unchanged.

    Nothing is normalized. The stored origin is compared byte for byte at
    redeem time, so a trailing slash or path is refused, not stripped.

    Raises:
        InvalidInputError: Empty, unparseable, or carries path/query/credentials.
    """
    if not origin or not origin.strip():
        raise InvalidInputError("Origin is required")
    if origin != origin.strip():
        raise InvalidInputError("Origin must not contain surrounding whitespace")

    try:
        parts = urlsplit(origin)
        parts.port  # raises ValueError on a bad port
    except ValueError:
        raise InvalidInputError("Origin is not a valid URL")

    if parts.scheme not in ("http", "https"):
        raise InvalidInputError("Origin must start with http:// or https://")
    if not parts.hostname:
        raise InvalidInputError("Origin has no host")
    if parts.username is not None or parts.password is not None:
        raise InvalidInputError("Origin must not contain credentials")
    if parts.path or parts.query or parts.fragment:
        raise InvalidInputError(
            "Origin must be scheme://host[:port] with no path, query or trailing slash "
            "(send window.location.origin)"
        )

    return origin


class AuthRequestBroker:
    """Owns the auth request state machine."""

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        tokens: TokenService,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._auth_db = auth_db
        self._tokens = tokens
        self._security_logger = security_logger

    def init(self, frozen_origin: str | None, ip_address: str | None = None) -> AuthRequest:
        """Start a login attempt for a relying site.

        The origin is stored verbatim; it is never re-derived from later
        requests.

        Raises:
            InvalidInputError: Origin empty, malformed, or not on the allow-list.
        """
        origin = validate_origin(frozen_origin)
        if self._config.allowed_origins and origin not in self._config.allowed_origins:
            raise InvalidInputError("Origin is not registered")

        now = now_utc()
        request = AuthRequest(
            request_id=self._tokens.generate_request_id(),
            frozen_origin=origin,
            status=AuthRequestStatus.WAITING,
            created_at=now,
            expires_at=self._tokens.auth_request_expiry(now),
        )
        self._auth_db.insert_auth_request(request)

        self._security_logger.log(
            SecurityEvent.AUTH_REQUEST_CREATED,
            ip_address=ip_address,
            details={"origin": origin},
        )
        return request

    def require_waiting(self, request_id: str) -> AuthRequest:
        """Raises InvalidOrExpiredRequestError unless the request is waiting and unexpired."""
        request = self._auth_db.get_waiting_auth_request(request_id, now_utc())
        if request is None:
            raise InvalidOrExpiredRequestError("Invalid or expired session")
        return request

    def authenticate(
        self,
        request_id: str,
        user_id: UUID,
        ip_address: str | None = None,
    ) -> AuthenticationOutcome:
        """Bind a verified user to a waiting request.

        If the request was started from the identity service's own origin it
        is consumed here and the outcome is a direct redirect. Otherwise a
        claim token is minted and the outcome points at the relying site's
        callback.

        Raises:
            InvalidOrExpiredRequestError: Request not waiting, expired, or
                consumed concurrently.
        """
        now = now_utc()
        pending = self._auth_db.get_waiting_auth_request(request_id, now)
        if pending is None:
            raise InvalidOrExpiredRequestError("Invalid or expired session")

        if pending.frozen_origin == self._config.service_origin:
            if self._auth_db.delete_waiting_auth_request(request_id, now) is None:
                raise InvalidOrExpiredRequestError("Invalid or expired session")

            log_quietly(
                self._security_logger,
                SecurityEvent.AUTH_REQUEST_DIRECT,
                user_id=user_id,
                ip_address=ip_address,
            )
            return AuthenticationOutcome(
                redirect_url=f"{self._config.service_origin}{PROFILE_PATH}",
                frozen_origin=pending.frozen_origin,
                direct=True,
            )

        claim_token = self._tokens.generate_claim_token()
        claim_expires_at = self._tokens.claim_token_expiry(now)
        updated = self._auth_db.mark_authenticated(
            request_id, user_id, claim_token, claim_expires_at, now
        )
        if updated is None:
            raise InvalidOrExpiredRequestError("Invalid or expired session")

        log_quietly(
            self._security_logger,
            SecurityEvent.AUTH_REQUEST_AUTHENTICATED,
            user_id=user_id,
            ip_address=ip_address,
            details={"origin": updated.frozen_origin},
        )
        return AuthenticationOutcome(
            redirect_url=self.callback_url(updated.frozen_origin, request_id, claim_token),
            frozen_origin=updated.frozen_origin,
            direct=False,
            claim_token=claim_token,
            claim_token_expires_at=claim_expires_at,
        )

    def callback_url(self, frozen_origin: str, request_id: str, claim_token: str) -> str:
        query = urlencode({"request_id": request_id, "claim": claim_token})
        return f"{frozen_origin}{self._config.auth_callback_path}?{query}"

    def redeem(
        self,
        request_id: str,
        claim_token: str,
        caller_origin: str | None = None,
        ip_address: str | None = None,
    ) -> UUID:
        """Trade a claim token for the authenticated user id. Succeeds at most once.

        Raises:
            InvalidInputError: Missing request id or claim token.
            InvalidOrExpiredRequestError: Unknown or expired request.
            OriginMismatchError: caller_origin differs from the frozen origin.
            AlreadyClaimedError: Redeemed before (including by a concurrent caller).
            InvalidClaimError: Wrong token, or request not authenticated yet.
            ClaimExpiredError: Claim token past its own expiry.
        """
        if not request_id or not claim_token:
            raise InvalidInputError("Request ID and claim token are required")

        now = now_utc()
        claimed = self._auth_db.mark_claimed(request_id, claim_token, now, origin=caller_origin)

        if claimed is None:
            error = self._explain_failed_claim(request_id, claim_token, caller_origin, now)
            event = (
                SecurityEvent.ORIGIN_MISMATCH
                if isinstance(error, OriginMismatchError)
                else SecurityEvent.CLAIM_REJECTED
            )
            self._security_logger.log(
                event,
                ip_address=ip_address,
                details={"reason": error.error_code, "origin": caller_origin},
            )
            raise error

        log_quietly(
            self._security_logger,
            SecurityEvent.CLAIM_REDEEMED,
            user_id=claimed.user_id,
            ip_address=ip_address,
            details={"origin": claimed.frozen_origin},
        )

        if self._config.opportunistic_sweep:
            self._sweep_quietly(now)

        return claimed.user_id

    def _explain_failed_claim(
        self,
        request_id: str,
        claim_token: str,
        caller_origin: str | None,
        now: datetime,
    ) -> AuthError:
        request = self._auth_db.get_auth_request(request_id)

        if request is None or request.is_expired(now):
            return InvalidOrExpiredRequestError("Invalid or expired claim")
        if request.status is AuthRequestStatus.CLAIMED:
            return AlreadyClaimedError("Claim has already been redeemed")
        if caller_origin is not None and caller_origin != request.frozen_origin:
            return OriginMismatchError("Origin mismatch")
        if request.status is not AuthRequestStatus.AUTHENTICATED or not hmac.compare_digest(
            (request.claim_token or "").encode(), claim_token.encode()
        ):
            return InvalidClaimError("Invalid or expired claim")
        if request.claim_token_expires_at is None or request.claim_token_expires_at <= now:
            return ClaimExpiredError("Claim token expired")

        # Every condition holds on re-read: a concurrent redeem won the race
        # between our write and this read.
        return AlreadyClaimedError("Claim has already been redeemed")

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired requests and claimed tombstones past expiry."""
        return self._auth_db.purge_expired_auth_requests(now or now_utc())

    def _sweep_quietly(self, now: datetime) -> None:
        try:
            purged = self.purge_expired(now)
        except Exception:
            logger.exception("Opportunistic auth request purge failed")
            return
        if purged:
            logger.info(f"Purged {purged} expired auth requests")
