"""Credential verification: account lookup, passwords and one-time codes.

Nothing here touches auth request state beyond checking that an optional
request id still names a waiting request. Binding a verified user to a
request is the broker's job.
"""

import logging
import re
from dataclasses import dataclass
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import (
    DeliveryFailedError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidOrExpiredCodeError,
    InvalidOrExpiredSessionError,
    RateLimitedError,
)
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter, RateLimitScope
from auth.security_logger import SecurityEvent, SecurityLogger, log_quietly
from auth.tokens import TokenService
from auth.types import OTPRecord, OtpType
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_LOCAL_PART = r"[A-Za-z0-9._%+-]+"


def normalize_email(email: str | None, allowed_domains: list[str]) -> str:
    """Lowercase and check email is on one of the institutional domains.

    Raises:
        InvalidInputError: Empty, malformed, or on another domain.
    """
    if not email:
        raise InvalidInputError("Invalid email format")

    normalized = email.strip().lower()
    domains = "|".join(re.escape(domain.lower()) for domain in allowed_domains)
    if not re.fullmatch(rf"{_LOCAL_PART}@(?:{domains})", normalized):
        raise InvalidInputError("Invalid email format")
    return normalized


@dataclass
class UserStatus:
    is_new_user: bool
    has_password_auth: bool
    profile_completed: bool


@dataclass
class PasswordVerification:
    user_id: UUID
    email: str
    profile_completed: bool


@dataclass
class OtpIssueResult:
    is_new_user: bool
    has_password_auth: bool


@dataclass
class OtpVerification:
    user_id: UUID
    email: str
    is_new_user: bool
    profile_completed: bool


class CredentialVerifier:
    """Proves a person controls an email address, by password or by code."""

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        tokens: TokenService,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        password_hasher: PasswordHasher,
    ):
        self._config = config
        self._auth_db = auth_db
        self._tokens = tokens
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._password_hasher = password_hasher

    def _normalize(self, email: str | None) -> str:
        return normalize_email(email, self._config.allowed_email_domains)

    def _require_waiting_request(self, request_id: str | None) -> None:
        if request_id is None:
            return
        if self._auth_db.get_waiting_auth_request(request_id, now_utc()) is None:
            raise InvalidOrExpiredSessionError("Invalid or expired session")

    def _check_rate_limit(self, scope: RateLimitScope, email: str, ip_address: str | None) -> None:
        try:
            self._rate_limiter.check_rate_limit(scope, email)
        except RateLimitedError as e:
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                details={"scope": scope.value, "retry_after": e.retry_after_seconds},
            )
            raise

    def check_user(self, email: str | None) -> UserStatus:
        """Report whether email has an account and how it can sign in.

        Existence is revealed on purpose: the login UI branches on it.
        """
        email = self._normalize(email)
        user = self._auth_db.get_user_by_email(email)
        if user is None:
            return UserStatus(is_new_user=True, has_password_auth=False, profile_completed=False)
        return UserStatus(
            is_new_user=False,
            has_password_auth=user.has_password_auth,
            profile_completed=user.profile_completed,
        )

    def verify_password(
        self,
        email: str | None,
        password: str | None,
        request_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> PasswordVerification:
        """Check email + password.

        Raises:
            InvalidInputError: Malformed email or empty password.
            InvalidOrExpiredSessionError: request_id given but not waiting.
            RateLimitedError: Too many password attempts for this email.
            InvalidCredentialsError: Unknown user, no password set, or wrong
                password. The three are indistinguishable.
        """
        email = self._normalize(email)
        if not password:
            raise InvalidInputError("Email and password are required")
        self._require_waiting_request(request_id)
        self._check_rate_limit(RateLimitScope.PASSWORD, email, ip_address)

        user = self._auth_db.get_user_by_email(email)
        stored_hash = user.password_hash if user is not None and user.has_password_auth else None

        if not self._password_hasher.verify(password, stored_hash):
            self._security_logger.log(
                SecurityEvent.PASSWORD_FAILED,
                email=email,
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCredentialsError("Invalid credentials")

        self._rate_limiter.reset_rate_limit(RateLimitScope.PASSWORD, email)
        if self._password_hasher.needs_rehash(stored_hash):
            self._upgrade_password_hash(user.id, password)
        self._security_logger.log(
            SecurityEvent.PASSWORD_VERIFIED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return PasswordVerification(
            user_id=user.id,
            email=user.email,
            profile_completed=user.profile_completed,
        )

    def _upgrade_password_hash(self, user_id: UUID, password: str) -> None:
        """Re-hash with the current argon2 parameters. The sign-in stands if this fails."""
        try:
            self._auth_db.update_profile(
                user_id, {}, password_hash=self._password_hasher.hash(password)
            )
            logger.info(f"Upgraded password hash for user {user_id}")
        except Exception:
            logger.exception(f"Could not upgrade password hash for user {user_id}")

    def issue_otp(
        self,
        email: str | None,
        request_id: str | None = None,
        otp_type: OtpType = OtpType.LOGIN,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> OtpIssueResult:
        """Store a fresh code for email and hand it to the email gateway.

        Raises:
            InvalidInputError: Malformed or non-institutional email.
            InvalidOrExpiredSessionError: request_id given but not waiting.
            RateLimitedError: Too many sends for this email.
            DeliveryFailedError: Gateway refused. The stored code stays valid.
        """
        email = self._normalize(email)
        self._require_waiting_request(request_id)
        self._check_rate_limit(RateLimitScope.OTP_SEND, email, ip_address)

        user = self._auth_db.get_user_by_email(email)

        if self._config.invalidate_previous_otps:
            dropped = self._auth_db.delete_unused_otps(email, otp_type)
            if dropped:
                logger.debug(f"Invalidated {dropped} earlier {otp_type.value} codes for {email}")

        now = now_utc()
        code = self._tokens.generate_otp()
        self._auth_db.insert_otp(
            OTPRecord(
                email=email,
                otp=code,
                type=otp_type,
                created_at=now,
                expires_at=self._tokens.otp_expiry(now),
                used=False,
            )
        )
        self._security_logger.log(
            SecurityEvent.OTP_ISSUED,
            email=email,
            user_id=user.id if user else None,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"type": otp_type.value},
        )

        try:
            self._email_client.send_otp(
                email=email,
                otp=code,
                expiry_minutes=self._config.otp_expiry_minutes,
                app_name=self._config.app_name,
            )
        except EmailGatewayError as e:
            logger.error(f"OTP delivery to {email} failed: {e}")
            self._security_logger.log(
                SecurityEvent.OTP_DELIVERY_FAILED,
                email=email,
                ip_address=ip_address,
                details={"error": str(e)},
            )
            raise DeliveryFailedError("Failed to send verification code") from e

        return OtpIssueResult(
            is_new_user=user is None,
            has_password_auth=user.has_password_auth if user else False,
        )

    def verify_otp(
        self,
        email: str | None,
        otp: str | None,
        otp_type: OtpType = OtpType.LOGIN,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> OtpVerification:
        """Consume a matching code and return the (possibly new) account.

        Raises:
            InvalidInputError: Email or code missing.
            RateLimitedError: Too many code checks for this email.
            InvalidOrExpiredCodeError: No unused, unexpired code matches.
        """
        if not email or not email.strip() or not otp:
            raise InvalidInputError("Email and OTP are required")
        email = email.strip().lower()

        self._check_rate_limit(RateLimitScope.OTP_VERIFY, email, ip_address)

        now = now_utc()
        redeemed = self._auth_db.redeem_otp(email, otp, otp_type, now)
        if redeemed is None:
            self._security_logger.log(
                SecurityEvent.OTP_FAILED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"type": otp_type.value},
            )
            raise InvalidOrExpiredCodeError("Invalid or expired code")
        user, created = redeemed

        # The code is spent; nothing below may fail the request.
        if self._config.opportunistic_sweep:
            try:
                self._auth_db.purge_expired_otps(now)
            except Exception:
                logger.exception("Opportunistic OTP purge failed")

        try:
            self._rate_limiter.reset_rate_limit(RateLimitScope.OTP_VERIFY, email)
            self._rate_limiter.reset_rate_limit(RateLimitScope.OTP_SEND, email)
        except Exception:
            logger.exception(f"Could not reset code rate limits for {email}")

        if created:
            logger.info(f"Created account for {email}")
            log_quietly(
                self._security_logger,
                SecurityEvent.USER_CREATED,
                email=email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        log_quietly(
            self._security_logger,
            SecurityEvent.OTP_VERIFIED,
            email=email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"type": otp_type.value},
        )

        return OtpVerification(
            user_id=user.id,
            email=user.email,
            is_new_user=created,
            profile_completed=user.profile_completed,
        )
