"""Typed exceptions for auth failures.

Each exception carries the HTTP status and machine-readable error code the
API layer reports for it, so routes never translate errors by hand.
"""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""

    status_code = 400
    error_code = "AUTH_ERROR"


class InvalidInputError(AuthError):
    """Malformed email, origin, code or profile field."""

    error_code = "VALIDATION_ERROR"


class InvalidOrExpiredRequestError(AuthError):
    """
    Auth request is unknown, past its expiry, or not in the required state.

    Expired requests are reported exactly like unknown ones.
    """

    error_code = "INVALID_OR_EXPIRED_REQUEST"


class InvalidOrExpiredSessionError(InvalidOrExpiredRequestError):
    """The login envelope (request id) supplied with a credential check is not waiting."""

    error_code = "INVALID_OR_EXPIRED_SESSION"


class AlreadyClaimedError(InvalidOrExpiredRequestError):
    """The request was already redeemed. Claim tokens are single-use."""

    error_code = "ALREADY_CLAIMED"


class InvalidClaimError(InvalidOrExpiredRequestError):
    """Claim token does not match, or the request has not been authenticated."""

    error_code = "INVALID_CLAIM"


class ClaimExpiredError(InvalidOrExpiredRequestError):
    """Claim token expired before redemption, even though the request is still on record."""

    error_code = "CLAIM_EXPIRED"


class OriginMismatchError(AuthError):
    """Redemption attempted from an origin other than the one frozen at init."""

    status_code = 403
    error_code = "ORIGIN_MISMATCH"


class InvalidCredentialsError(AuthError):
    """
    Wrong password or no such account.

    Deliberately uniform: callers can't tell a missing user, a user without a
    password and a wrong password apart.
    """

    status_code = 401
    error_code = "INVALID_CREDENTIALS"


class InvalidOrExpiredCodeError(AuthError):
    """One-time code doesn't match any unused, unexpired code for the email."""

    error_code = "INVALID_OR_EXPIRED_CODE"


class UserNotFoundError(AuthError):
    """
    User id not associated with any account.

    Raised after a session or verification step names a user that no longer
    exists; reported as an authentication failure.
    """

    status_code = 401
    error_code = "NOT_FOUND"


class UsernameTakenError(AuthError):
    """Another account already uses the requested username."""

    error_code = "ALREADY_EXISTS"


class DeliveryFailedError(AuthError):
    """The verification code was stored but the email gateway failed to deliver it."""

    status_code = 500
    error_code = "DELIVERY_FAILED"


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class NotAuthenticatedError(AuthError):
    """No session, or the session belongs to a different user than the request names."""

    status_code = 401
    error_code = "NOT_AUTHENTICATED"


class SessionExpiredError(AuthError):
    """Session token is malformed, badly signed or past expiry."""

    status_code = 401
    error_code = "SESSION_EXPIRED"


class SessionRevokedError(SessionExpiredError):
    """Session was explicitly revoked (logout)."""

    error_code = "SESSION_REVOKED"
