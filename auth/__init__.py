"""Authentication broker modules."""

from auth.exceptions import (
    AuthError,
    InvalidInputError,
    InvalidOrExpiredRequestError,
    InvalidOrExpiredSessionError,
    AlreadyClaimedError,
    InvalidClaimError,
    ClaimExpiredError,
    OriginMismatchError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    UserNotFoundError,
    UsernameTakenError,
    DeliveryFailedError,
    RateLimitedError,
    NotAuthenticatedError,
    SessionExpiredError,
    SessionRevokedError,
)
from auth.types import (
    AuthRequest,
    AuthRequestStatus,
    OtpType,
    OTPRecord,
    User,
    UserProfile,
    SessionClaims,
    IssuedSession,
)
from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.tokens import TokenService
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter, RateLimitScope
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.broker import AuthRequestBroker, AuthenticationOutcome
from auth.verifier import CredentialVerifier
from auth.session import SessionIssuer, SessionDenylist
from auth.profile import ProfileService
from auth.service import AuthService
from auth.sweeper import ExpirySweeper
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router, create_profile_router
