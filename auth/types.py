"""Pydantic models for the auth domain and the HTTP request bodies."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class AuthRequestStatus(str, Enum):
    """Lifecycle of a cross-origin login attempt.

    waiting -> authenticated -> claimed. Expiry is not a status: an expired
    record is treated as absent by every read.
    """

    WAITING = "waiting"
    AUTHENTICATED = "authenticated"
    CLAIMED = "claimed"


class OtpType(str, Enum):
    """Purpose a one-time code was issued for."""

    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


class User(BaseModel):
    """A registered account."""

    id: UUID
    email: EmailStr
    username: str | None = None
    roll_number: str | None = None
    batch: str | None = None
    branch: str | None = None
    password_hash: str | None = Field(default=None, exclude=True, repr=False)
    has_password_auth: bool = False
    profile_completed: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserProfile(BaseModel):
    """Public view of a user handed to the UI and to relying sites."""

    id: UUID
    email: EmailStr
    username: str | None = None
    roll_number: str | None = None
    batch: str | None = None
    branch: str | None = None
    has_password_auth: bool
    profile_completed: bool

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls.model_validate(user.model_dump())


class AuthRequest(BaseModel):
    """One cross-origin login attempt, keyed by its request id."""

    request_id: str = Field(..., description="Opaque 64-char hex handle")
    frozen_origin: str = Field(..., description="Relying-site origin captured at init")
    status: AuthRequestStatus
    user_id: UUID | None = None
    claim_token: str | None = Field(default=None, repr=False)
    claim_token_expires_at: datetime | None = None
    created_at: datetime
    expires_at: datetime
    claimed_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class OTPRecord(BaseModel):
    """A one-time code awaiting verification."""

    id: UUID | None = None
    email: EmailStr
    otp: str = Field(..., pattern=r"^[0-9]+$", repr=False)
    type: OtpType = OtpType.LOGIN
    created_at: datetime
    expires_at: datetime
    used: bool  # Required - fail closed, no default


class SessionClaims(BaseModel):
    """Verified contents of a session token."""

    user_id: UUID
    email: EmailStr
    jti: str
    issued_at: datetime
    expires_at: datetime


class IssuedSession(BaseModel):
    """A freshly signed session token and what it asserts."""

    token: str = Field(..., repr=False)
    claims: SessionClaims

    @property
    def max_age_seconds(self) -> int:
        return int((self.claims.expires_at - self.claims.issued_at).total_seconds())


# =============================================================================
# REQUEST BODIES (camelCase on the wire)
# =============================================================================


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitRequest(CamelModel):
    frozen_origin: str = ""


class EmailRequest(CamelModel):
    email: str = Field(..., max_length=254)


class SendOtpRequest(CamelModel):
    email: str = Field(..., max_length=254)
    request_id: str | None = None
    type: OtpType = OtpType.LOGIN


class VerifyOtpRequest(CamelModel):
    email: str = Field(..., max_length=254)
    otp: str = Field(..., max_length=16)
    type: OtpType = OtpType.LOGIN


class CredentialsRequest(CamelModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=1, max_length=1024)
    request_id: str | None = None


class AuthenticateRequest(CamelModel):
    request_id: str
    user_id: UUID | None = None


class VerifyClaimRequest(CamelModel):
    request_id: str
    claim_token: str
    origin: str | None = None


class CompleteProfileRequest(CamelModel):
    user_id: UUID | None = None
    username: str = Field(..., max_length=64)
    roll_number: str | None = Field(default=None, max_length=32)
    batch: str | None = None
    branch: str | None = None
    password: str | None = Field(default=None, max_length=1024)


class UpdateProfileRequest(CamelModel):
    username: str = Field(..., max_length=64)
    roll_number: str | None = Field(default=None, max_length=32)
    batch: str | None = None
    branch: str | None = None
    new_password: str | None = Field(default=None, max_length=1024)
