"""Authentication configuration."""

from pydantic import BaseModel, Field


DEFAULT_EMAIL_DOMAINS = [
    "iiit.ac.in",
    "students.iiit.ac.in",
    "research.iiit.ac.in",
]

DEFAULT_BRANCHES = ["CSD", "CND", "CHD", "CGD", "CSE", "ECE", "EEE", "ME", "CE"]

DEFAULT_BATCHES = ["2020", "2021", "2022", "2023", "2024", "2025", "2026", "2027"]


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short-lived
    protocol tokens, days for sessions) to make configuration intuitive.
    """

    # One-time codes
    otp_length: int = Field(
        default=6,
        description="Number of decimal digits in a one-time code",
        ge=4,
        le=10,
    )
    otp_expiry_minutes: int = Field(
        default=10,
        description="How long a one-time code remains valid",
        ge=1,
        le=60,
    )
    invalidate_previous_otps: bool = Field(
        default=True,
        description="Issuing a code deletes older unused codes for the same email and type",
    )

    # Cross-origin handoff
    auth_request_expiry_minutes: int = Field(
        default=30,
        description="Lifetime of a login attempt started by a relying site",
        ge=5,
        le=120,
    )
    claim_token_expiry_minutes: int = Field(
        default=5,
        description="How long a relying site has to redeem a claim token",
        ge=1,
        le=30,
    )
    allowed_origins: list[str] = Field(
        default_factory=list,
        description="Relying-site origins accepted at init; empty accepts any http(s) origin",
    )
    auth_callback_path: str = Field(
        default="/auth-callback",
        description="Path on the relying site that redeems the claim token",
        pattern=r"^/",
    )

    # Session settings
    session_expiry_days: int = Field(
        default=7,
        description="Session token lifetime in days",
        ge=1,
        le=90,
    )
    session_cookie_name: str = Field(
        default="alt_session",
        description="Name of the session cookie on the identity service and relying sites",
        min_length=1,
    )
    cookie_secure: bool = Field(
        default=True,
        description="Set the Secure flag on session cookies (disable only for local http)",
    )

    # Rate limiting
    rate_limit_attempts: int = Field(
        default=5,
        description="Max code sends, code checks or password checks per email per window",
        ge=1,
        le=20,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=5,
        le=60,
    )

    # Accounts
    allowed_email_domains: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EMAIL_DOMAINS),
        description="Institutional email domains allowed to sign in",
        min_length=1,
    )
    min_password_length: int = Field(
        default=6,
        description="Minimum length for a password set during profile completion or update",
        ge=6,
        le=128,
    )
    branches: list[str] = Field(default_factory=lambda: list(DEFAULT_BRANCHES))
    batches: list[str] = Field(default_factory=lambda: list(DEFAULT_BATCHES))

    # Expiry reclamation
    sweep_interval_seconds: int = Field(
        default=300,
        description="Interval between background purges of expired requests and codes",
        ge=10,
        le=86400,
    )
    opportunistic_sweep: bool = Field(
        default=True,
        description="Also purge expired records after each successful redemption or code check",
    )
    security_event_retention_days: int = Field(
        default=90,
        description="Audit rows older than this are deleted by the sweeper",
        ge=1,
        le=3650,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Origin of the identity service itself",
    )
    app_name: str = Field(
        default="Alt Auth",
        description="Application name for emails",
    )

    @property
    def service_origin(self) -> str:
        return self.app_base_url.rstrip("/")
