"""Token generation and expiry horizons for the auth protocol.

Request ids and claim tokens are random bytes rendered as hex; their length
is about unguessability only. One-time codes are uniform decimal strings.
Session tokens are HS256 JWTs. Every expiry is a pure function of `now`.
"""

import secrets
import string
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from auth.config import AuthConfig
from utils.timezone import to_timestamp

REQUEST_ID_BYTES = 32
CLAIM_TOKEN_BYTES = 48
SESSION_ALGORITHM = "HS256"
_MIN_SECRET_LENGTH = 32


class TokenService:
    """Generates identifiers, codes and signed session assertions."""

    def __init__(self, config: AuthConfig, signing_key: str):
        if not signing_key or len(signing_key) < _MIN_SECRET_LENGTH:
            raise ValueError(f"signing_key must be at least {_MIN_SECRET_LENGTH} characters")
        self._config = config
        self._signing_key = signing_key

    def generate_request_id(self) -> str:
        return secrets.token_hex(REQUEST_ID_BYTES)

    def generate_claim_token(self) -> str:
        return secrets.token_hex(CLAIM_TOKEN_BYTES)

    def generate_otp(self) -> str:
        return "".join(secrets.choice(string.digits) for _ in range(self._config.otp_length))

    def otp_expiry(self, now: datetime) -> datetime:
        return now + timedelta(minutes=self._config.otp_expiry_minutes)

    def claim_token_expiry(self, now: datetime) -> datetime:
        return now + timedelta(minutes=self._config.claim_token_expiry_minutes)

    def auth_request_expiry(self, now: datetime) -> datetime:
        return now + timedelta(minutes=self._config.auth_request_expiry_minutes)

    def session_expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self._config.session_expiry_days)

    def sign_session(self, user_id: UUID, email: str, now: datetime) -> tuple[str, dict[str, Any]]:
        """Sign a session assertion. Returns (token, payload)."""
        payload = {
            "user_id": str(user_id),
            "email": email,
            "jti": secrets.token_urlsafe(16),
            "iat": to_timestamp(now),
            "exp": to_timestamp(self.session_expiry(now)),
        }
        token = jwt.encode(payload, self._signing_key, algorithm=SESSION_ALGORITHM)
        return token, payload

    def decode_session(self, token: str) -> dict[str, Any]:
        """
        Verify signature and expiry, return the payload.

        Raises:
            jwt.InvalidTokenError: Bad signature, malformed token, missing claims
                or past expiry (jwt.ExpiredSignatureError).
        """
        return jwt.decode(
            token,
            self._signing_key,
            algorithms=[SESSION_ALGORITHM],
            options={"require": ["exp", "iat", "jti", "user_id", "email"]},
        )
