"""Session tokens: issuing, verifying and revoking.

A session token is a signed, self-contained assertion of {user_id, email}.
SessionIssuer never consults storage; a token is valid if its signature and
expiry check out. Revocation (logout) is layered on top by SessionDenylist,
which remembers revoked token ids in Valkey until they would have expired
anyway.
"""

import logging
from typing import Any
from uuid import UUID

import jwt

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.tokens import TokenService
from auth.types import IssuedSession, SessionClaims
from utils.timezone import from_timestamp, now_utc, seconds_until

logger = logging.getLogger(__name__)


class SessionIssuer:
    """Signs and verifies session tokens."""

    def __init__(self, tokens: TokenService, config: AuthConfig):
        self._tokens = tokens
        self._config = config

    @property
    def cookie_name(self) -> str:
        return self._config.session_cookie_name

    @property
    def max_age_seconds(self) -> int:
        return self._config.session_expiry_days * 86400

    def issue_session(self, user_id: UUID, email: str) -> IssuedSession:
        token, payload = self._tokens.sign_session(user_id, email, now_utc())
        return IssuedSession(token=token, claims=self._to_claims(payload))

    def verify_session(self, token: str | None) -> SessionClaims:
        """Check signature and expiry.

        Raises:
            SessionExpiredError: Missing, malformed, badly signed or expired.
        """
        if not token:
            raise SessionExpiredError("Session not found")
        try:
            payload = self._tokens.decode_session(token)
        except jwt.ExpiredSignatureError:
            raise SessionExpiredError("Session expired")
        except jwt.InvalidTokenError:
            raise SessionExpiredError("Invalid session")

        try:
            return self._to_claims(payload)
        except (ValueError, TypeError):
            raise SessionExpiredError("Invalid session")

    def cookie_options(self) -> dict[str, Any]:
        """Keyword arguments for Response.set_cookie, minus key and value."""
        return {
            "max_age": self.max_age_seconds,
            "httponly": True,
            "secure": self._config.cookie_secure,
            "samesite": "lax",
            "path": "/",
        }

    @staticmethod
    def _to_claims(payload: dict[str, Any]) -> SessionClaims:
        return SessionClaims(
            user_id=UUID(payload["user_id"]),
            email=payload["email"],
            jti=payload["jti"],
            issued_at=from_timestamp(payload["iat"]),
            expires_at=from_timestamp(payload["exp"]),
        )


class SessionDenylist:
    """Revoked session ids, kept in Valkey for the rest of each token's life."""

    KEY_PREFIX = "revoked_session:"

    def __init__(self, valkey: ValkeyClient):
        self._valkey = valkey

    def _key(self, jti: str) -> str:
        return f"{self.KEY_PREFIX}{jti}"

    def revoke(self, claims: SessionClaims) -> None:
        """Deny claims.jti until it expires. No-op for an already-expired token."""
        remaining = seconds_until(claims.expires_at)
        if remaining == 0:
            return
        self._valkey.set_marker(self._key(claims.jti), str(claims.user_id), expire_seconds=remaining)
        logger.info(f"Revoked session {claims.jti} for user {claims.user_id}")

    def is_revoked(self, jti: str) -> bool:
        return self._valkey.exists(self._key(jti))
