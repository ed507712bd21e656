"""Per-email rate limiting for code sends, code checks and password checks.

Counters live in Valkey with a sliding window: each attempt resets the expiry.
Attackers bypassing frontend rate limiting hit an ever-extending lockout.
"""

from enum import Enum

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError


class RateLimitScope(str, Enum):
    """Independent counters kept per email."""

    OTP_SEND = "otp_send"
    OTP_VERIFY = "otp_verify"
    PASSWORD = "password"


class RateLimiter:
    """Rate limiting for credential operations using Valkey."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._window_seconds = config.rate_limit_window_minutes * 60

    def _key(self, scope: RateLimitScope, email: str) -> str:
        """Generate rate limit key for scope and email (normalized to lowercase)."""
        return f"{self.KEY_PREFIX}{scope.value}:{email.lower()}"

    def check_rate_limit(self, scope: RateLimitScope, email: str) -> None:
        """Count an attempt and refuse it once the limit is passed.

        Sliding window: every attempt, refused ones included, restarts the
        window, so hammering keeps the lockout alive.

        Raises:
            RateLimitedError: If rate limit exceeded.
        """
        count, ttl = self._valkey.hit_counter(self._key(scope, email), self._window_seconds)

        if count > self._config.rate_limit_attempts:
            raise RateLimitedError(retry_after_seconds=max(ttl, 1))

    def reset_rate_limit(self, scope: RateLimitScope, email: str) -> None:
        """Reset rate limit after a successful attempt."""
        self._valkey.delete(self._key(scope, email))

    def get_remaining_attempts(self, scope: RateLimitScope, email: str) -> int:
        """Get remaining attempts before rate limit."""
        used = self._valkey.get_counter(self._key(scope, email))
        return max(0, self._config.rate_limit_attempts - used)
