"""
Valkey (Redis-compatible) client for rate limits and the session denylist.

Wraps redis-py with the handful of operations the auth service needs:
windowed attempt counters and expiring markers. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        count, ttl = client.hit_counter("ratelimit:password:a@b", 900)
        client.set_marker("revoked_session:abc", "user-id", expire_seconds=3600)
    """

    def __init__(self, url: str):
        """
        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    # -------------------------------------------------------------------------
    # Counters
    # -------------------------------------------------------------------------

    def hit_counter(self, key: str, window_seconds: int) -> tuple[int, int]:
        """
        Count one attempt and restart the window.

        INCR, EXPIRE and TTL run in a single MULTI, so a counter never
        outlives its window even if the caller dies mid-call.

        Returns:
            (count after this attempt, seconds left in the window)
        """
        with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            pipe.ttl(key)
            count, _, ttl = pipe.execute()
        return int(count), int(ttl)

    def get_counter(self, key: str) -> int:
        """Current count, 0 if the window has lapsed."""
        value = self._client.get(key)
        return int(value) if value is not None else 0

    # -------------------------------------------------------------------------
    # Markers
    # -------------------------------------------------------------------------

    def set_marker(self, key: str, value: str, expire_seconds: int) -> None:
        """Store value under key until expire_seconds from now."""
        if expire_seconds <= 0:
            raise ValueError("expire_seconds must be positive")
        self._client.set(key, value, ex=expire_seconds)

    def exists(self, key: str) -> bool:
        return self._client.exists(key) > 0

    def delete(self, key: str) -> bool:
        """Delete key. True if it existed."""
        return self._client.delete(key) > 0

    def delete_matching(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns count.

        Walks the keyspace with SCAN; meant for maintenance and tests.
        """
        deleted = 0
        for key in self._client.scan_iter(match=pattern, count=500):
            deleted += self._client.delete(key)
        return deleted

    def ttl(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        Returns:
            -2 if key doesn't exist
            -1 if key has no expiration
            Positive int: remaining seconds
        """
        return self._client.ttl(key)

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
