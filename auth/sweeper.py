"""Background purge of expired auth requests, one-time codes and old audit rows.

Reads already ignore expired rows; this only reclaims space.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta

from auth.database import AuthDatabase
from auth.security_logger import SecurityLogger
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    auth_requests: int
    otps: int
    security_events: int = 0

    @property
    def total(self) -> int:
        return self.auth_requests + self.otps + self.security_events


class ExpirySweeper:
    """Daemon thread that purges expired rows every interval_seconds.

    Audit rows are only purged when a SecurityLogger and a retention period
    are both given.
    """

    def __init__(
        self,
        auth_db: AuthDatabase,
        interval_seconds: int,
        security_logger: SecurityLogger | None = None,
        event_retention_days: int | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if event_retention_days is not None and event_retention_days <= 0:
            raise ValueError("event_retention_days must be positive")
        self._auth_db = auth_db
        self._interval_seconds = interval_seconds
        self._security_logger = security_logger
        self._event_retention_days = event_retention_days
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepResult:
        now = now_utc()
        result = SweepResult(
            auth_requests=self._auth_db.purge_expired_auth_requests(now),
            otps=self._auth_db.purge_expired_otps(now),
        )
        if self._security_logger is not None and self._event_retention_days is not None:
            cutoff = now - timedelta(days=self._event_retention_days)
            result.security_events = self._security_logger.purge_older_than(cutoff)

        if result.total:
            logger.info(
                f"Expiry sweep removed {result.auth_requests} auth requests, "
                f"{result.otps} codes and {result.security_events} audit rows"
            )
        return result

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"Expiry sweeper started (every {self._interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Expiry sweeper stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Expiry sweep failed")
