"""Tests for ExpirySweeper."""

import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest

from auth.database import AuthDatabase
from auth.security_logger import SecurityLogger
from auth.sweeper import ExpirySweeper, SweepResult


@pytest.fixture
def auth_db():
    mock = Mock(spec=AuthDatabase)
    mock.purge_expired_auth_requests.return_value = 2
    mock.purge_expired_otps.return_value = 5
    return mock


@pytest.fixture
def security_logger():
    mock = Mock(spec=SecurityLogger)
    mock.purge_older_than.return_value = 7
    return mock


class TestRunOnce:

    def test_purges_both_tables(self, auth_db):
        result = ExpirySweeper(auth_db, 60).run_once()

        assert result == SweepResult(auth_requests=2, otps=5, security_events=0)
        assert result.total == 7

    def test_same_cutoff_for_both(self, auth_db):
        ExpirySweeper(auth_db, 60).run_once()

        cutoff = auth_db.purge_expired_auth_requests.call_args.args[0]
        assert auth_db.purge_expired_otps.call_args.args[0] == cutoff
        assert cutoff.tzinfo is not None

    def test_purges_old_audit_rows(self, auth_db, security_logger):
        result = ExpirySweeper(
            auth_db, 60, security_logger=security_logger, event_retention_days=90
        ).run_once()

        assert result.security_events == 7
        now = auth_db.purge_expired_otps.call_args.args[0]
        security_logger.purge_older_than.assert_called_once_with(now - timedelta(days=90))

    def test_audit_rows_kept_without_retention(self, auth_db, security_logger):
        ExpirySweeper(auth_db, 60, security_logger=security_logger).run_once()
        security_logger.purge_older_than.assert_not_called()


@pytest.mark.parametrize("interval", [0, -1])
def test_rejects_non_positive_interval(auth_db, interval):
    with pytest.raises(ValueError):
        ExpirySweeper(auth_db, interval)


def test_rejects_non_positive_retention(auth_db, security_logger):
    with pytest.raises(ValueError):
        ExpirySweeper(auth_db, 60, security_logger=security_logger, event_retention_days=0)


class TestThread:

    def test_start_and_stop(self, auth_db):
        swept = threading.Event()
        auth_db.purge_expired_otps.side_effect = lambda now: swept.set() or 0
        sweeper = ExpirySweeper(auth_db, 1)

        sweeper.start()
        try:
            assert sweeper.running is True
            assert swept.wait(timeout=5)
        finally:
            sweeper.stop()

        assert sweeper.running is False

    def test_start_is_idempotent(self, auth_db):
        sweeper = ExpirySweeper(auth_db, 60)
        sweeper.start()
        first = sweeper._thread
        try:
            sweeper.start()
            assert sweeper._thread is first
        finally:
            sweeper.stop()

    def test_failure_does_not_kill_thread(self, auth_db):
        calls = []
        recovered = threading.Event()

        def flaky(now):
            calls.append(now)
            if len(calls) == 1:
                raise RuntimeError("connection reset")
            recovered.set()
            return 0

        auth_db.purge_expired_auth_requests.side_effect = flaky
        sweeper = ExpirySweeper(auth_db, 1)

        sweeper.start()
        try:
            assert recovered.wait(timeout=5)
            assert sweeper.running is True
        finally:
            sweeper.stop()

    def test_stop_without_start(self, auth_db):
        ExpirySweeper(auth_db, 60).stop()
