"""Tests for SecurityLogger - auth event audit trail."""

import logging
from datetime import timedelta
from unittest.mock import Mock
from uuid import UUID

import pytest
from psycopg2.extras import Json

from auth.security_logger import SecurityEvent, SecurityEventRecord, SecurityLogger
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

TEST_USER_ID = UUID("00000000-0000-0000-0000-000000000001")


class TestLogStatement:
    """What log() hands to Postgres, no database needed."""

    def test_params(self):
        postgres = Mock(spec=PostgresClient)

        SecurityLogger(postgres).log(
            SecurityEvent.CLAIM_REDEEMED,
            email="asha@iiit.ac.in",
            user_id=TEST_USER_ID,
            ip_address="10.0.0.1",
            details={"origin": "https://club.example.org"},
        )

        params = postgres.execute.call_args.args[1]
        assert params[:4] == ("claim_redeemed", "asha@iiit.ac.in", TEST_USER_ID, "10.0.0.1")
        assert isinstance(params[5], Json)

    def test_optional_fields_null(self):
        postgres = Mock(spec=PostgresClient)

        SecurityLogger(postgres).log(SecurityEvent.AUTH_REQUEST_CREATED)

        params = postgres.execute.call_args.args[1]
        assert params[1:6] == (None, None, None, None, None)

    def test_refusals_logged_at_warning(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="auth.security_logger"):
            SecurityLogger(Mock(spec=PostgresClient)).log(
                SecurityEvent.ORIGIN_MISMATCH, ip_address="10.0.0.9"
            )

        assert caplog.records[-1].levelno == logging.WARNING
        assert "origin_mismatch" in caplog.records[-1].getMessage()

    def test_routine_events_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="auth.security_logger"):
            SecurityLogger(Mock(spec=PostgresClient)).log(SecurityEvent.SESSION_CREATED)

        assert caplog.records[-1].levelno == logging.DEBUG


class TestRecentEventsQuery:

    def test_no_filters(self):
        postgres = Mock(spec=PostgresClient)
        postgres.execute.return_value = []

        assert SecurityLogger(postgres).recent_events(limit=5) == []

        query, params = postgres.execute.call_args.args
        assert "WHERE true" in query
        assert params == (5,)

    def test_rows_become_records(self):
        postgres = Mock(spec=PostgresClient)
        postgres.execute.return_value = [{
            "id": 1,
            "event_type": "otp_failed",
            "email": "asha@iiit.ac.in",
            "user_id": None,
            "ip_address": "10.0.0.1",
            "user_agent": None,
            "details": None,
            "created_at": now_utc(),
        }]

        [record] = SecurityLogger(postgres).recent_events(email="asha@iiit.ac.in")

        assert isinstance(record, SecurityEventRecord)
        assert record.event_type is SecurityEvent.OTP_FAILED


@pytest.fixture
def security_logger(clean_db):
    return SecurityLogger(clean_db)


@pytest.mark.integration
class TestAgainstDatabase:

    def test_logs_event(self, security_logger):
        security_logger.log(
            SecurityEvent.AUTH_REQUEST_CREATED,
            ip_address="192.168.1.1",
            details={"origin": "https://club.example.org"},
        )

        [event] = security_logger.recent_events()
        assert event.event_type is SecurityEvent.AUTH_REQUEST_CREATED
        assert event.ip_address == "192.168.1.1"
        assert event.details == {"origin": "https://club.example.org"}

    def test_filters_by_email(self, security_logger):
        security_logger.log(SecurityEvent.OTP_ISSUED, email="target@iiit.ac.in")
        security_logger.log(SecurityEvent.OTP_ISSUED, email="other@iiit.ac.in")

        events = security_logger.recent_events(email="target@iiit.ac.in")

        assert [e.email for e in events] == ["target@iiit.ac.in"]

    def test_filters_by_user_and_type(self, security_logger):
        security_logger.log(SecurityEvent.SESSION_CREATED, user_id=TEST_USER_ID)
        security_logger.log(SecurityEvent.SESSION_REVOKED, user_id=TEST_USER_ID)

        events = security_logger.recent_events(
            user_id=TEST_USER_ID, event_type=SecurityEvent.SESSION_REVOKED
        )

        assert [e.event_type for e in events] == [SecurityEvent.SESSION_REVOKED]

    def test_since_and_limit(self, security_logger):
        for _ in range(5):
            security_logger.log(SecurityEvent.OTP_FAILED, email="limit@iiit.ac.in")

        assert len(security_logger.recent_events(email="limit@iiit.ac.in", limit=3)) == 3
        later = now_utc() + timedelta(minutes=1)
        assert security_logger.recent_events(since=later) == []

    def test_purge_older_than(self, security_logger):
        security_logger.log(SecurityEvent.OTP_ISSUED, email="old@iiit.ac.in")

        assert security_logger.purge_older_than(now_utc() - timedelta(days=1)) == 0
        assert security_logger.purge_older_than(now_utc() + timedelta(seconds=1)) == 1
