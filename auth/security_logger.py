"""Security event logging for the auth audit trail.

Every protocol step that succeeds or is refused leaves a row in
security_events. Writes are synchronous with the request. Events that follow
a committed single-use transition go through log_quietly(). Reads are for
audits and never sit on the login path.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from psycopg2.extras import Json
from pydantic import BaseModel

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    AUTH_REQUEST_CREATED = "auth_request_created"
    AUTH_REQUEST_AUTHENTICATED = "auth_request_authenticated"
    AUTH_REQUEST_DIRECT = "auth_request_direct"
    CLAIM_REDEEMED = "claim_redeemed"
    CLAIM_REJECTED = "claim_rejected"
    ORIGIN_MISMATCH = "origin_mismatch"
    OTP_ISSUED = "otp_issued"
    OTP_DELIVERY_FAILED = "otp_delivery_failed"
    OTP_VERIFIED = "otp_verified"
    OTP_FAILED = "otp_failed"
    PASSWORD_VERIFIED = "password_verified"
    PASSWORD_FAILED = "password_failed"
    USER_CREATED = "user_created"
    PROFILE_COMPLETED = "profile_completed"
    PROFILE_UPDATED = "profile_updated"
    SESSION_CREATED = "session_created"
    SESSION_REVOKED = "session_revoked"
    RATE_LIMITED = "rate_limited"


# Refusals worth a WARNING in the process log as well as the table
_WARN_EVENTS = frozenset({
    SecurityEvent.ORIGIN_MISMATCH,
    SecurityEvent.CLAIM_REJECTED,
    SecurityEvent.PASSWORD_FAILED,
    SecurityEvent.OTP_DELIVERY_FAILED,
    SecurityEvent.RATE_LIMITED,
})


class SecurityEventRecord(BaseModel):
    id: int
    event_type: SecurityEvent
    email: str | None = None
    user_id: UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = None
    created_at: datetime


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._db.execute(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)""",
            (
                event.value,
                email,
                user_id,
                ip_address,
                user_agent,
                Json(details) if details else None,
                now_utc(),
            ),
        )
        level = logging.WARNING if event in _WARN_EVENTS else logging.DEBUG
        logger.log(level, f"Security event {event.value} email={email} user_id={user_id} ip={ip_address}")

    def recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[SecurityEventRecord]:
        """Newest-first events matching every given filter."""
        conditions = []
        params: list[Any] = []

        if email is not None:
            conditions.append("email = %s")
            params.append(email)
        if user_id is not None:
            conditions.append("user_id = %s")
            params.append(user_id)
        if since is not None:
            conditions.append("created_at >= %s")
            params.append(since)
        if event_type is not None:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "true"
        params.append(limit)

        rows = self._db.execute(
            f"""SELECT id, event_type, email, user_id, host(ip_address) AS ip_address,
                       user_agent, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s""",
            tuple(params),
        )
        return [SecurityEventRecord.model_validate(row) for row in rows]

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete events created before cutoff. Returns count."""
        rows = self._db.execute(
            "DELETE FROM security_events WHERE created_at < %s RETURNING id",
            (cutoff,),
        )
        return len(rows)


def log_quietly(security_logger: SecurityLogger, event: SecurityEvent, **fields: Any) -> None:
    """security_logger.log() for events recorded after a single-use write has committed.

    The token or code is already spent at that point, so a failed audit
    insert is logged here instead of failing the caller's request.
    """
    try:
        security_logger.log(event, **fields)
    except Exception:
        logger.exception(f"Could not record security event {event.value}")
