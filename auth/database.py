"""Database operations for authentication.

Tables: users, auth_requests, otps (see auth/schema.sql).

Every state transition of the handoff protocol is a single conditional
UPDATE or DELETE with RETURNING. Postgres applies it atomically per row, so
when two callers race for the same request or code, exactly one gets a row
back and the other gets None.
"""

import logging
from datetime import datetime
from importlib import resources
from typing import Any
from uuid import UUID

from psycopg2 import errors as pg_errors

from clients.postgres_client import PostgresClient
from auth.exceptions import UsernameTakenError
from auth.types import AuthRequest, AuthRequestStatus, OTPRecord, OtpType, User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_USER_COLUMNS = """id, email, username, roll_number, batch, branch, password_hash,
                   has_password_auth, profile_completed, created_at, updated_at"""

_REQUEST_COLUMNS = """request_id, frozen_origin, status, user_id, claim_token,
                      claim_token_expires_at, created_at, expires_at, claimed_at"""

# Columns a profile write may touch
_PROFILE_FIELDS = ("username", "roll_number", "batch", "branch")


def load_schema() -> str:
    """Return the DDL shipped with the package."""
    return resources.files("auth").joinpath("schema.sql").read_text(encoding="utf-8")


class AuthDatabase:
    """Database operations for authentication."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def apply_schema(self) -> None:
        """Create tables and indexes if missing."""
        self._db.execute_script(load_schema())
        logger.info("Auth schema applied")

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_user(row: dict[str, Any] | None) -> User | None:
        return User.model_validate(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        )
        return self._to_user(row)

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return self._to_user(row)

    def username_taken(self, username: str, exclude_user_id: UUID | None = None) -> bool:
        """Whether another account already uses username."""
        row = self._db.execute_single(
            "SELECT 1 AS taken FROM users WHERE username = %s AND id IS DISTINCT FROM %s",
            (username, exclude_user_id),
        )
        return row is not None

    def update_profile(
        self,
        user_id: UUID,
        fields: dict[str, str | None],
        password_hash: str | None = None,
        mark_completed: bool = False,
    ) -> User | None:
        """Write profile fields (and optionally a new password hash).

        Returns:
            The updated user, or None if user_id doesn't exist.

        Raises:
            UsernameTakenError: If the unique username index rejects the write.
        """
        unknown = set(fields) - set(_PROFILE_FIELDS)
        if unknown:
            raise ValueError(f"Not profile fields: {', '.join(sorted(unknown))}")

        assignments = [f"{name} = %s" for name in fields]
        params: list[Any] = list(fields.values())

        if password_hash is not None:
            assignments.append("password_hash = %s")
            assignments.append("has_password_auth = true")
            params.append(password_hash)
        if mark_completed:
            assignments.append("profile_completed = true")

        assignments.append("updated_at = %s")
        params.append(now_utc())
        params.append(user_id)

        try:
            row = self._db.execute_single(
                f"""UPDATE users SET {', '.join(assignments)}
                    WHERE id = %s
                    RETURNING {_USER_COLUMNS}""",
                tuple(params),
            )
        except pg_errors.UniqueViolation:
            raise UsernameTakenError("Username is already taken")
        return self._to_user(row)

    # -------------------------------------------------------------------------
    # Auth requests
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_request(row: dict[str, Any] | None) -> AuthRequest | None:
        return AuthRequest.model_validate(row) if row is not None else None

    def insert_auth_request(self, request: AuthRequest) -> None:
        """Store a new waiting request. Request ids are primary keys."""
        self._db.execute(
            """INSERT INTO auth_requests
               (request_id, frozen_origin, status, created_at, expires_at)
               VALUES (%s, %s, %s, %s, %s)""",
            (
                request.request_id,
                request.frozen_origin,
                request.status.value,
                request.created_at,
                request.expires_at,
            ),
        )

    def get_auth_request(self, request_id: str) -> AuthRequest | None:
        """Raw read, whatever the status or expiry. Callers apply expiry."""
        row = self._db.execute_single(
            f"SELECT {_REQUEST_COLUMNS} FROM auth_requests WHERE request_id = %s",
            (request_id,),
        )
        return self._to_request(row)

    def get_waiting_auth_request(self, request_id: str, now: datetime) -> AuthRequest | None:
        """Return the request only if it is waiting and unexpired."""
        row = self._db.execute_single(
            f"""SELECT {_REQUEST_COLUMNS} FROM auth_requests
                WHERE request_id = %s AND status = %s AND expires_at > %s""",
            (request_id, AuthRequestStatus.WAITING.value, now),
        )
        return self._to_request(row)

    def mark_authenticated(
        self,
        request_id: str,
        user_id: UUID,
        claim_token: str,
        claim_token_expires_at: datetime,
        now: datetime,
    ) -> AuthRequest | None:
        """waiting -> authenticated, binding user and claim token.

        The record's expiry is raised to cover the claim token so a live
        token is never swept.

        Returns:
            The updated request, or None if it wasn't waiting and unexpired.
        """
        row = self._db.execute_single(
            f"""UPDATE auth_requests
                SET status = %s,
                    user_id = %s,
                    claim_token = %s,
                    claim_token_expires_at = %s,
                    expires_at = GREATEST(expires_at, %s)
                WHERE request_id = %s AND status = %s AND expires_at > %s
                RETURNING {_REQUEST_COLUMNS}""",
            (
                AuthRequestStatus.AUTHENTICATED.value,
                user_id,
                claim_token,
                claim_token_expires_at,
                claim_token_expires_at,
                request_id,
                AuthRequestStatus.WAITING.value,
                now,
            ),
        )
        return self._to_request(row)

    def delete_waiting_auth_request(self, request_id: str, now: datetime) -> AuthRequest | None:
        """Remove a waiting, unexpired request. Returns what was deleted."""
        row = self._db.execute_single(
            f"""DELETE FROM auth_requests
                WHERE request_id = %s AND status = %s AND expires_at > %s
                RETURNING {_REQUEST_COLUMNS}""",
            (request_id, AuthRequestStatus.WAITING.value, now),
        )
        return self._to_request(row)

    def mark_claimed(
        self,
        request_id: str,
        claim_token: str,
        now: datetime,
        origin: str | None = None,
    ) -> AuthRequest | None:
        """authenticated -> claimed, compare-and-set on token, expiry and origin.

        The claim token is cleared in the same statement, so it can match at
        most once.

        Returns:
            The claimed request, or None if any condition failed.
        """
        conditions = [
            "request_id = %(request_id)s",
            "status = %(authenticated)s",
            "claim_token = %(claim_token)s",
            "claim_token_expires_at > %(now)s",
        ]
        if origin is not None:
            conditions.append("frozen_origin = %(origin)s")

        row = self._db.execute_single(
            f"""UPDATE auth_requests
                SET status = %(claimed)s, claim_token = NULL, claimed_at = %(now)s
                WHERE {' AND '.join(conditions)}
                RETURNING {_REQUEST_COLUMNS}""",
            {
                "request_id": request_id,
                "claim_token": claim_token,
                "origin": origin,
                "now": now,
                "authenticated": AuthRequestStatus.AUTHENTICATED.value,
                "claimed": AuthRequestStatus.CLAIMED.value,
            },
        )
        return self._to_request(row)

    def purge_expired_auth_requests(self, now: datetime) -> int:
        """Delete requests (and claimed tombstones) past expiry. Returns count."""
        rows = self._db.execute(
            "DELETE FROM auth_requests WHERE expires_at <= %s RETURNING request_id",
            (now,),
        )
        return len(rows)

    # -------------------------------------------------------------------------
    # One-time codes
    # -------------------------------------------------------------------------

    def insert_otp(self, record: OTPRecord) -> OTPRecord:
        """Store a code. Returns it with its generated id."""
        row = self._db.execute_single(
            """INSERT INTO otps (email, otp, type, created_at, expires_at, used)
               VALUES (lower(%s), %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                record.email,
                record.otp,
                record.type.value,
                record.created_at,
                record.expires_at,
                record.used,
            ),
        )
        return record.model_copy(update={"id": row["id"]})

    def delete_unused_otps(self, email: str, otp_type: OtpType) -> int:
        """Invalidate outstanding codes for email and purpose. Returns count."""
        rows = self._db.execute(
            """DELETE FROM otps
               WHERE email = lower(%s) AND type = %s AND used = false
               RETURNING id""",
            (email, otp_type.value),
        )
        return len(rows)

    def redeem_otp(
        self, email: str, otp: str, otp_type: OtpType, now: datetime
    ) -> tuple[User, bool] | None:
        """Consume a matching unused, unexpired code and get or create its user.

        Both writes share one transaction: if the user write fails, the code
        is restored with the rollback and can be tried again. The DELETE is
        atomic per row, so of two callers presenting the same code only one
        gets a row back. Two first logins for one email race on the INSERT;
        the loser waits for the winner to commit and then reads its row.

        Returns:
            (user, was_created), or None if no code matched.
        """
        with self._db.transaction() as cur:
            cur.execute(
                """DELETE FROM otps
                   WHERE email = lower(%s) AND otp = %s AND type = %s
                     AND used = false AND expires_at > %s
                   RETURNING id""",
                (email, otp, otp_type.value, now),
            )
            if not cur.fetchall():
                return None

            cur.execute(
                f"""INSERT INTO users (email)
                    VALUES (lower(%s))
                    ON CONFLICT (email) DO NOTHING
                    RETURNING {_USER_COLUMNS}""",
                (email,),
            )
            row = cur.fetchone()
            created = row is not None
            if not created:
                cur.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)", (email,))
                row = cur.fetchone()
            if row is None:
                raise RuntimeError(f"User row for {email} vanished during code redemption")

        return self._to_user(dict(row)), created

    def purge_expired_otps(self, now: datetime) -> int:
        """Delete codes past expiry. Returns count."""
        rows = self._db.execute(
            "DELETE FROM otps WHERE expires_at <= %s RETURNING id",
            (now,),
        )
        return len(rows)
