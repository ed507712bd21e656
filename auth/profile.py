"""Account profile reads and writes."""

import logging
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AuthDatabase
from auth.exceptions import InvalidInputError, UsernameTakenError, UserNotFoundError
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import User

logger = logging.getLogger(__name__)


class ProfileService:
    """Validates and persists username, roll number, batch, branch and password."""

    def __init__(
        self,
        config: AuthConfig,
        auth_db: AuthDatabase,
        password_hasher: PasswordHasher,
        security_logger: SecurityLogger,
    ):
        self._config = config
        self._auth_db = auth_db
        self._password_hasher = password_hasher
        self._security_logger = security_logger

    def get_profile(self, user_id: UUID) -> User:
        user = self._auth_db.get_user_by_id(user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    def complete_profile(
        self,
        user_id: UUID,
        username: str | None,
        roll_number: str | None = None,
        batch: str | None = None,
        branch: str | None = None,
        password: str | None = None,
    ) -> User:
        """First-time profile setup after a new account's code verification.

        Raises:
            InvalidInputError: Bad username, branch, batch or password.
            UsernameTakenError: Username belongs to another account.
            UserNotFoundError: No such user.
        """
        return self._save(
            user_id,
            username,
            roll_number,
            batch,
            branch,
            password,
            mark_completed=True,
            event=SecurityEvent.PROFILE_COMPLETED,
        )

    def update_profile(
        self,
        user_id: UUID,
        username: str | None,
        roll_number: str | None = None,
        batch: str | None = None,
        branch: str | None = None,
        new_password: str | None = None,
    ) -> User:
        """Edit an existing profile. Same validation as complete_profile."""
        return self._save(
            user_id,
            username,
            roll_number,
            batch,
            branch,
            new_password,
            mark_completed=False,
            event=SecurityEvent.PROFILE_UPDATED,
        )

    def _save(
        self,
        user_id: UUID,
        username: str | None,
        roll_number: str | None,
        batch: str | None,
        branch: str | None,
        password: str | None,
        mark_completed: bool,
        event: SecurityEvent,
    ) -> User:
        fields = self._validated_fields(username, roll_number, batch, branch)

        password_hash = None
        if password:
            if len(password) < self._config.min_password_length:
                raise InvalidInputError(
                    f"Password must be at least {self._config.min_password_length} characters"
                )
            password_hash = self._password_hasher.hash(password)

        if self._auth_db.username_taken(fields["username"], exclude_user_id=user_id):
            raise UsernameTakenError("Username is already taken")

        user = self._auth_db.update_profile(
            user_id,
            fields,
            password_hash=password_hash,
            mark_completed=mark_completed,
        )
        if user is None:
            raise UserNotFoundError("User not found")

        self._security_logger.log(
            event,
            email=user.email,
            user_id=user.id,
            details={"password_set": password_hash is not None},
        )
        return user

    def _validated_fields(
        self,
        username: str | None,
        roll_number: str | None,
        batch: str | None,
        branch: str | None,
    ) -> dict[str, str | None]:
        username = (username or "").strip()
        if not username:
            raise InvalidInputError("Username is required")
        if branch and branch not in self._config.branches:
            raise InvalidInputError("Invalid branch")
        if batch and batch not in self._config.batches:
            raise InvalidInputError("Invalid batch")

        return {
            "username": username,
            "roll_number": (roll_number or "").strip() or None,
            "batch": batch or None,
            "branch": branch or None,
        }
