"""Password hashing with argon2id.

Verification is constant-time inside argon2. When an account has no stored
hash a dummy verification still runs, so "no password set" and "wrong
password" take the same time.
"""

from argon2 import PasswordHasher as _Argon2Hasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError


class PasswordHasher:
    """Hash and verify account passwords."""

    def __init__(self, hasher: _Argon2Hasher | None = None):
        self._hasher = hasher or _Argon2Hasher(type=Type.ID)
        self._dummy_hash = self._hasher.hash("alt-auth-dummy-password")

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, stored_hash: str | None) -> bool:
        """True only if stored_hash is a valid argon2 hash of password."""
        if not stored_hash:
            self._burn(password)
            return False
        try:
            return self._hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            self._burn(password)
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        return self._hasher.check_needs_rehash(stored_hash)

    def _burn(self, password: str) -> None:
        try:
            self._hasher.verify(self._dummy_hash, password)
        except VerifyMismatchError:
            pass
