from __future__ import annotations

import secrets
from typing import Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import HashingError as Argon2HashingError
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from papacatzzi.config import Settings
from papacatzzi.logging import get_logger
from papacatzzi.service.errors import HashingError

logger = get_logger(__name__)


class CredentialHasher:
    """argon2id password hashing.

    Both operations are CPU-bound. Async callers run them through
    ``asyncio.to_thread``.
    """

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._dummy_digest: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialHasher":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, plaintext: str) -> str:
        try:
            return self._hasher.hash(plaintext)
        except Argon2HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingError("password hashing failed") from exc

    def verify(self, digest: str, plaintext: str) -> bool:
        """``False`` on mismatch; ``HashingError`` when ``digest`` is not an argon2 hash."""
        try:
            return self._hasher.verify(digest, plaintext)
        except VerifyMismatchError:
            return False
        except InvalidHash as exc:
            logger.error("password_digest_malformed")
            raise HashingError("stored password digest is malformed") from exc
        except VerificationError:
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Spend one verification on a throwaway digest. Always ``False``.

        Login calls this when no usable account exists so that path costs the
        same as a wrong password.
        """
        if self._dummy_digest is None:
            self._dummy_digest = self.hash(secrets.token_urlsafe(32))
        self.verify(self._dummy_digest, plaintext)
        return False

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(digest)
        except InvalidHash:
            return False
