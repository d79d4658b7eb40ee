"""
Password Hashing

bcrypt hashing on a bounded thread pool. A work factor of 12 costs a few
hundred milliseconds of CPU per call, which must never run on the event
loop itself.

Accounts created before bcrypt was introduced store SHA-256(password +
salt) hex digests. Those verify only when PASSWORD_LEGACY_SALT is set and
are upgraded to bcrypt by the login flow.
"""

import asyncio
import hashlib
import hmac
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Optional

import bcrypt

from app.core.config import get_settings

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def is_bcrypt_hash(stored_hash: str) -> bool:
    return stored_hash.startswith("$2")


class PasswordHasher:
    """
    Salted one-way password hashing.

    Args:
        rounds: bcrypt work factor (log2 iterations)
        max_workers: Threads available for hashing
        legacy_salt: Salt of old SHA-256 hashes, None disables them
    """

    def __init__(self, rounds: int = 12, max_workers: int = 4, legacy_salt: Optional[str] = None):
        self.rounds = rounds
        self.legacy_salt = legacy_salt
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pwhash")
        self._dummy_hash: Optional[bytes] = None

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _hash_sync(self, password: str) -> str:
        return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def _legacy_digest(self, password: str) -> str:
        return hashlib.sha256((password + self.legacy_salt).encode("utf-8")).hexdigest()

    def _verify_sync(self, password: str, stored_hash: str) -> bool:
        if is_bcrypt_hash(stored_hash):
            try:
                return bcrypt.checkpw(_encode(password), stored_hash.encode("utf-8"))
            except ValueError:
                logger.warning("Stored bcrypt hash is malformed")
                return False

        if not self.legacy_salt:
            logger.error("Legacy password hash found but PASSWORD_LEGACY_SALT is not configured")
            return False
        return hmac.compare_digest(self._legacy_digest(password), stored_hash)

    async def hash(self, password: str) -> str:
        """Hash a plaintext password."""
        return await self._run(self._hash_sync, password)

    async def verify(self, password: str, stored_hash: str) -> bool:
        """Check a plaintext password against a bcrypt or legacy hash."""
        return await self._run(self._verify_sync, password, stored_hash)

    async def burn(self, password: str) -> None:
        """
        Spend the same work as a real check against a throwaway hash.

        Used when the account does not exist, so response timing does not
        reveal which emails are registered.
        """
        if self._dummy_hash is None:
            self._dummy_hash = (await self.hash("not-a-real-password")).encode("utf-8")
        await self._run(bcrypt.checkpw, _encode(password), self._dummy_hash)

    def needs_upgrade(self, stored_hash: str) -> bool:
        return not is_bcrypt_hash(stored_hash)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


@lru_cache()
def get_password_hasher() -> PasswordHasher:
    """Process-wide hasher so the thread pool stays bounded."""
    settings = get_settings()
    return PasswordHasher(
        rounds=settings.bcrypt_rounds,
        max_workers=settings.password_hash_workers,
        legacy_salt=settings.password_legacy_salt,
    )
