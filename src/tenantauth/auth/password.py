"""Password hashing utilities.

Learn: Uses Argon2id (argon2-cffi) — memory-hard, salted, and
self-describing: the algorithm, version, cost parameters and salt are
all embedded in the stored string ($argon2id$v=19$m=...,t=...,p=...$...),
so raising the cost later never invalidates existing hashes. Hashes made
with older parameters are re-hashed on the next successful login.

Timing: verify_dummy() runs a full Argon2 verification against a fixed
hash. Login calls it when the email is unknown, so "no such user" costs
the same as "wrong password" and response time can't enumerate accounts.
"""

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from tenantauth.config import Settings


class PasswordHasher:
    """One-way credential hashing and constant-cost verification."""

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self._argon2 = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        # Same parameters as real hashes, so dummy verification costs the same
        self._dummy_hash = self._argon2.hash("tenantauth-timing-dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    def hash(self, password: str) -> str:
        """Hash a password with Argon2id and a fresh random salt."""
        return self._argon2.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """Verify a password against its stored hash. Never raises.

        Anything that isn't an Argon2 hash simply fails to verify.
        Use needs_rehash() to check if a hash should be re-hashed.
        """
        try:
            return self._argon2.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def verify_dummy(self, password: str) -> bool:
        """Burn one verification's worth of work. Always False."""
        self.verify(self._dummy_hash, password)
        return False

    def needs_rehash(self, password_hash: str) -> bool:
        """True when the hash was made with different Argon2 parameters."""
        try:
            return self._argon2.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True
