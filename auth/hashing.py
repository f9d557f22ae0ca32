"""
auth/hashing.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which current
bcrypt releases reject with an explicit error. hash() refuses such input with
PasswordTooLong instead of letting bcrypt truncate or raise.

bcrypt.checkpw compares digests in constant time. The dummy hash lets callers
spend the same bcrypt work when a principal does not exist, so response time
does not reveal whether an email is registered.

Hashing is CPU-bound and deliberately slow. Callers must not hold a lock or an
open transaction across hash() or verify().
"""

from __future__ import annotations

import bcrypt

from core.errors import PasswordTooLong

# bcrypt reads at most this many bytes; bcrypt 5 raises above it.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """One-way password hashing. Stateless apart from the cost factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Computed once so the first failed lookup is not measurably slower
        # than later ones.
        self._dummy_hash = self.hash("identity-rbac-timing-dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt digest of the plaintext password.

        Raises PasswordTooLong above 72 UTF-8 bytes, which bcrypt refuses to
        hash. The API layer applies the same limit during request validation.
        """
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise PasswordTooLong(f"password exceeds {MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, hashed: str, plain: str) -> bool:
        """Return True if the plaintext matches the digest.

        Malformed digests and over-long input never match. Over-long input
        still costs one bcrypt round trip so it is not faster to reject.
        """
        encoded = plain.encode("utf-8")
        too_long = len(encoded) > MAX_PASSWORD_BYTES
        try:
            matched = bcrypt.checkpw(encoded[:MAX_PASSWORD_BYTES], hashed.encode("utf-8"))
        except ValueError:
            return False
        return matched and not too_long

    def dummy_verify(self, plain: str) -> None:
        """Burn one verification's worth of bcrypt work. Always call on lookup misses."""
        self.verify(self._dummy_hash, plain)
