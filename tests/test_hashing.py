"""
tests/test_hashing.py -- Unit tests for auth/hashing.py and auth/deadline.py.
"""

from __future__ import annotations

import pytest

from auth.deadline import Deadline, check
from auth.hashing import MAX_PASSWORD_BYTES, PasswordHasher
from core.errors import OperationCancelled, PasswordTooLong


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


class TestPasswordHasher:
    def test_hash_is_salted(self, hasher: PasswordHasher) -> None:
        first, second = hasher.hash("s3cret-pass"), hasher.hash("s3cret-pass")
        assert first != second
        assert "s3cret-pass" not in first

    def test_verify(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("s3cret-pass")
        assert hasher.verify(digest, "s3cret-pass")
        assert not hasher.verify(digest, "S3cret-pass")

    def test_malformed_digest_never_matches(self, hasher: PasswordHasher) -> None:
        assert hasher.verify("not-a-bcrypt-hash", "anything") is False

    def test_cost_factor_is_used(self, hasher: PasswordHasher) -> None:
        assert hasher.hash("x").startswith("$2b$04$")

    def test_dummy_verify_returns_nothing(self, hasher: PasswordHasher) -> None:
        assert hasher.dummy_verify("whatever") is None

    def test_multibyte_password_at_limit(self, hasher: PasswordHasher) -> None:
        password = "é" * 36
        assert len(password.encode("utf-8")) == MAX_PASSWORD_BYTES
        assert hasher.verify(hasher.hash(password), password)

    def test_over_long_password_rejected(self, hasher: PasswordHasher) -> None:
        with pytest.raises(PasswordTooLong):
            hasher.hash("é" * 72)

    def test_over_long_password_never_matches(self, hasher: PasswordHasher) -> None:
        digest = hasher.hash("a" * 72)
        assert hasher.verify(digest, "a" * 73) is False


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


class TestDeadline:
    def test_no_limit_never_expires(self) -> None:
        deadline = Deadline()
        assert not deadline.expired
        deadline.check("op")

    def test_expires_after_timeout(self) -> None:
        clock = FakeMonotonic()
        deadline = Deadline(timeout=5, clock=clock)
        clock.value += 4
        assert not deadline.expired
        clock.value += 1
        assert deadline.expired
        with pytest.raises(OperationCancelled, match="deadline"):
            deadline.check("register")

    def test_cancel(self) -> None:
        deadline = Deadline(timeout=60)
        deadline.cancel()
        assert deadline.cancelled
        with pytest.raises(OperationCancelled, match="cancelled"):
            deadline.check("login")

    def test_module_check_tolerates_none(self) -> None:
        check(None, "anything")
