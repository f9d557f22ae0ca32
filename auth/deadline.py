"""
auth/deadline.py -- Caller-supplied cancellation and deadline signal.

Every public core operation accepts an optional Deadline. Operations call
check() before each repository call and right before a transaction commits.
A tripped deadline raises OperationCancelled; raised inside
Database.transaction() it rolls the whole unit back, so a cancelled
registration never leaves a partial commit.

The HTTP layer creates one Deadline per request from REQUEST_TIMEOUT_SECONDS.
cancel() is safe to call from another thread.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from core.errors import OperationCancelled


class Deadline:
    def __init__(self, timeout: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, operation: str = "") -> None:
        """Raise OperationCancelled if the caller cancelled or the deadline passed."""
        if self.cancelled:
            raise OperationCancelled(f"{operation or 'operation'} cancelled by caller")
        if self.expired:
            raise OperationCancelled(f"{operation or 'operation'} exceeded its deadline")


def check(deadline: Deadline | None, operation: str = "") -> None:
    """check() that tolerates callers who passed no deadline."""
    if deadline is not None:
        deadline.check(operation)
