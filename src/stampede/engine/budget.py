"""Shared iteration budget for fixed-mode runs."""

from __future__ import annotations

import threading

from stampede._internal.errors import EngineError


class IterationBudget:
    """A counter of remaining iterations, claimed one at a time.

    ``claim`` is a mutex-guarded decrement-and-check with a floor at zero:
    two users can never both take the last unit, and the counter never
    goes negative. A negative value means something bypassed ``claim``
    and is reported as an ``EngineError``.

    Attributes:
        total: The budget size the run started with.
    """

    def __init__(self, total: int) -> None:
        if total < 0:
            msg = f"Iteration budget must be non-negative, got {total}"
            raise ValueError(msg)
        self.total = total
        self._remaining = total
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    def claim(self) -> bool:
        """Take one iteration. Returns False once the budget is spent.

        Raises:
            EngineError: If the counter is found below zero.
        """
        with self._lock:
            if self._remaining < 0:
                msg = f"Iteration budget corrupted: remaining={self._remaining}"
                raise EngineError(msg)
            if self._remaining == 0:
                return False
            self._remaining -= 1
            return True
