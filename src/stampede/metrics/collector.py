"""Thread-safe, append-only sink for request outcomes."""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stampede.metrics.models import RequestOutcome


class OutcomeCollector:
    """Receives outcomes from every virtual user.

    ``record`` is the callback handed to virtual users. Each outcome is
    appended once to a pending queue (drained by the aggregator every
    tick) and once to the run-long history. A ``threading.Lock`` guards
    both, so writers on other threads or event loops cannot interleave.
    """

    def __init__(self) -> None:
        self._pending: deque[RequestOutcome] = deque()
        self._history: list[RequestOutcome] = []
        self._lock = threading.Lock()

    def record(self, outcome: RequestOutcome) -> None:
        with self._lock:
            self._pending.append(outcome)
            self._history.append(outcome)

    def drain(self) -> list[RequestOutcome]:
        """Remove and return every outcome recorded since the last drain."""
        with self._lock:
            drained = list(self._pending)
            self._pending.clear()
        return drained

    def outcomes(self) -> list[RequestOutcome]:
        """Return a copy of every outcome recorded so far, in arrival order."""
        with self._lock:
            return list(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)
