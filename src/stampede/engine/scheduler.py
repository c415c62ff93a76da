"""Turns a LoadPattern's timeline into scale commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from stampede.patterns.base import LoadPattern


@dataclass(frozen=True)
class ScaleCommand:
    """Bring the active population to ``target_concurrency`` at ``elapsed_seconds``."""

    elapsed_seconds: float
    target_concurrency: int


class Scheduler:
    """Emits one ``ScaleCommand`` per pattern tick, in time order.

    Consecutive ticks with the same target still produce a command: the
    session re-applies it, which retries admissions that failed earlier.

    Args:
        pattern: The concurrency pattern to follow.
        tick_interval: Maximum seconds between commands.
    """

    def __init__(self, pattern: LoadPattern, tick_interval: float = 1.0) -> None:
        self._pattern = pattern
        self._tick_interval = tick_interval

    def iter_commands(self) -> Iterator[ScaleCommand]:
        for elapsed, target in self._pattern.iter_concurrency(self._tick_interval):
            yield ScaleCommand(elapsed_seconds=elapsed, target_concurrency=target)
