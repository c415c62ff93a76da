"""Abstract base class for concurrency patterns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from stampede._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Iterator


class LoadPattern(ABC):
    """How the target number of virtual users changes over time.

    Concrete patterns yield ``(elapsed_seconds, target_concurrency)``
    ticks that the scheduler turns into scale commands.
    """

    @property
    @abstractmethod
    def duration(self) -> float:
        """Total length of the pattern in seconds."""

    @abstractmethod
    def iter_concurrency(self, tick_interval: float = 1.0) -> Iterator[tuple[float, int]]:
        """Yield ``(elapsed_seconds, target_concurrency)`` ticks in time order.

        Args:
            tick_interval: Maximum spacing between consecutive ticks.
        """

    @abstractmethod
    def bounds_at(self, elapsed: float) -> tuple[int, int]:
        """Return the ``(low, high)`` concurrency allowed at *elapsed* seconds."""

    @abstractmethod
    def describe(self) -> str:
        """Return a short description for logs and summary headers."""


def _validate_positive(value: float, name: str) -> None:
    """Raise :class:`ConfigError` if *value* is not strictly positive."""
    if value <= 0:
        msg = f"{name} must be positive, got {value}"
        raise ConfigError(msg)
