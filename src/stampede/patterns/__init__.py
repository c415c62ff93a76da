"""Concurrency patterns for Stampede.

Patterns implement :class:`LoadPattern` and yield
``(elapsed_seconds, target_concurrency)`` tuples via
:meth:`~LoadPattern.iter_concurrency`.
"""

from __future__ import annotations

from stampede.patterns.base import LoadPattern
from stampede.patterns.staged import StagedPattern

__all__ = [
    "LoadPattern",
    "StagedPattern",
]
