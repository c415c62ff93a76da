"""Staged pattern: piecewise-linear ramps between stage targets."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stampede.patterns.base import LoadPattern, _validate_positive

if TYPE_CHECKING:
    from collections.abc import Iterator

    from stampede.options.profile import StagedProfile

# Float slack when comparing tick times against stage boundaries.
_EPSILON = 1e-9


class StagedPattern(LoadPattern):
    """Ramp concurrency linearly from one stage target to the next.

    The pattern starts at 0 users. Each stage moves from the previous
    stage's target to its own over its duration; a zero-duration stage
    jumps immediately. Ticks restart at every stage boundary, and the
    boundary itself is always emitted with the exact stage target.

    Example::

        profile = StagedProfile(stages=(Stage(10.0, 50), Stage(10.0, 0)))
        ticks = list(StagedPattern(profile).iter_concurrency(tick_interval=5.0))
        # [(0.0, 0), (5.0, 25), (10.0, 50), (15.0, 25), (20.0, 0)]
    """

    def __init__(self, profile: StagedProfile) -> None:
        self._profile = profile
        self._stages = profile.stages

    @property
    def duration(self) -> float:
        return self._profile.total_duration

    def iter_concurrency(self, tick_interval: float = 1.0) -> Iterator[tuple[float, int]]:
        _validate_positive(tick_interval, "tick_interval")

        if self._stages[0].duration > 0:
            yield (0.0, 0)

        offset = 0.0
        previous = 0
        for stage in self._stages:
            if stage.duration > 0:
                step = 1
                while step * tick_interval < stage.duration - _EPSILON:
                    local = step * tick_interval
                    fraction = local / stage.duration
                    users = round(previous + (stage.target - previous) * fraction)
                    yield (offset + local, users)
                    step += 1
            yield (offset + stage.duration, stage.target)
            offset += stage.duration
            previous = stage.target

    def bounds_at(self, elapsed: float) -> tuple[int, int]:
        """Bounds from every stage whose time span covers *elapsed*.

        At a boundary shared by two stages both spans count. Past the
        end of the profile the bounds run from 0 (everyone stopped) to
        the last target.
        """
        low: int | None = None
        high: int | None = None
        offset = 0.0
        previous = 0
        for stage in self._stages:
            end = offset + stage.duration
            if offset - _EPSILON <= elapsed <= end + _EPSILON:
                stage_low = min(previous, stage.target)
                stage_high = max(previous, stage.target)
                low = stage_low if low is None else min(low, stage_low)
                high = stage_high if high is None else max(high, stage_high)
            offset = end
            previous = stage.target

        if low is None or high is None:
            return (0, previous)
        return (low, high)

    def describe(self) -> str:
        return self._profile.describe()
