"""Load profiles: a fixed population with an iteration budget, or staged ramps."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from stampede._internal.errors import ConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float) -> float:
    """Convert a duration to seconds.

    Accepts plain numbers (seconds) and unit strings made of one or more
    ``<number><unit>`` parts, with units ``ms``, ``s``, ``m`` and ``h``:
    ``"10s"``, ``"1m30s"``, ``"500ms"``, ``"1.5h"``.

    Raises:
        ConfigError: If the value is malformed, negative or not finite.
    """
    if isinstance(value, bool):
        msg = f"Invalid duration: {value!r}"
        raise ConfigError(msg)

    if isinstance(value, int | float):
        seconds = float(value)
    else:
        text = value.strip().lower()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
                pos = match.end()
            if not text or pos != len(text):
                msg = f"Invalid duration: {value!r} (expected e.g. '10s', '1m30s', '500ms')"
                raise ConfigError(msg) from None

    if not math.isfinite(seconds):
        msg = f"Duration must be a finite number of seconds, got {value!r}"
        raise ConfigError(msg)
    if seconds < 0:
        msg = f"Duration must be non-negative, got {value!r}"
        raise ConfigError(msg)
    return seconds


@dataclass(frozen=True)
class Stage:
    """One ramp segment: reach *target* users over *duration* seconds."""

    duration: float
    target: int

    def __post_init__(self) -> None:
        if not math.isfinite(self.duration) or self.duration < 0:
            msg = f"Stage duration must be a non-negative number of seconds, got {self.duration}"
            raise ConfigError(msg)
        if self.target < 0:
            msg = f"Stage target must be non-negative, got {self.target}"
            raise ConfigError(msg)


@dataclass(frozen=True)
class FixedProfile:
    """A constant population draining one shared iteration budget.

    Attributes:
        concurrency: Number of virtual users admitted at start.
        iterations: Total iterations shared by all users.
    """

    concurrency: int
    iterations: int

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            msg = f"concurrency must be >= 1, got {self.concurrency}"
            raise ConfigError(msg)
        if self.iterations < 1:
            msg = f"iterations must be >= 1, got {self.iterations}"
            raise ConfigError(msg)

    def describe(self) -> str:
        return f"Fixed: {self.concurrency} users sharing {self.iterations} iterations"


@dataclass(frozen=True)
class StagedProfile:
    """An ordered list of ramp stages, starting from zero users."""

    stages: tuple[Stage, ...]

    def __post_init__(self) -> None:
        if not self.stages:
            msg = "stages must contain at least one stage"
            raise ConfigError(msg)

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    def describe(self) -> str:
        ramps = ", ".join(f"{s.duration:g}s->{s.target}" for s in self.stages)
        return f"Staged: {ramps}"


LoadProfile = FixedProfile | StagedProfile


def build_stages(raw_stages: Sequence[object]) -> tuple[Stage, ...]:
    """Build stages from mappings, ``(duration, target)`` pairs or ``"10s:50"`` strings.

    Raises:
        ConfigError: If any entry is malformed.
    """
    stages: list[Stage] = []
    for i, raw in enumerate(raw_stages):
        if isinstance(raw, Stage):
            stages.append(raw)
            continue
        if isinstance(raw, str):
            duration_text, sep, target_text = raw.rpartition(":")
            if not sep:
                msg = f"stages[{i}]: expected 'DURATION:TARGET', got {raw!r}"
                raise ConfigError(msg)
            duration_raw: object = duration_text
            target_raw: object = target_text.strip()
        elif isinstance(raw, dict):
            unknown = set(raw) - {"duration", "target"}
            if unknown:
                msg = f"stages[{i}]: unknown fields {sorted(unknown)}"
                raise ConfigError(msg)
            if "duration" not in raw or "target" not in raw:
                msg = f"stages[{i}]: both 'duration' and 'target' are required"
                raise ConfigError(msg)
            duration_raw, target_raw = raw["duration"], raw["target"]
        elif isinstance(raw, tuple | list) and len(raw) == 2:
            duration_raw, target_raw = raw
        else:
            msg = f"stages[{i}]: unsupported stage definition {raw!r}"
            raise ConfigError(msg)

        if not isinstance(duration_raw, str | int | float):
            msg = f"stages[{i}]: invalid duration {duration_raw!r}"
            raise ConfigError(msg)
        stages.append(Stage(duration=parse_duration(duration_raw), target=_as_int(target_raw, i)))
    return tuple(stages)


def _as_int(value: object, index: int) -> int:
    if isinstance(value, bool):
        msg = f"stages[{index}]: target must be an integer, got {value!r}"
        raise ConfigError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    msg = f"stages[{index}]: target must be an integer, got {value!r}"
    raise ConfigError(msg)
