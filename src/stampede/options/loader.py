"""Typed run options, built from mappings or JSON option files."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from stampede._internal.errors import ConfigError
from stampede.options.checks import build_checks
from stampede.options.profile import FixedProfile, StagedProfile, build_stages, parse_duration

if TYPE_CHECKING:
    from collections.abc import Mapping

    from stampede.options.checks import Check
    from stampede.options.profile import LoadProfile

_FIXED_FIELDS = frozenset({"concurrency", "vus", "iterations"})
_KNOWN_FIELDS = _FIXED_FIELDS | {
    "stages",
    "target",
    "sleep",
    "checks",
    "run_timeout",
    "fail_on_error_rate",
}


@dataclass(frozen=True)
class RunOptions:
    """Everything one run needs, validated up front.

    Attributes:
        profile: Fixed or staged load profile.
        target: Explicit target URL. None defers to the environment.
        sleep: Pacing delay between a user's iterations, in seconds.
        checks: Checks evaluated against every response.
        run_timeout: Cancel every user after this many seconds, if set.
        fail_on_error_rate: Failure-rate threshold (0.0-1.0) for a
            non-zero exit, if set.
    """

    profile: LoadProfile
    target: str | None = None
    sleep: float = 0.0
    checks: tuple[Check, ...] = field(default_factory=tuple)
    run_timeout: float | None = None
    fail_on_error_rate: float | None = None

    def __post_init__(self) -> None:
        if not math.isfinite(self.sleep) or self.sleep < 0:
            msg = f"sleep must be a non-negative number of seconds, got {self.sleep}"
            raise ConfigError(msg)
        if self.run_timeout is not None and not 0 < self.run_timeout < math.inf:
            msg = f"run_timeout must be a positive number of seconds, got {self.run_timeout}"
            raise ConfigError(msg)
        if self.fail_on_error_rate is not None and not 0.0 <= self.fail_on_error_rate <= 1.0:
            msg = f"fail_on_error_rate must be between 0 and 1, got {self.fail_on_error_rate}"
            raise ConfigError(msg)


def load_options(data: Mapping[str, object]) -> RunOptions:
    """Validate a raw options mapping and build ``RunOptions``.

    Fixed mode is selected by ``concurrency`` (alias ``vus``) together
    with ``iterations``; staged mode by ``stages``. The two are mutually
    exclusive, and unknown keys are rejected.

    Example::

        load_options({"vus": 800, "iterations": 10000, "checks": ["status == 200"]})
        load_options({"stages": [{"duration": "10s", "target": 50}], "sleep": 0.1})

    Raises:
        ConfigError: On unknown, missing, conflicting or invalid fields.
    """
    unknown = set(data) - _KNOWN_FIELDS
    if unknown:
        msg = f"Unknown option(s): {', '.join(sorted(unknown))}"
        raise ConfigError(msg)

    fixed_keys = _FIXED_FIELDS & set(data)
    if fixed_keys and "stages" in data:
        msg = f"'stages' cannot be combined with {sorted(fixed_keys)}"
        raise ConfigError(msg)

    profile: LoadProfile
    if "stages" in data:
        raw_stages = data["stages"]
        if not isinstance(raw_stages, list | tuple):
            msg = "'stages' must be a list"
            raise ConfigError(msg)
        profile = StagedProfile(stages=build_stages(raw_stages))
    elif fixed_keys:
        if "concurrency" in data and "vus" in data:
            msg = "'vus' is an alias of 'concurrency'; give only one"
            raise ConfigError(msg)
        concurrency = data.get("concurrency", data.get("vus"))
        if concurrency is None or "iterations" not in data:
            msg = "Fixed mode needs both 'concurrency' (or 'vus') and 'iterations'"
            raise ConfigError(msg)
        profile = FixedProfile(
            concurrency=_int_option("concurrency", concurrency),
            iterations=_int_option("iterations", data["iterations"]),
        )
    else:
        msg = "Options must define either 'stages' or 'concurrency'/'iterations'"
        raise ConfigError(msg)

    target = data.get("target")
    if target is not None and not isinstance(target, str):
        msg = f"'target' must be a string, got {target!r}"
        raise ConfigError(msg)

    return RunOptions(
        profile=profile,
        target=target,
        sleep=_duration_option("sleep", data.get("sleep", 0.0)),
        checks=build_checks(data.get("checks")),
        run_timeout=_optional_duration("run_timeout", data.get("run_timeout")),
        fail_on_error_rate=_optional_float("fail_on_error_rate", data.get("fail_on_error_rate")),
    )


def read_options_file(path: str | Path) -> dict[str, object]:
    """Read a JSON options file into a raw mapping, without validating fields.

    Raises:
        ConfigError: If the file is missing, not JSON, or not an object.
    """
    file_path = Path(path)
    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        msg = f"Options file not found: {file_path}"
        raise ConfigError(msg) from None
    except json.JSONDecodeError as exc:
        msg = f"Options file {file_path} is not valid JSON: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(raw, dict):
        msg = f"Options file {file_path} must contain a JSON object"
        raise ConfigError(msg)
    return raw


def load_options_file(path: str | Path) -> RunOptions:
    """Read a JSON options file and validate it with :func:`load_options`.

    Raises:
        ConfigError: If the file is missing, not JSON, or invalid.
    """
    return load_options(read_options_file(path))


def _int_option(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"'{name}' must be an integer, got {value!r}"
        raise ConfigError(msg)
    return value


def _duration_option(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, str | int | float):
        msg = f"'{name}' must be a duration, got {value!r}"
        raise ConfigError(msg)
    return parse_duration(value)


def _optional_duration(name: str, value: object) -> float | None:
    if value is None:
        return None
    return _duration_option(name, value)


def _optional_float(name: str, value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        msg = f"'{name}' must be a number, got {value!r}"
        raise ConfigError(msg)
    return float(value)
