"""Run configuration: load profiles, target resolution and checks.

Everything here is validated eagerly and raises ``ConfigError`` before
the engine admits a single virtual user.
"""

from __future__ import annotations

from stampede.options.checks import Check, build_checks, parse_check, status_is
from stampede.options.loader import RunOptions, load_options, load_options_file, read_options_file
from stampede.options.profile import (
    FixedProfile,
    LoadProfile,
    Stage,
    StagedProfile,
    build_stages,
    parse_duration,
)
from stampede.options.target import resolve_target

__all__ = [
    "Check",
    "FixedProfile",
    "LoadProfile",
    "RunOptions",
    "Stage",
    "StagedProfile",
    "build_checks",
    "build_stages",
    "load_options",
    "load_options_file",
    "parse_check",
    "parse_duration",
    "read_options_file",
    "resolve_target",
    "status_is",
]
