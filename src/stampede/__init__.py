"""Stampede: a virtual-user HTTP load-generation engine."""

from __future__ import annotations

from stampede._internal.errors import (
    CheckFailure,
    ConfigError,
    EngineError,
    NetworkError,
    ResourceExhaustion,
    StampedeError,
)
from stampede.engine.executor import HttpResponse, RequestExecutor
from stampede.engine.runner import run_load_test
from stampede.engine.session import LoadTestSession
from stampede.metrics.models import CheckStatus, RequestOutcome, RunSummary
from stampede.options import (
    Check,
    FixedProfile,
    RunOptions,
    Stage,
    StagedProfile,
    load_options,
    parse_check,
    resolve_target,
    status_is,
)

__version__ = "0.1.0"

__all__ = [
    "Check",
    "CheckFailure",
    "CheckStatus",
    "ConfigError",
    "EngineError",
    "FixedProfile",
    "HttpResponse",
    "LoadTestSession",
    "NetworkError",
    "RequestExecutor",
    "RequestOutcome",
    "ResourceExhaustion",
    "RunOptions",
    "RunSummary",
    "Stage",
    "StagedProfile",
    "StampedeError",
    "load_options",
    "parse_check",
    "resolve_target",
    "run_load_test",
    "status_is",
]
