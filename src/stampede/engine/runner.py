"""Blocking entry point: event loop setup, run, and exit-code policy."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TYPE_CHECKING, Any

from stampede._internal.config import load_config
from stampede._internal.logging import get_logger, setup_logging
from stampede.engine.session import LoadTestSession

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

    from stampede._internal.config import EngineConfig
    from stampede.engine.executor import Executor
    from stampede.metrics.models import IntervalSnapshot, RunSummary
    from stampede.options.loader import RunOptions

logger = get_logger("engine.runner")

EXIT_OK = 0
EXIT_THRESHOLD_EXCEEDED = 1
EXIT_ENGINE_ERROR = 1
EXIT_CONFIG_ERROR = 2


def _run_in_loop(coro: Coroutine[Any, Any, RunSummary], *, use_uvloop: bool) -> RunSummary:
    """Run *coro* on uvloop where available, else on the default asyncio loop."""
    if use_uvloop and sys.platform != "win32":
        import uvloop

        logger.debug("Running on uvloop")
        return uvloop.run(coro)
    return asyncio.run(coro)


def run_load_test(
    options: RunOptions,
    *,
    config: EngineConfig | None = None,
    executor: Executor | None = None,
    on_snapshot: Callable[[IntervalSnapshot], None] | None = None,
    log_level: int = logging.INFO,
    json_logs: bool = False,
    use_uvloop: bool = True,
) -> RunSummary:
    """Run a load test to completion in a fresh event loop.

    Args:
        options: Validated run options.
        config: Engine configuration. Read from the environment if omitted.
        executor: Optional executor override, mainly for tests.
        on_snapshot: Optional callback invoked with every interval snapshot.
        log_level: Logging level for the ``stampede`` namespace.
        json_logs: Emit JSON log lines instead of plain text.
        use_uvloop: Run on uvloop (ignored on Windows).

    Returns:
        The run summary.

    Raises:
        ConfigError: On invalid configuration, before any request is sent.
        EngineError: If the run fails.
    """
    setup_logging(level=log_level, json_format=json_logs)
    if config is None:
        config = load_config()
    session = LoadTestSession(
        options,
        config=config,
        executor=executor,
        on_snapshot=on_snapshot,
    )
    return _run_in_loop(session.run(), use_uvloop=use_uvloop)


def exit_code_for(summary: RunSummary, fail_on_error_rate: float | None) -> int:
    """Map a finished run to a process exit code.

    Returns:
        ``EXIT_OK`` unless a threshold is set and the failure rate is
        above it, in which case ``EXIT_THRESHOLD_EXCEEDED``.
    """
    if summary.exceeds(fail_on_error_rate):
        logger.warning(
            "Failure rate %.2f%% exceeds threshold %.2f%%",
            summary.failure_rate * 100,
            (fail_on_error_rate or 0.0) * 100,
        )
        return EXIT_THRESHOLD_EXCEEDED
    return EXIT_OK
