"""Run session lifecycle: population scheduling, shutdown and signal handling."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
import threading
import time
from enum import Enum, auto
from typing import TYPE_CHECKING

from stampede._internal.config import load_config
from stampede._internal.errors import EngineError, ResourceExhaustion, StampedeError
from stampede._internal.logging import get_logger
from stampede.engine.budget import IterationBudget
from stampede.engine.executor import RequestExecutor
from stampede.engine.scheduler import Scheduler
from stampede.engine.user import VirtualUser
from stampede.metrics.aggregator import MetricAggregator
from stampede.metrics.collector import OutcomeCollector
from stampede.options.profile import FixedProfile
from stampede.options.target import resolve_target
from stampede.patterns.staged import StagedPattern

if TYPE_CHECKING:
    from collections.abc import Callable

    from stampede._internal.config import EngineConfig
    from stampede.engine.executor import Executor
    from stampede.metrics.models import IntervalSnapshot, RunSummary
    from stampede.options.loader import RunOptions
    from stampede.options.profile import StagedProfile

logger = get_logger("engine.session")

_UserEntry = tuple[VirtualUser, "asyncio.Task[None]"]


class SessionState(Enum):
    """State machine for a run session."""

    CREATED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOPPING = auto()
    COMPLETED = auto()
    FAILED = auto()


class LoadTestSession:
    """Runs one load profile against one target in the current event loop.

    Fixed profiles admit every user up front and let them drain a shared
    iteration budget. Staged profiles follow a ``Scheduler`` tick by tick,
    admitting users on the way up and cancelling the most recently
    admitted ones on the way down. Cancelled users finish their in-flight
    request in the background; the session waits for all of them before
    building the summary.

    State machine: CREATED -> STARTING -> RUNNING -> STOPPING -> COMPLETED
                                                  -> FAILED (on error)
    """

    def __init__(
        self,
        options: RunOptions,
        *,
        config: EngineConfig | None = None,
        executor: Executor | None = None,
        on_snapshot: Callable[[IntervalSnapshot], None] | None = None,
        handle_signals: bool = True,
    ) -> None:
        """Initialize a session.

        Args:
            options: Validated run options.
            config: Engine configuration. Loaded from the environment
                when omitted.
            executor: Executor shared by all users. A ``RequestExecutor``
                built from the options and config is used when omitted.
            on_snapshot: Optional callback invoked with every interval
                snapshot.
            handle_signals: Install SIGINT/SIGTERM handlers for a
                graceful stop while running.
        """
        self._options = options
        self._config = config if config is not None else load_config()
        self._executor = executor
        self._on_snapshot = on_snapshot
        self._handle_signals = handle_signals

        self._state = SessionState.CREATED
        self._collector = OutcomeCollector()
        self._active: list[_UserEntry] = []
        self._draining: list[_UserEntry] = []
        self._user_errors: list[BaseException] = []
        self._next_user_id = 0
        self._peak_concurrency = 0
        self._spawn_failures = 0
        self._exhaustion_reported = False
        self._timed_out = False
        self._stop_event = asyncio.Event()
        self._signals_installed = False

        self._endpoint = ""
        self._budget: IterationBudget | None = None
        self._run_executor: Executor | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active_user_count(self) -> int:
        """Users admitted and not yet cancelled or stopped."""
        return len(self._active)

    @property
    def peak_concurrency(self) -> int:
        return self._peak_concurrency

    @property
    def collector(self) -> OutcomeCollector:
        """The sink every outcome of this session is recorded into."""
        return self._collector

    @property
    def budget(self) -> IterationBudget | None:
        """The shared iteration budget (fixed mode only)."""
        return self._budget

    async def run(self) -> RunSummary:
        """Execute the whole run and return its summary.

        Raises:
            ConfigError: If the target cannot be resolved. Raised before
                any user is admitted or any request is sent.
            EngineError: If the session or a virtual user fails
                unexpectedly, or an engine invariant is violated.
        """
        if self._state is not SessionState.CREATED:
            msg = f"Session already used (state={self._state.name})"
            raise EngineError(msg)

        self._state = SessionState.STARTING
        try:
            self._endpoint = resolve_target(self._options.target, self._config.default_target)
        except StampedeError:
            self._state = SessionState.FAILED
            raise

        profile = self._options.profile
        aggregator = MetricAggregator(
            self._collector,
            check_names=[check.name for check in self._options.checks],
            on_snapshot=self._on_snapshot,
        )
        logger.info(
            "Starting run: target=%s, profile=%s, sleep=%.3fs, checks=%d",
            self._endpoint,
            profile.describe(),
            self._options.sleep,
            len(self._options.checks),
        )

        self._install_signal_handlers()
        timeout_handle: asyncio.TimerHandle | None = None
        start_time = time.monotonic()

        try:
            async with contextlib.AsyncExitStack() as stack:
                if self._executor is not None:
                    self._run_executor = self._executor
                else:
                    self._run_executor = await stack.enter_async_context(
                        RequestExecutor(
                            self._options.checks,
                            timeout=self._config.request_timeout,
                            pool_size=self._config.connection_pool_size,
                        )
                    )

                if self._options.run_timeout is not None:
                    timeout_handle = asyncio.get_running_loop().call_later(
                        self._options.run_timeout, self._on_run_timeout
                    )

                self._state = SessionState.RUNNING
                try:
                    if isinstance(profile, FixedProfile):
                        await self._run_fixed(profile, aggregator, start_time)
                    else:
                        await self._run_staged(profile, aggregator, start_time)
                finally:
                    self._state = SessionState.STOPPING
                    self._cancel_all()
                    await self._wait_for_users(aggregator, start_time)

                self._raise_user_errors()

        except StampedeError:
            self._state = SessionState.FAILED
            logger.exception("Run failed")
            raise
        except Exception as exc:
            self._state = SessionState.FAILED
            logger.exception("Run failed")
            raise EngineError("Run failed") from exc
        finally:
            if timeout_handle is not None:
                timeout_handle.cancel()
            self._remove_signal_handlers()

        duration = time.monotonic() - start_time
        summary = aggregator.summarize(
            profile_description=profile.describe(),
            target=self._endpoint,
            duration_seconds=duration,
            peak_concurrency=self._peak_concurrency,
            spawn_failures=self._spawn_failures,
            timed_out=self._timed_out,
        )

        self._state = SessionState.COMPLETED
        logger.info(
            "Run completed: duration=%.1fs, iterations=%d, failures=%d (%.2f%%), "
            "p50=%.1fms, p99=%.1fms, peak_users=%d",
            duration,
            summary.total_iterations,
            summary.failures,
            summary.failure_rate * 100,
            summary.latency_p50,
            summary.latency_p99,
            summary.peak_concurrency,
        )
        return summary

    async def stop(self) -> None:
        """Cancel every user; the run ends once in-flight requests finish."""
        if self._state is SessionState.RUNNING:
            logger.info("Graceful shutdown requested")
            self._request_stop()

    # -- modes -------------------------------------------------------------

    async def _run_fixed(
        self,
        profile: FixedProfile,
        aggregator: MetricAggregator,
        start_time: float,
    ) -> None:
        """Admit every user at once and wait until the budget is drained."""
        self._budget = IterationBudget(profile.iterations)
        self._scale_users(profile.concurrency)

        tick = self._config.tick_interval
        while self._active:
            await asyncio.wait([task for _, task in self._active], timeout=tick)
            self._reap()
            self._raise_user_errors()
            aggregator.flush(
                elapsed_seconds=time.monotonic() - start_time,
                active_users=self.active_user_count,
            )

        if self._budget.remaining:
            logger.info(
                "Stopped with %d of %d iterations unclaimed",
                self._budget.remaining,
                self._budget.total,
            )

    async def _run_staged(
        self,
        profile: StagedProfile,
        aggregator: MetricAggregator,
        start_time: float,
    ) -> None:
        """Follow the stage ramps tick by tick."""
        pattern = StagedPattern(profile)
        scheduler = Scheduler(pattern, self._config.tick_interval)
        logger.debug("Scheduling %d stage(s) over %.1fs", len(profile.stages), pattern.duration)

        for command in scheduler.iter_commands():
            if self._stop_event.is_set():
                break

            delay = start_time + command.elapsed_seconds - time.monotonic()
            if delay > 0:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                if self._stop_event.is_set():
                    break

            self._reap()
            self._raise_user_errors()
            self._scale_users(command.target_concurrency)

            snapshot = aggregator.flush(
                elapsed_seconds=command.elapsed_seconds,
                active_users=self.active_user_count,
            )
            logger.debug(
                "Tick %.2fs: users=%d, rps=%.1f, p90=%.1fms, failures=%d",
                command.elapsed_seconds,
                snapshot.active_users,
                snapshot.requests_per_second,
                snapshot.latency_p90,
                snapshot.failures,
                extra={"active_users": snapshot.active_users},
            )

    # -- population --------------------------------------------------------

    def _scale_users(self, target: int) -> None:
        """Admit or cancel users until ``target`` are active.

        Admission failures are logged and the run continues with the
        users it has. Scale-down cancels the newest users first and does
        not wait for them.
        """
        current = len(self._active)

        if target > current:
            wanted = target - current
            for admitted in range(wanted):
                try:
                    self._admit_user()
                except ResourceExhaustion as exc:
                    shortfall = wanted - admitted
                    self._spawn_failures += shortfall
                    log = logger.debug if self._exhaustion_reported else logger.warning
                    log(
                        "Could not admit %d user(s): %s; continuing with %d active",
                        shortfall,
                        exc,
                        len(self._active),
                    )
                    self._exhaustion_reported = True
                    break

        elif target < current:
            for _ in range(current - target):
                user, task = self._active.pop()
                user.cancel()
                self._draining.append((user, task))

        self._peak_concurrency = max(self._peak_concurrency, len(self._active))

    def _admit_user(self) -> None:
        """Create one virtual user task.

        Raises:
            ResourceExhaustion: If the user cap is reached or the task
                cannot be created.
        """
        max_users = self._config.max_users
        if max_users is not None and self._live_user_count() >= max_users:
            msg = f"user cap of {max_users} reached"
            raise ResourceExhaustion(msg)

        if self._run_executor is None:
            msg = "Users admitted before the executor was ready"
            raise EngineError(msg)

        user_id = self._next_user_id
        user = VirtualUser(
            user_id,
            self._run_executor,
            self._endpoint,
            self._collector.record,
            pacing=self._options.sleep,
            budget=self._budget,
        )
        coro = user.run()
        try:
            task = asyncio.create_task(coro, name=f"virtual-user-{user_id}")
        except (RuntimeError, MemoryError) as exc:
            coro.close()
            msg = f"cannot start virtual user {user_id}: {exc}"
            raise ResourceExhaustion(msg) from exc

        self._next_user_id += 1
        self._active.append((user, task))

    def _live_user_count(self) -> int:
        """Active users plus cancelled users still finishing a request."""
        return len(self._active) + sum(1 for _, task in self._draining if not task.done())

    def _reap(self) -> None:
        """Drop finished users, keeping any unexpected exception they raised."""
        for group in (self._active, self._draining):
            still_running: list[_UserEntry] = []
            for user, task in group:
                if not task.done():
                    still_running.append((user, task))
                elif not task.cancelled() and task.exception() is not None:
                    self._user_errors.append(task.exception())  # type: ignore[arg-type]
            group[:] = still_running

    def _raise_user_errors(self) -> None:
        if not self._user_errors:
            return
        error = self._user_errors[0]
        if isinstance(error, StampedeError):
            raise error
        msg = f"Virtual user failed: {type(error).__name__}: {error}"
        raise EngineError(msg) from error

    def _cancel_all(self) -> None:
        for user, _task in self._active:
            user.cancel()
        self._draining.extend(self._active)
        self._active.clear()

    async def _wait_for_users(self, aggregator: MetricAggregator, start_time: float) -> None:
        """Wait for every cancelled user to reach STOPPED, flushing each tick."""
        tick = self._config.tick_interval
        while True:
            self._reap()
            pending = [task for _, task in self._draining]
            if not pending:
                return
            await asyncio.wait(pending, timeout=tick)
            aggregator.flush(
                elapsed_seconds=time.monotonic() - start_time,
                active_users=self.active_user_count,
            )

    # -- stop triggers ------------------------------------------------------

    def _request_stop(self) -> None:
        self._stop_event.set()
        self._cancel_all()

    def _on_run_timeout(self) -> None:
        """Cut a run short. A run that already finished on its own is left alone."""
        if self._state is not SessionState.RUNNING:
            logger.debug("Run timeout reached while %s; ignoring", self._state.name)
            return
        logger.warning(
            "Run timeout of %.1fs reached; cancelling %d user(s)",
            self._options.run_timeout or 0.0,
            len(self._active),
        )
        self._timed_out = True
        self._request_stop()

    def _install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to a graceful stop.

        Skipped when disabled or when not on the main thread, where
        signal handlers cannot be installed.
        """
        if not self._handle_signals or threading.current_thread() is not threading.main_thread():
            return

        def _signal_handler() -> None:
            logger.info("Signal received, initiating graceful shutdown")
            self._request_stop()

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
            loop.add_signal_handler(signal.SIGTERM, _signal_handler)
        else:
            signal.signal(signal.SIGINT, lambda _s, _f: _signal_handler())
            signal.signal(signal.SIGTERM, lambda _s, _f: _signal_handler())
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
        else:
            signal.signal(signal.SIGINT, signal.default_int_handler)
            signal.signal(signal.SIGTERM, signal.SIG_DFL)
        self._signals_installed = False
