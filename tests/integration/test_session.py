"""Integration tests for LoadTestSession: fixed and staged runs end to end."""

from __future__ import annotations

import asyncio
import dataclasses
import os
import signal
import sys
import time
from typing import TYPE_CHECKING

import pytest

from stampede._internal.errors import ConfigError, EngineError
from stampede.engine.session import LoadTestSession, SessionState
from stampede.options.checks import status_is
from stampede.options.loader import RunOptions
from stampede.options.profile import FixedProfile, Stage, StagedProfile
from stampede.patterns import StagedPattern

if TYPE_CHECKING:
    from conftest import StubExecutor

    from stampede._internal.config import EngineConfig
    from stampede.metrics.models import IntervalSnapshot


def _staged(*stages: tuple[float, int]) -> StagedProfile:
    return StagedProfile(stages=tuple(Stage(d, t) for d, t in stages))


@pytest.mark.timeout(30)
class TestFixedMode:
    async def test_budget_drained_exactly_over_http(
        self, stub_server: str, fast_config: EngineConfig
    ):
        options = RunOptions(
            profile=FixedProfile(concurrency=50, iterations=1000),
            target=f"{stub_server}/ok",
            checks=(status_is(200),),
        )
        session = LoadTestSession(options, config=fast_config, handle_signals=False)

        summary = await session.run()

        outcomes = session.collector.outcomes()
        assert len(outcomes) == 1000
        assert len({(o.user_id, o.iteration) for o in outcomes}) == 1000
        assert session.budget is not None
        assert session.budget.remaining == 0
        assert summary.total_iterations == 1000
        assert summary.failures == 0
        assert summary.checks["status 200"].passes == 1000
        assert summary.peak_concurrency == 50
        assert session.state is SessionState.COMPLETED
        assert session.active_user_count == 0

    async def test_users_do_not_wait_on_each_other_for_connections(
        self, in_flight_server: tuple[str, dict[str, int]], fast_config: EngineConfig
    ):
        url, stats = in_flight_server
        options = RunOptions(
            profile=FixedProfile(concurrency=300, iterations=300),
            target=f"{url}?delay=1.0",
        )
        session = LoadTestSession(options, config=fast_config, handle_signals=False)

        start = time.monotonic()
        summary = await session.run()

        assert summary.total_iterations == 300
        assert summary.failures == 0
        assert stats["peak"] == 300
        assert summary.peak_concurrency == 300
        assert time.monotonic() - start < 2.0
        assert summary.latency_p99 < 1900

    async def test_pool_size_caps_connections(
        self, in_flight_server: tuple[str, dict[str, int]], fast_config: EngineConfig
    ):
        url, stats = in_flight_server
        config = dataclasses.replace(fast_config, connection_pool_size=5)
        options = RunOptions(
            profile=FixedProfile(concurrency=20, iterations=20),
            target=f"{url}?delay=0.1",
        )
        session = LoadTestSession(options, config=config, handle_signals=False)

        summary = await session.run()

        assert summary.total_iterations == 20
        assert stats["peak"] == 5

    async def test_many_users_share_budget(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        options = RunOptions(
            profile=FixedProfile(concurrency=800, iterations=10_000),
            target="http://stub.invalid/",
        )
        session = LoadTestSession(
            options, config=fast_config, executor=stub_executor, handle_signals=False
        )

        summary = await session.run()

        assert summary.total_iterations == 10_000
        assert len(stub_executor.calls) == 10_000
        assert len(set(stub_executor.calls)) == 10_000
        assert {user_id for user_id, _ in stub_executor.calls} <= set(range(800))

    async def test_more_users_than_iterations(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        options = RunOptions(profile=FixedProfile(20, 5), target="http://stub.invalid/")
        session = LoadTestSession(
            options, config=fast_config, executor=stub_executor, handle_signals=False
        )

        summary = await session.run()

        assert summary.total_iterations == 5
        assert summary.peak_concurrency == 20

    async def test_failing_checks_do_not_abort(self, stub_server: str, fast_config: EngineConfig):
        options = RunOptions(
            profile=FixedProfile(concurrency=5, iterations=50),
            target=f"{stub_server}/error?status=500",
            checks=(status_is(200),),
        )
        session = LoadTestSession(options, config=fast_config, handle_signals=False)

        summary = await session.run()

        assert summary.total_iterations == 50
        assert summary.failures == 50
        assert summary.failure_rate == 1.0
        assert summary.checks["status 200"].fails == 50
        assert summary.errors_by_status == {500: 50}
        assert session.state is SessionState.COMPLETED

    async def test_unreachable_target_records_network_errors(self, fast_config: EngineConfig):
        options = RunOptions(
            profile=FixedProfile(concurrency=2, iterations=4),
            target="http://127.0.0.1:1/",
        )
        config = dataclasses.replace(fast_config, request_timeout=2.0)
        session = LoadTestSession(options, config=config, handle_signals=False)

        summary = await session.run()

        assert summary.total_iterations == 4
        assert summary.failures == 4
        assert sum(summary.errors_by_type.values()) == 4

    async def test_sleep_paces_iterations(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        options = RunOptions(
            profile=FixedProfile(concurrency=2, iterations=6),
            target="http://stub.invalid/",
            sleep=0.1,
        )
        session = LoadTestSession(
            options, config=fast_config, executor=stub_executor, handle_signals=False
        )

        start = time.monotonic()
        summary = await session.run()

        assert summary.total_iterations == 6
        assert time.monotonic() - start >= 0.2

    async def test_user_cap_reports_spawn_failures(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        config = dataclasses.replace(fast_config, max_users=3)
        options = RunOptions(profile=FixedProfile(10, 100), target="http://stub.invalid/")
        session = LoadTestSession(
            options, config=config, executor=stub_executor, handle_signals=False
        )

        summary = await session.run()

        assert summary.spawn_failures == 7
        assert summary.peak_concurrency == 3
        assert summary.total_iterations == 100
        assert {user_id for user_id, _ in stub_executor.calls} == {0, 1, 2}


@pytest.mark.timeout(30)
class TestStagedMode:
    async def test_active_users_stay_within_stage_bounds(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        profile = _staged((0.5, 10), (0.3, 10), (0.5, 0))
        snapshots: list[IntervalSnapshot] = []
        options = RunOptions(profile=profile, target="http://stub.invalid/")
        session = LoadTestSession(
            options,
            config=fast_config,
            executor=make_stub_executor(delay=0.01),
            on_snapshot=snapshots.append,
            handle_signals=False,
        )

        summary = await session.run()

        pattern = StagedPattern(profile)
        assert snapshots
        for snapshot in snapshots:
            low, high = pattern.bounds_at(snapshot.elapsed_seconds)
            assert low <= snapshot.active_users <= high, snapshot
        assert summary.peak_concurrency == 10
        assert summary.total_iterations > 0
        assert session.active_user_count == 0

    async def test_ramp_down_keeps_in_flight_outcome(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        executor = make_stub_executor(delay=0.6)
        options = RunOptions(
            profile=_staged((0, 1), (0.2, 1), (0, 0)),
            target="http://stub.invalid/",
        )
        session = LoadTestSession(
            options, config=fast_config, executor=executor, handle_signals=False
        )

        summary = await session.run()

        assert summary.total_iterations == 1
        assert summary.duration_seconds >= 0.55
        outcome = session.collector.outcomes()[0]
        assert outcome.latency_ms >= 550

    async def test_slow_responses_over_http(self, stub_server: str, fast_config: EngineConfig):
        options = RunOptions(
            profile=_staged((0, 2), (0.3, 2), (0, 0)),
            target=f"{stub_server}/delay?delay=0.5",
            checks=(status_is(200),),
        )
        session = LoadTestSession(options, config=fast_config, handle_signals=False)

        summary = await session.run()

        assert summary.total_iterations == 2
        assert summary.failures == 0

    async def test_run_timeout_cancels_users(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        options = RunOptions(
            profile=_staged((0, 5), (60, 5)),
            target="http://stub.invalid/",
            run_timeout=0.3,
        )
        executor = make_stub_executor(delay=0.01)
        session = LoadTestSession(
            options,
            config=fast_config,
            executor=executor,
            handle_signals=False,
        )

        start = time.monotonic()
        summary = await session.run()

        assert time.monotonic() - start < 5.0
        assert summary.timed_out is True
        assert summary.peak_concurrency == 5
        assert summary.total_iterations > 0
        assert summary.total_iterations == len(executor.calls)
        assert {o.user_id for o in session.collector.outcomes()} == set(range(5))
        assert session.active_user_count == 0
        assert session.state is SessionState.COMPLETED

    async def test_run_timeout_after_stages_end_is_not_a_timeout(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        # Stages end at 0.1s; the last request is still in flight at 0.3s.
        options = RunOptions(
            profile=_staged((0, 1), (0.1, 1), (0, 0)),
            target="http://stub.invalid/",
            run_timeout=0.3,
        )
        session = LoadTestSession(
            options,
            config=fast_config,
            executor=make_stub_executor(delay=0.5),
            handle_signals=False,
        )

        summary = await session.run()

        assert summary.timed_out is False
        assert summary.total_iterations == 1
        assert summary.duration_seconds >= 0.45
        assert session.state is SessionState.COMPLETED

    async def test_stop_ends_run_gracefully(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        options = RunOptions(profile=_staged((0, 3), (60, 3)), target="http://stub.invalid/")
        session = LoadTestSession(
            options,
            config=fast_config,
            executor=make_stub_executor(delay=0.01),
            handle_signals=False,
        )

        task = asyncio.create_task(session.run())
        await asyncio.sleep(0.2)
        await session.stop()
        summary = await asyncio.wait_for(task, timeout=5.0)

        assert summary.total_iterations > 0
        assert summary.timed_out is False
        assert session.state is SessionState.COMPLETED

    @pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are POSIX only")
    async def test_sigterm_triggers_graceful_stop(
        self, make_stub_executor: type[StubExecutor], fast_config: EngineConfig
    ):
        options = RunOptions(profile=_staged((0, 2), (60, 2)), target="http://stub.invalid/")
        session = LoadTestSession(
            options, config=fast_config, executor=make_stub_executor(delay=0.01)
        )

        task = asyncio.create_task(session.run())
        while session.state is not SessionState.RUNNING or session.active_user_count == 0:
            await asyncio.sleep(0.01)
        os.kill(os.getpid(), signal.SIGTERM)
        summary = await asyncio.wait_for(task, timeout=5.0)

        assert summary.total_iterations > 0
        assert session.state is SessionState.COMPLETED


@pytest.mark.timeout(15)
class TestSessionErrors:
    async def test_missing_target_fails_before_any_request(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        options = RunOptions(profile=FixedProfile(5, 10))
        session = LoadTestSession(
            options, config=fast_config, executor=stub_executor, handle_signals=False
        )

        with pytest.raises(ConfigError, match="No target URL"):
            await session.run()

        assert stub_executor.calls == []
        assert session.state is SessionState.FAILED

    async def test_target_from_config(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        config = dataclasses.replace(fast_config, default_target="http://from-env.invalid/")
        session = LoadTestSession(
            RunOptions(profile=FixedProfile(1, 1)),
            config=config,
            executor=stub_executor,
            handle_signals=False,
        )

        summary = await session.run()

        assert summary.target == "http://from-env.invalid/"

    async def test_session_cannot_be_reused(
        self, stub_executor: StubExecutor, fast_config: EngineConfig
    ):
        options = RunOptions(profile=FixedProfile(1, 1), target="http://stub.invalid/")
        session = LoadTestSession(
            options, config=fast_config, executor=stub_executor, handle_signals=False
        )
        await session.run()

        with pytest.raises(EngineError, match="already used"):
            await session.run()

    async def test_unexpected_user_failure_is_engine_error(self, fast_config: EngineConfig):
        class _Broken:
            async def execute(self, endpoint: str, *, user_id: int = 0, iteration: int = 0):
                raise ValueError("boom")

        options = RunOptions(profile=FixedProfile(3, 10), target="http://stub.invalid/")
        session = LoadTestSession(
            options, config=fast_config, executor=_Broken(), handle_signals=False
        )

        with pytest.raises(EngineError, match="Virtual user failed"):
            await session.run()

        assert session.state is SessionState.FAILED
