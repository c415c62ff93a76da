"""Shared test fixtures for the Stampede test suite."""

from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from stampede._internal.config import EngineConfig
from stampede.metrics.models import CheckStatus, RequestOutcome

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's environment out of config-dependent tests."""
    for name in (
        "TARGET",
        "STAMPEDE_TARGET",
        "STAMPEDE_TIMEOUT",
        "STAMPEDE_POOL_SIZE",
        "STAMPEDE_MAX_USERS",
        "STAMPEDE_TICK_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop stampede handlers a test installed; their stream may be gone."""
    yield
    logger = logging.getLogger("stampede")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Stub HTTP server handlers
# =============================================================================


async def _ok_handler(request: web.Request) -> web.Response:
    """Always 200."""
    return web.json_response({"status": "ok"})


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


def _create_stub_app() -> web.Application:
    """Build the stub target app with all test routes."""
    app = web.Application()
    app.router.add_get("/", _ok_handler)
    app.router.add_get("/ok", _ok_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_get("/error", _error_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def stub_server() -> AsyncIterator[str]:
    """Aiohttp stub target running on the test's event loop.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_stub_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_stub_server() -> Iterator[str]:
    """Stub target running in a background thread.

    Needed by tests that call the blocking runner or the CLI, which
    start their own event loop on the main thread.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(_create_stub_app())
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def fast_config() -> EngineConfig:
    """Engine config with a short tick so runs finish quickly."""
    return EngineConfig(request_timeout=5.0, tick_interval=0.05)


@pytest.fixture
async def in_flight_server() -> AsyncIterator[tuple[str, dict[str, int]]]:
    """Stub target that records how many requests it holds at once.

    Every GET sleeps for ?delay= seconds (default 0.3). Yields the URL
    and a dict whose "peak" key is the highest in-flight count seen.
    """
    stats = {"current": 0, "peak": 0}

    async def _handler(request: web.Request) -> web.Response:
        stats["current"] += 1
        stats["peak"] = max(stats["peak"], stats["current"])
        try:
            await asyncio.sleep(float(request.query.get("delay", "0.3")))
        finally:
            stats["current"] -= 1
        return web.json_response({"status": "ok"})

    app = web.Application()
    app.router.add_get("/", _handler)
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port, backlog=1024)
    await site.start()
    yield f"http://127.0.0.1:{port}/", stats
    await runner.cleanup()


# =============================================================================
# Stub executor
# =============================================================================


class StubExecutor:
    """In-memory executor: optional delay, fixed status, call log.

    Lets engine tests run thousands of iterations without sockets.
    """

    def __init__(self, *, delay: float = 0.0, status: int = 200) -> None:
        self.delay = delay
        self.status = status
        self.calls: list[tuple[int, int]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(
        self, endpoint: str, *, user_id: int = 0, iteration: int = 0
    ) -> RequestOutcome:
        self.calls.append((user_id, iteration))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        start = time.monotonic()
        try:
            if self.delay > 0:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return RequestOutcome(
            timestamp=start,
            latency_ms=(time.monotonic() - start) * 1000,
            status_code=self.status,
            check_result=CheckStatus.PASS,
            user_id=user_id,
            iteration=iteration,
        )


@pytest.fixture
def stub_executor() -> StubExecutor:
    return StubExecutor()


@pytest.fixture
def make_stub_executor() -> type[StubExecutor]:
    """The StubExecutor class, for tests that need a delay or status."""
    return StubExecutor
