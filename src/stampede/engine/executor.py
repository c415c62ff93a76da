"""Request executor: one timed GET per call, with independent checks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

import aiohttp

from stampede._internal.errors import CheckFailure, NetworkError
from stampede._internal.logging import get_logger
from stampede.metrics.models import CheckStatus, RequestOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stampede.options.checks import Check

logger = get_logger("engine.executor")


@dataclass(frozen=True)
class HttpResponse:
    """What a check predicate sees of a response.

    Attributes:
        status: HTTP status code.
        headers: Response headers (case-preserving copy).
        body: Full response body.
        latency_ms: Time from request start to end of body, in milliseconds.
    """

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    latency_ms: float = 0.0


class Executor(Protocol):
    """Anything that turns one iteration into a ``RequestOutcome``."""

    async def execute(
        self, endpoint: str, *, user_id: int = 0, iteration: int = 0
    ) -> RequestOutcome: ...


def evaluate_checks(
    checks: Sequence[Check], response: HttpResponse
) -> tuple[CheckStatus, tuple[tuple[str, CheckStatus], ...]]:
    """Evaluate every check against *response*; none short-circuits another.

    Returns:
        ``(overall, per_check)`` where overall is ERROR if any check
        errored, else FAIL if any failed, else PASS.
    """
    results: list[tuple[str, CheckStatus]] = []
    for check in checks:
        try:
            status = CheckStatus.PASS if check.predicate(response) else CheckStatus.FAIL
        except CheckFailure as exc:
            logger.debug("Check %r failed: %s", check.name, exc)
            status = CheckStatus.FAIL
        except Exception:
            logger.debug("Check %r raised", check.name, exc_info=True)
            status = CheckStatus.ERROR
        results.append((check.name, status))

    statuses = {status for _, status in results}
    if CheckStatus.ERROR in statuses:
        overall = CheckStatus.ERROR
    elif CheckStatus.FAIL in statuses:
        overall = CheckStatus.FAIL
    else:
        overall = CheckStatus.PASS
    return overall, tuple(results)


class RequestExecutor:
    """Sends GET requests over one shared ``aiohttp.ClientSession``.

    Every call produces exactly one ``RequestOutcome``; transport errors
    are folded into the outcome instead of being raised, so a failing
    target never aborts a run.

    Must be used as an async context manager::

        async with RequestExecutor(checks=[status_is(200)]) as executor:
            outcome = await executor.execute("http://localhost:8080/")
    """

    def __init__(
        self,
        checks: Sequence[Check] = (),
        *,
        timeout: float = 30.0,
        pool_size: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            checks: Checks evaluated against every response.
            timeout: Total per-request timeout in seconds.
            pool_size: Optional connection cap shared by all virtual users.
                None (the default) leaves the pool unbounded.
            headers: Headers sent with every request.
        """
        self._checks = tuple(checks)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._pool_size = pool_size
        self._headers = dict(headers or {})
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> RequestExecutor:
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=aiohttp.TCPConnector(limit=self._pool_size or 0),
            headers=self._headers,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(
        self, endpoint: str, *, user_id: int = 0, iteration: int = 0
    ) -> RequestOutcome:
        """Send one GET to *endpoint* and describe what happened.

        Args:
            endpoint: Absolute URL.
            user_id: Virtual user issuing the request, for tagging.
            iteration: The user's iteration number, for tagging.

        Returns:
            The outcome. Network failures yield ``status_code=0``, an
            ``error`` description and every check marked ERROR.

        Raises:
            RuntimeError: If used outside the async context manager.
        """
        start = time.monotonic()
        try:
            response = await self._send(endpoint, start)
        except NetworkError as exc:
            latency_ms = (time.monotonic() - start) * 1000
            logger.debug("User %d request failed: %s", user_id, exc)
            return RequestOutcome(
                timestamp=start,
                latency_ms=latency_ms,
                status_code=0,
                check_result=CheckStatus.ERROR,
                checks=tuple((check.name, CheckStatus.ERROR) for check in self._checks),
                error=str(exc),
                error_type=exc.error_type,
                user_id=user_id,
                iteration=iteration,
            )

        overall, per_check = evaluate_checks(self._checks, response)
        return RequestOutcome(
            timestamp=start,
            latency_ms=response.latency_ms,
            status_code=response.status,
            check_result=overall,
            checks=per_check,
            user_id=user_id,
            iteration=iteration,
        )

    async def _send(self, endpoint: str, start: float) -> HttpResponse:
        """Perform the GET and read the body.

        Raises:
            NetworkError: On connection failures and timeouts.
        """
        if self._session is None:
            msg = "RequestExecutor must be used as an async context manager"
            raise RuntimeError(msg)

        try:
            async with self._session.get(endpoint) as resp:
                body = await resp.read()
                return HttpResponse(
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=body,
                    latency_ms=(time.monotonic() - start) * 1000,
                )
        except (aiohttp.ClientError, TimeoutError, OSError) as exc:
            msg = f"{type(exc).__name__}: {exc}"
            raise NetworkError(msg, error_type=type(exc).__name__) from exc
