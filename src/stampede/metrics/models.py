"""Outcome and summary dataclasses for Stampede."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "CheckStatus",
    "CheckSummary",
    "IntervalSnapshot",
    "RequestOutcome",
    "RunSummary",
]


class CheckStatus(str, Enum):
    """Result of evaluating one check, or of all checks on an outcome."""

    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"


@dataclass(frozen=True)
class RequestOutcome:
    """Result of one virtual-user iteration (one GET).

    Attributes:
        timestamp: Monotonic time at which the request started.
        latency_ms: Wall-clock time to full response body, in milliseconds.
        status_code: HTTP status, or 0 when no response was received.
        check_result: ``ERROR`` if the request or any check errored,
            ``FAIL`` if any check failed, ``PASS`` otherwise.
        checks: Per-check results as ``(name, status)`` pairs, in
            configuration order.
        error: Error description when the request failed, else None.
        error_type: Class name of the transport error, else None.
        user_id: Virtual user that produced this outcome.
        iteration: That user's iteration number, starting at 0.
    """

    timestamp: float
    latency_ms: float
    status_code: int
    check_result: CheckStatus = CheckStatus.PASS
    checks: tuple[tuple[str, CheckStatus], ...] = ()
    error: str | None = None
    error_type: str | None = None
    user_id: int = 0
    iteration: int = 0

    @property
    def failed(self) -> bool:
        """True for transport errors, non-passing checks, or (without checks) HTTP >= 400."""
        if self.error is not None or self.check_result is not CheckStatus.PASS:
            return True
        return not self.checks and self.status_code >= 400


@dataclass
class CheckSummary:
    """Per-check pass/fail/error counts across a run."""

    name: str
    passes: int = 0
    fails: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.passes + self.fails + self.errors

    @property
    def pass_rate(self) -> float:
        return self.passes / self.total if self.total else 0.0


@dataclass
class IntervalSnapshot:
    """Aggregated outcomes for one scheduler tick.

    Attributes:
        elapsed_seconds: Seconds since the run started.
        active_users: Admitted, not-cancelled users at the end of the tick.
        requests: Outcomes recorded during the interval.
        failures: Failed outcomes during the interval.
        requests_per_second: ``requests`` divided by the interval length.
        latency_p50: Interval median latency (ms).
        latency_p90: Interval 90th percentile latency (ms).
        latency_p99: Interval 99th percentile latency (ms).
    """

    elapsed_seconds: float
    active_users: int
    requests: int = 0
    failures: int = 0
    requests_per_second: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p99: float = 0.0


@dataclass
class RunSummary:
    """End-of-run aggregate. Built once by the aggregator and not mutated afterwards.

    Attributes:
        profile_description: Human-readable load profile.
        target: URL the run hit.
        duration_seconds: Wall-clock run duration.
        total_iterations: Outcomes recorded (one per completed iteration).
        failures: Outcomes counted as failed (see ``RequestOutcome.failed``).
        failure_rate: ``failures / total_iterations`` (0.0 when empty).
        requests_per_second: Average throughput over the run.
        latency_min: Minimum latency (ms).
        latency_avg: Mean latency (ms).
        latency_max: Maximum latency (ms).
        latency_p50: Median latency (ms).
        latency_p90: 90th percentile latency (ms).
        latency_p95: 95th percentile latency (ms).
        latency_p99: 99th percentile latency (ms).
        peak_concurrency: Highest number of simultaneously active users.
        spawn_failures: Users the scheduler could not admit.
        checks: Per-check counts keyed by check name.
        errors_by_type: Transport error counts keyed by exception name.
        errors_by_status: Counts of HTTP responses with status >= 400.
        snapshots: Interval snapshots in chronological order.
        timed_out: True if the run timeout cancelled the users.
    """

    profile_description: str
    target: str
    duration_seconds: float
    total_iterations: int = 0
    failures: int = 0
    failure_rate: float = 0.0
    requests_per_second: float = 0.0
    latency_min: float = 0.0
    latency_avg: float = 0.0
    latency_max: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    peak_concurrency: int = 0
    spawn_failures: int = 0
    checks: dict[str, CheckSummary] = field(default_factory=dict)
    errors_by_type: dict[str, int] = field(default_factory=dict)
    errors_by_status: dict[int, int] = field(default_factory=dict)
    snapshots: list[IntervalSnapshot] = field(default_factory=list)
    timed_out: bool = False

    def exceeds(self, threshold: float | None) -> bool:
        """Return True if a threshold is set and the failure rate is above it."""
        return threshold is not None and self.failure_rate > threshold
