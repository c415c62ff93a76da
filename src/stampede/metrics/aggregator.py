"""Outcome aggregation into interval snapshots and the final run summary.

The ``MetricAggregator`` drains an ``OutcomeCollector`` once per tick.
Each drained batch feeds two views:

- **Interval**: numpy percentiles over just that batch, emitted as an
  ``IntervalSnapshot`` for live display.
- **Cumulative**: an HDR histogram plus counters that are never reset,
  used to build the ``RunSummary`` once the run is over.
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import TYPE_CHECKING

import numpy as np

from stampede._internal.logging import get_logger
from stampede.metrics.histogram import LatencyHistogram
from stampede.metrics.models import CheckStatus, CheckSummary, IntervalSnapshot, RunSummary

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from stampede.metrics.collector import OutcomeCollector
    from stampede.metrics.models import RequestOutcome

logger = get_logger("metrics.aggregator")

_INTERVAL_PERCENTILES = (50.0, 90.0, 99.0)


def _interval_percentiles(latencies: list[float]) -> tuple[float, float, float]:
    """Return (p50, p90, p99) for one interval's latencies, zeros if empty."""
    if not latencies:
        return (0.0, 0.0, 0.0)
    p50, p90, p99 = np.percentile(np.array(latencies, dtype=np.float64), _INTERVAL_PERCENTILES)
    return (float(p50), float(p90), float(p99))


class MetricAggregator:
    """Folds outcomes from a collector into snapshots and a summary.

    Only the session's event loop calls ``flush``; concurrency safety on
    the write side lives in the collector.

    Attributes:
        snapshots: Interval snapshots emitted so far.
    """

    def __init__(
        self,
        collector: OutcomeCollector,
        *,
        check_names: Iterable[str] = (),
        on_snapshot: Callable[[IntervalSnapshot], None] | None = None,
    ) -> None:
        """Initialize the aggregator.

        Args:
            collector: Sink the virtual users record into.
            check_names: Configured checks, so unexercised checks still
                appear in the summary.
            on_snapshot: Optional callback invoked with every snapshot.
        """
        self._collector = collector
        self._on_snapshot = on_snapshot
        self.snapshots: list[IntervalSnapshot] = []

        self._histogram = LatencyHistogram()
        self._total = 0
        self._failures = 0
        self._checks: dict[str, CheckSummary] = {name: CheckSummary(name) for name in check_names}
        self._errors_by_type: dict[str, int] = defaultdict(int)
        self._errors_by_status: dict[int, int] = defaultdict(int)
        self._last_flush = time.monotonic()

    def flush(self, elapsed_seconds: float, active_users: int) -> IntervalSnapshot:
        """Drain the collector and emit a snapshot for the elapsed interval.

        Args:
            elapsed_seconds: Seconds since the run started.
            active_users: Active (admitted, not cancelled) users right now.

        Returns:
            The new IntervalSnapshot, also appended to ``snapshots``.
        """
        batch = self._collector.drain()
        now = time.monotonic()
        interval = max(now - self._last_flush, 0.001)
        self._last_flush = now

        latencies: list[float] = []
        failures = 0
        for outcome in batch:
            latencies.append(outcome.latency_ms)
            if self._ingest(outcome):
                failures += 1

        p50, p90, p99 = _interval_percentiles(latencies)
        snapshot = IntervalSnapshot(
            elapsed_seconds=elapsed_seconds,
            active_users=active_users,
            requests=len(batch),
            failures=failures,
            requests_per_second=len(batch) / interval,
            latency_p50=p50,
            latency_p90=p90,
            latency_p99=p99,
        )
        self.snapshots.append(snapshot)
        if self._on_snapshot is not None:
            self._on_snapshot(snapshot)
        return snapshot

    def summarize(
        self,
        *,
        profile_description: str,
        target: str,
        duration_seconds: float,
        peak_concurrency: int,
        spawn_failures: int = 0,
        timed_out: bool = False,
    ) -> RunSummary:
        """Build the final RunSummary from the cumulative state.

        Outcomes still pending in the collector are folded in first, so
        callers do not need a trailing ``flush``.
        """
        for outcome in self._collector.drain():
            self._ingest(outcome)

        hist = self._histogram
        return RunSummary(
            profile_description=profile_description,
            target=target,
            duration_seconds=duration_seconds,
            total_iterations=self._total,
            failures=self._failures,
            failure_rate=self._failures / self._total if self._total else 0.0,
            requests_per_second=self._total / max(duration_seconds, 0.001),
            latency_min=hist.min(),
            latency_avg=hist.mean(),
            latency_max=hist.max(),
            latency_p50=hist.percentile(50.0),
            latency_p90=hist.percentile(90.0),
            latency_p95=hist.percentile(95.0),
            latency_p99=hist.percentile(99.0),
            peak_concurrency=peak_concurrency,
            spawn_failures=spawn_failures,
            checks={name: CheckSummary(**vars(c)) for name, c in self._checks.items()},
            errors_by_type=dict(self._errors_by_type),
            errors_by_status=dict(self._errors_by_status),
            snapshots=list(self.snapshots),
            timed_out=timed_out,
        )

    def _ingest(self, outcome: RequestOutcome) -> bool:
        """Fold one outcome into the cumulative state; return whether it failed."""
        self._histogram.record(outcome.latency_ms)
        self._total += 1

        for name, status in outcome.checks:
            summary = self._checks.setdefault(name, CheckSummary(name))
            if status is CheckStatus.PASS:
                summary.passes += 1
            elif status is CheckStatus.FAIL:
                summary.fails += 1
            else:
                summary.errors += 1

        if outcome.error_type is not None:
            self._errors_by_type[outcome.error_type] += 1
        if outcome.status_code >= 400:
            self._errors_by_status[outcome.status_code] += 1

        failed = outcome.failed
        if failed:
            self._failures += 1
        return failed
