"""Cumulative latency histogram backed by HdrHistogram.

HDR histograms store integers, so latencies are recorded in whole
microseconds and reported back in milliseconds.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# 1 microsecond to 10 minutes, in microseconds
_LOWEST_US = 1
_HIGHEST_US = 600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Millisecond-in, millisecond-out wrapper over ``HdrHistogram``.

    Values outside the trackable range are clamped rather than dropped,
    so ``count`` always equals the number of ``record`` calls.
    """

    def __init__(self, significant_digits: int = _SIGNIFICANT_DIGITS) -> None:
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            _LOWEST_US, _HIGHEST_US, significant_digits
        )

    @property
    def count(self) -> int:
        return int(self._histogram.total_count)

    def record(self, latency_ms: float) -> None:
        value_us = max(_LOWEST_US, min(int(latency_ms * 1000), _HIGHEST_US))
        self._histogram.record_value(value_us)

    def percentile(self, percentile: float) -> float:
        """Latency in ms at *percentile* (0-100); 0.0 when empty."""
        if self.count == 0:
            return 0.0
        return self._histogram.get_value_at_percentile(percentile) / 1000.0

    def min(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_min_value() / 1000.0

    def max(self) -> float:
        if self.count == 0:
            return 0.0
        return self._histogram.get_max_value() / 1000.0

    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return float(self._histogram.get_mean_value()) / 1000.0
