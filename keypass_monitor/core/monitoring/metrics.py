"""
Performance metrics derived from the transaction history.

Snapshots are recomputed from scratch for an explicit [start, end) window,
so summarizing the same window over the same history twice yields the same
result.
"""

import math
from typing import Optional, Sequence

from ..recovery.errors import ErrorCategory, ErrorSeverity
from .clock import Clock, SYSTEM_CLOCK
from .models import (
    CostStats,
    ErrorStats,
    LatencyStats,
    MetricsPeriod,
    PerformanceMetrics,
    TransactionCounts,
    TransactionStatus,
)
from .store import MonitoringStore


DEFAULT_WINDOW_MS = 3_600_000


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return float(ordered[mid])


def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile: index ceil(p/100 * n) - 1 over the sorted values.

    The 50th percentile is reported as the median so p50 and the median
    never disagree on even-length inputs.
    """
    if not values:
        return 0.0
    if p == 50:
        return median(values)
    ordered = sorted(values)
    index = math.ceil((p / 100) * len(ordered)) - 1
    index = min(max(0, index), len(ordered) - 1)
    return float(ordered[index])


class MetricsAggregator:
    """Summarizes one network's history over a time window."""

    def __init__(
        self,
        store: MonitoringStore,
        clock: Optional[Clock] = None,
        window_ms: int = DEFAULT_WINDOW_MS,
    ):
        self.store = store
        self.clock = clock or SYSTEM_CLOCK
        self.window_ms = window_ms

    def summarize(
        self,
        network: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> PerformanceMetrics:
        end = self.clock.now_ms() if end is None else end
        start = end - self.window_ms if start is None else start
        if start > end:
            raise ValueError(f"Metrics window start {start} is after end {end}")

        def in_window(ts: int) -> bool:
            return start <= ts < end

        terminal = [
            tx for tx in self.store.history(network=network)
            if tx.is_terminal and in_window(tx.submitted_at)
        ]
        pending = [
            tx for tx in self.store.live(network=network)
            if not tx.is_terminal and in_window(tx.submitted_at)
        ]

        successful = [tx for tx in terminal if tx.status == TransactionStatus.CONFIRMED]
        timed_out = [tx for tx in terminal if tx.status == TransactionStatus.TIMEOUT]
        failed = [tx for tx in terminal if tx.status != TransactionStatus.CONFIRMED]
        retried = [tx for tx in terminal if tx.retry_count > 0]

        total = len(terminal)
        counts = TransactionCounts(
            total=total,
            successful=len(successful),
            failed=len(failed),
            timed_out=len(timed_out),
            pending=len(pending),
            retried=len(retried),
            success_rate=len(successful) / total if total > 0 else 0.0,
        )

        latencies = [
            tx.confirmation_latency_ms for tx in successful
            if tx.confirmation_latency_ms is not None
        ]
        latency = LatencyStats(
            average_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            median_ms=median(latencies),
            p95_ms=percentile(latencies, 95),
            p99_ms=percentile(latencies, 99),
        )

        return PerformanceMetrics(
            network=network,
            period=MetricsPeriod(start=start, end=end, duration_ms=end - start),
            transactions=counts,
            latency=latency,
            costs=self._cost_stats(successful),
            errors=self._error_stats(network, in_window),
        )

    @staticmethod
    def _cost_stats(successful) -> CostStats:
        total_gas = sum(tx.gas_used or 0 for tx in successful)
        costed = [tx for tx in successful if tx.cost is not None]
        total_cost = sum(tx.cost for tx in costed)
        costed_gas = sum(tx.gas_used or 0 for tx in costed)

        return CostStats(
            total_gas_used=total_gas,
            total_cost=total_cost,
            average_cost=total_cost // len(costed) if costed else 0,
            average_gas_price=total_cost // costed_gas if costed_gas > 0 else 0,
        )

    def _error_stats(self, network: str, in_window) -> ErrorStats:
        reports = [e for e in self.store.errors(network=network) if in_window(e.timestamp)]

        # Fixed key order keeps serialized snapshots identical
        by_category = {c.value: 0 for c in ErrorCategory}
        by_severity = {s.value: 0 for s in ErrorSeverity}
        for report in reports:
            if report.category is not None:
                by_category[report.category.value] += 1
            by_severity[report.severity.value] += 1

        return ErrorStats(total=len(reports), by_category=by_category, by_severity=by_severity)
