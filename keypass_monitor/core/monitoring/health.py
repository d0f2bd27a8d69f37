"""
Health checks for one network.

A check probes the chain head (connection + block production), the node's
sync state and the current fee level. Each result supersedes the previous
one; the checker only remembers what it needs to spot a stalled head and
the fee trend.
"""

import asyncio
import logging
import time
from typing import List, Optional

from ..recovery.classifier import error_message
from .chain_client import ChainClient
from .clock import Clock, SYSTEM_CLOCK
from .models import (
    BlockProductionCheck,
    CheckResult,
    ChainHead,
    FeeLevelCheck,
    HealthCheckResult,
    HealthChecks,
    HealthStatus,
    NodeSyncCheck,
    worst_status,
)


class HealthChecker:
    """Builds HealthCheckResult snapshots for a single chain client."""

    def __init__(
        self,
        network: str,
        client: ChainClient,
        *,
        probe_timeout_seconds: float = 5.0,
        block_staleness_ms: int = 30000,
        high_fee_threshold: int = 100_000_000_000,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.network = network
        self.client = client
        self.probe_timeout_seconds = probe_timeout_seconds
        self.block_staleness_ms = block_staleness_ms
        self.high_fee_threshold = high_fee_threshold
        self.clock = clock or SYSTEM_CLOCK
        self.logger = logger or logging.getLogger(__name__)

        self._last_head_number: Optional[int] = None
        self._head_changed_at: Optional[int] = None
        self._last_fee: Optional[int] = None

    async def run(self, connected: bool) -> HealthCheckResult:
        now = self.clock.now_ms()

        if not connected:
            connection = CheckResult(status=HealthStatus.CRITICAL, error="Not connected")
            return HealthCheckResult(
                network=self.network,
                status=HealthStatus.CRITICAL,
                timestamp=now,
                checks=HealthChecks(connection=connection),
                recommendations=["Connection lost. Waiting for reconnect."],
            )

        started = time.perf_counter()
        try:
            head = await asyncio.wait_for(self.client.get_head(), timeout=self.probe_timeout_seconds)
        except Exception as e:
            message = error_message(e)
            self.logger.warning(f"[{self.network}] liveness probe failed: {message}")
            connection = CheckResult(status=HealthStatus.UNHEALTHY, error=message)
            return HealthCheckResult(
                network=self.network,
                status=HealthStatus.UNHEALTHY,
                timestamp=now,
                checks=HealthChecks(connection=connection),
            )

        connection = CheckResult(
            status=HealthStatus.HEALTHY,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        recommendations: List[str] = []

        block_production = self._check_block_production(head, now)
        if block_production.status != HealthStatus.HEALTHY:
            recommendations.append("Block production looks stalled. Confirmations may be delayed.")

        node_sync = await self._check_node_sync()
        if node_sync.is_syncing:
            recommendations.append("Node is syncing. Chain data may be stale.")

        fee_level = await self._check_fee_level()
        if fee_level.status != HealthStatus.HEALTHY and fee_level.current_fee is not None:
            recommendations.append("Fees are high. Consider waiting for lower fees.")

        checks = HealthChecks(
            connection=connection,
            block_production=block_production,
            node_sync=node_sync,
            fee_level=fee_level,
        )
        return HealthCheckResult(
            network=self.network,
            status=worst_status(
                connection.status,
                block_production.status,
                node_sync.status,
                fee_level.status,
            ),
            timestamp=now,
            checks=checks,
            recommendations=recommendations,
        )

    def _check_block_production(self, head: ChainHead, now: int) -> BlockProductionCheck:
        if head.number != self._last_head_number:
            self._last_head_number = head.number
            self._head_changed_at = now

        if head.timestamp_ms is not None:
            delta = now - head.timestamp_ms
            last_block_time = head.timestamp_ms
        else:
            # No block timestamp: measure how long the head number has been stuck
            delta = now - (self._head_changed_at if self._head_changed_at is not None else now)
            last_block_time = self._head_changed_at

        status = HealthStatus.DEGRADED if delta > self.block_staleness_ms else HealthStatus.HEALTHY
        return BlockProductionCheck(
            status=status,
            head_number=head.number,
            last_block_time=last_block_time,
            block_time_delta=delta,
        )

    async def _check_node_sync(self) -> NodeSyncCheck:
        try:
            syncing = await asyncio.wait_for(self.client.is_syncing(), timeout=self.probe_timeout_seconds)
        except Exception as e:
            return NodeSyncCheck(status=HealthStatus.DEGRADED, error=error_message(e))
        return NodeSyncCheck(
            status=HealthStatus.DEGRADED if syncing else HealthStatus.HEALTHY,
            is_syncing=syncing,
        )

    async def _check_fee_level(self) -> FeeLevelCheck:
        try:
            fee = await asyncio.wait_for(self.client.get_fee_level(), timeout=self.probe_timeout_seconds)
        except Exception as e:
            return FeeLevelCheck(status=HealthStatus.DEGRADED, error=error_message(e))

        current = fee.gas_price
        if self._last_fee is None or current == self._last_fee:
            trend = "stable"
        elif current > self._last_fee:
            trend = "increasing"
        else:
            trend = "decreasing"
        self._last_fee = current

        if current > self.high_fee_threshold:
            return FeeLevelCheck(status=HealthStatus.DEGRADED, current_fee=current, trend="increasing")
        return FeeLevelCheck(status=HealthStatus.HEALTHY, current_fee=current, trend=trend)
