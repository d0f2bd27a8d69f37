"""
Monitoring Engine

Facade over connection supervision, transaction tracking, health checks and
metrics for every registered network. This is the surface host
applications and the HTTP layer talk to.

Usage:
    engine = MonitoringEngine(settings)
    await engine.initialize(SubstrateRpcClient(...), EvmRpcClient(...))
    tx = await engine.monitor_transaction("moonbeam", tx_hash, "sbt-mint")
    metrics = engine.get_metrics("moonbeam")
    await engine.close()
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ...config import MonitorSettings, get_settings
from ..recovery.backoff import BackoffPolicy
from ..recovery.errors import (
    ChainConnectionError,
    ConfigurationError,
    EngineStoppedError,
    ErrorCategory,
    ErrorSeverity,
    UnknownNetworkError,
)
from .chain_client import ChainClient
from .clock import Clock, SYSTEM_CLOCK
from .connection import ConnectionSupervisor
from .events import EventBus, EventCallback, MonitorEvent
from .metrics import MetricsAggregator
from .models import (
    ChainInfo,
    ConnectionState,
    ErrorReport,
    HealthCheckResult,
    MonitoredTransaction,
    PerformanceMetrics,
    TransactionStatus,
)
from .reporting import ErrorReporter
from .store import MonitoringStore
from .tracker import ProgressCallback, TransactionTracker


class MonitoringEngine:
    """Cross-network connection and transaction monitoring."""

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        *,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or SYSTEM_CLOCK
        self.logger = logger or logging.getLogger(__name__)
        self.bus = bus or EventBus()

        self.store = MonitoringStore(max_error_reports=self.settings.max_error_reports)
        self.reporter = ErrorReporter(self.store, self.bus, self.clock, self.logger)
        self.metrics = MetricsAggregator(self.store, self.clock, window_ms=self.settings.metrics_window_ms)
        self.tracker = TransactionTracker(
            self.store,
            self.bus,
            settings=self.settings,
            reporter=self.reporter,
            clock=self.clock,
            is_stopped=lambda: self._stopped,
            logger=self.logger,
        )

        self._supervisors: Dict[str, ConnectionSupervisor] = {}
        self._latest_metrics: Dict[str, PerformanceMetrics] = {}
        self._metrics_task: Optional[asyncio.Task] = None
        self._stopped = False

    # ---------------------------
    # Lifecycle
    # ---------------------------
    def register_client(self, client: ChainClient) -> ConnectionSupervisor:
        """Register a chain client without connecting it."""
        self._raise_if_stopped()
        network = getattr(client, "network", None)
        if not network:
            raise ConfigurationError(f"Chain client {type(client).__name__} has no network")
        if network in self._supervisors:
            raise ConfigurationError(f"A chain client is already registered for {network}")

        supervisor = ConnectionSupervisor(
            network,
            client,
            settings=self.settings,
            bus=self.bus,
            backoff=self.tracker.backoff,
            clock=self.clock,
            logger=self.logger,
        )
        self._supervisors[network] = supervisor
        return supervisor

    async def initialize(self, *clients: ChainClient) -> Dict[str, Optional[ChainInfo]]:
        """
        Register and connect every client, then start the metrics timer.

        A network that cannot be reached is recorded as an error report and
        left disconnected; the others keep working.
        """
        self._raise_if_stopped()
        if not clients:
            raise ConfigurationError("At least one chain client is required")

        supervisors = [self.register_client(client) for client in clients]
        results = await asyncio.gather(
            *(supervisor.connect() for supervisor in supervisors),
            return_exceptions=True,
        )

        connected: Dict[str, Optional[ChainInfo]] = {}
        for supervisor, result in zip(supervisors, results):
            if isinstance(result, ChainConnectionError):
                await self.report_error(
                    supervisor.network,
                    result.severity,
                    "connect",
                    str(result),
                    retryable=result.retryable,
                    category=result.category,
                    context=result.context.to_dict(),
                )
                connected[supervisor.network] = None
            elif isinstance(result, BaseException):
                raise result
            else:
                connected[supervisor.network] = result

        self._start_metrics()
        self.logger.info(f"Monitoring engine initialized for {', '.join(connected)}")
        return connected

    async def stop(self) -> None:
        """Cancel every timer. In-flight confirmation results are discarded. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self.logger.info("Monitoring engine stopping")

        task = self._metrics_task
        self._metrics_task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        for supervisor in self._supervisors.values():
            await supervisor.stop()

    async def close(self) -> None:
        """Stop and disconnect every network."""
        await self.stop()
        for supervisor in self._supervisors.values():
            await supervisor.disconnect()

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def networks(self) -> List[str]:
        return list(self._supervisors)

    def supervisor(self, network: str) -> ConnectionSupervisor:
        supervisor = self._supervisors.get(network)
        if supervisor is None:
            raise UnknownNetworkError(f"Unknown network: {network}")
        return supervisor

    def connection_state(self, network: str) -> ConnectionState:
        return self.supervisor(network).state

    def _raise_if_stopped(self) -> None:
        if self._stopped:
            raise EngineStoppedError("Monitoring engine is stopped")

    # ---------------------------
    # Transactions
    # ---------------------------
    async def monitor_transaction(
        self,
        network: str,
        reference: str,
        operation: str = "unknown",
        *,
        max_retries: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MonitoredTransaction:
        """Follow a submitted transaction to a terminal status."""
        self._raise_if_stopped()
        client = self.supervisor(network).client
        return await self.tracker.monitor(
            network,
            client,
            reference,
            operation,
            max_retries=max_retries,
            on_progress=on_progress,
            metadata=metadata,
        )

    def get_transaction_history(
        self,
        network: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        since: Optional[int] = None,
    ) -> List[MonitoredTransaction]:
        return [tx.snapshot() for tx in self.store.history(network=network, status=status, since=since)]

    def get_active_transactions(self, network: Optional[str] = None) -> List[MonitoredTransaction]:
        return [tx.snapshot() for tx in self.store.live(network=network)]

    # ---------------------------
    # Health and metrics
    # ---------------------------
    async def check_health(self, network: str) -> HealthCheckResult:
        return await self.supervisor(network).check_health()

    def get_health_status(self, network: str) -> Optional[HealthCheckResult]:
        return self.supervisor(network).last_health

    def get_metrics(
        self,
        network: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> PerformanceMetrics:
        self.supervisor(network)
        return self.metrics.summarize(network, start=start, end=end)

    def get_latest_metrics(self, network: str) -> Optional[PerformanceMetrics]:
        return self._latest_metrics.get(network)

    def _start_metrics(self) -> None:
        if self._stopped or not self.settings.enable_metrics:
            return
        if self._metrics_task is not None and not self._metrics_task.done():
            return
        self._metrics_task = asyncio.create_task(self._metrics_loop(), name="metrics-snapshots")

    async def _metrics_loop(self) -> None:
        interval = self.settings.metrics_interval_ms / 1000
        while not self._stopped:
            await self.clock.sleep(interval)
            if self._stopped:
                return
            for network in list(self._supervisors):
                try:
                    snapshot = self.metrics.summarize(network)
                except Exception as e:
                    self.logger.error(f"[{network}] metrics snapshot failed: {e}", exc_info=True)
                    continue
                self._latest_metrics[network] = snapshot
                self.bus.emit(MonitorEvent.METRICS_UPDATED, snapshot)

    # ---------------------------
    # Errors
    # ---------------------------
    async def report_error(
        self,
        network: str,
        severity: ErrorSeverity,
        operation: str,
        message: str,
        *,
        retryable: bool = False,
        category: Optional[ErrorCategory] = None,
        reference: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ErrorReport:
        return await self.reporter.report(
            network,
            severity,
            operation,
            message,
            retryable=retryable,
            category=category,
            reference=reference,
            context=context,
        )

    def get_errors(
        self,
        network: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ErrorReport]:
        return self.store.errors(network=network, severity=severity, since=since, limit=limit)

    # ---------------------------
    # Events and runtime settings
    # ---------------------------
    def on(self, event: str, callback: EventCallback) -> None:
        self.bus.on(event, callback)

    def off(self, event: str, callback: EventCallback) -> None:
        self.bus.off(event, callback)

    def update_retry_settings(
        self,
        *,
        max_retries: Optional[int] = None,
        base_retry_delay_ms: Optional[int] = None,
        max_retry_delay_ms: Optional[int] = None,
        retry_backoff_multiplier: Optional[float] = None,
    ) -> BackoffPolicy:
        """
        Replace the runtime-tunable retry knobs.

        Applies to connect attempts and retries that start after the call.
        """
        updates = {
            "max_retries": max_retries,
            "base_retry_delay_ms": base_retry_delay_ms,
            "max_retry_delay_ms": max_retry_delay_ms,
            "retry_backoff_multiplier": retry_backoff_multiplier,
        }
        updates = {k: v for k, v in updates.items() if v is not None}
        base_delay = updates.get("base_retry_delay_ms", self.settings.base_retry_delay_ms)
        max_delay = updates.get("max_retry_delay_ms", self.settings.max_retry_delay_ms)
        if max_delay < base_delay:
            raise ValueError("max_retry_delay_ms must be >= base_retry_delay_ms")

        # model_copy skips validation; BackoffPolicy rejects negative values
        settings = self.settings.model_copy(update=updates)
        policy = BackoffPolicy.from_settings(settings)

        self.settings = settings
        self.tracker.backoff = policy
        for supervisor in self._supervisors.values():
            supervisor.backoff = policy
        self.logger.info(f"Retry settings updated: {updates}")
        return policy
