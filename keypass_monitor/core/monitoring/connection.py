"""
Connection supervision for one network.

The supervisor owns the ConnectionState of its network. It connects by
walking the ordered endpoint list with exponential backoff between rounds,
runs the periodic health check, and reconnects when the liveness probe
fails.

Usage:
    supervisor = ConnectionSupervisor("moonbeam", client, settings=settings, bus=bus)
    info = await supervisor.connect()
    ...
    await supervisor.disconnect()
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Sequence

from ...config import MonitorSettings
from ..recovery.backoff import BackoffPolicy
from ..recovery.classifier import error_message
from ..recovery.errors import (
    ChainConnectionError,
    ConfigurationError,
    ConnectionInProgressError,
    ConnectionTimeoutError,
    EngineStoppedError,
    ErrorContext,
)
from .chain_client import ChainClient
from .clock import Clock, SYSTEM_CLOCK
from .events import EventBus, MonitorEvent
from .health import HealthChecker
from .models import (
    ChainInfo,
    ConnectionState,
    EndpointFailure,
    HealthCheckResult,
    HealthStatus,
)


MAX_ENDPOINT_FAILURES = 100


class ConnectionSupervisor:
    """Connect, probe and reconnect one chain client."""

    def __init__(
        self,
        network: str,
        client: ChainClient,
        *,
        settings: MonitorSettings,
        bus: EventBus,
        endpoints: Optional[Sequence[str]] = None,
        backoff: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.network = network
        self.client = client
        self.settings = settings
        self.bus = bus
        self.clock = clock or SYSTEM_CLOCK
        self.logger = logger or logging.getLogger(__name__)

        self.endpoints: List[str] = list(
            endpoints or getattr(client, "endpoints", None) or settings.endpoints_for(network)
        )
        if not self.endpoints:
            raise ConfigurationError(f"No endpoints configured for network {network}")

        # Replaced at runtime by MonitoringEngine.update_retry_settings
        self.backoff = backoff or BackoffPolicy.from_settings(settings)

        self.health_checker = HealthChecker(
            network,
            client,
            probe_timeout_seconds=settings.health_check_timeout_ms / 1000,
            block_staleness_ms=settings.block_staleness_ms,
            high_fee_threshold=settings.high_fee_threshold_wei,
            clock=self.clock,
            logger=self.logger,
        )

        self._state = ConnectionState.DISCONNECTED
        self._chain_info: Optional[ChainInfo] = None
        self._last_health: Optional[HealthCheckResult] = None
        self._failures: Deque[EndpointFailure] = deque(maxlen=MAX_ENDPOINT_FAILURES)
        self._connecting = False
        self._stopped = False
        self._health_task: Optional[asyncio.Task] = None

    # ---------------------------
    # State
    # ---------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def chain_info(self) -> Optional[ChainInfo]:
        return self._chain_info

    @property
    def last_health(self) -> Optional[HealthCheckResult]:
        return self._last_health

    @property
    def endpoint_failures(self) -> List[EndpointFailure]:
        return list(self._failures)

    @property
    def health_checks_running(self) -> bool:
        return self._health_task is not None and not self._health_task.done()

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            self.logger.debug(f"[{self.network}] {self._state.value} -> {state.value}")
            self._state = state

    # ---------------------------
    # Connect / disconnect
    # ---------------------------
    async def connect(self) -> ChainInfo:
        """
        Connect to the first endpoint that answers.

        Raises:
            ConnectionInProgressError: a connect or reconnect is already running
            ChainConnectionError: every endpoint failed on every attempt
        """
        if self._stopped:
            raise EngineStoppedError(f"Supervisor for {self.network} is stopped")
        if self._connecting:
            raise ConnectionInProgressError(f"Connection to {self.network} already in progress")

        self._connecting = True
        try:
            self._set_state(ConnectionState.CONNECTING)
            try:
                info = await self._connect_with_retry()
            except ChainConnectionError as e:
                self._set_state(ConnectionState.DISCONNECTED)
                self.logger.error(f"[{self.network}] connection failed: {e}")
                self.bus.emit(
                    MonitorEvent.CONNECTION_FAILED,
                    {"network": self.network, "error": str(e)},
                )
                raise

            self._chain_info = info
            self._set_state(ConnectionState.CONNECTED)
            self._start_health_checks()
            self.logger.info(f"[{self.network}] connected to {info.name} via {info.endpoint}")
            self.bus.emit(MonitorEvent.CONNECTED, {"network": self.network, "chain_info": info})
            return info
        finally:
            self._connecting = False

    async def disconnect(self) -> None:
        """Stop health checks and release the client. Safe to call repeatedly."""
        await self._stop_health_task()

        had_connection = self._state != ConnectionState.DISCONNECTED or self._chain_info is not None
        await self._release_client()
        self._chain_info = None
        self._set_state(ConnectionState.DISCONNECTED)

        if had_connection:
            self.logger.info(f"[{self.network}] disconnected")
            self.bus.emit(MonitorEvent.DISCONNECTED, {"network": self.network})

    async def reconnect(self) -> bool:
        """
        Release the client and run the connect loop again.

        Returns True on success. On failure the network is left disconnected
        and health checks stop.
        """
        if self._connecting:
            raise ConnectionInProgressError(f"Connection to {self.network} already in progress")

        self._connecting = True
        try:
            self._set_state(ConnectionState.RECONNECTING)
            self.logger.warning(f"[{self.network}] reconnecting")
            self.bus.emit(MonitorEvent.RECONNECTING, {"network": self.network})

            await self._release_client()
            try:
                info = await self._connect_with_retry()
            except asyncio.CancelledError:
                self._chain_info = None
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except ChainConnectionError as e:
                self._chain_info = None
                self._set_state(ConnectionState.DISCONNECTED)
                self.logger.error(f"[{self.network}] reconnection failed: {e}")
                self.bus.emit(
                    MonitorEvent.RECONNECTION_FAILED,
                    {"network": self.network, "error": str(e)},
                )
                await self._stop_health_task()
                return False

            self._chain_info = info
            self._set_state(ConnectionState.CONNECTED)
            self.logger.info(f"[{self.network}] reconnected via {info.endpoint}")
            self.bus.emit(MonitorEvent.RECONNECTED, {"network": self.network, "chain_info": info})
            self._start_health_checks()
            return True
        finally:
            self._connecting = False

    async def _connect_with_retry(self) -> ChainInfo:
        policy = self.backoff
        attempts = max(1, policy.max_retries)
        timeout = self.settings.connection_timeout_ms / 1000
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            for endpoint in self.endpoints:
                self._raise_if_stopped()
                try:
                    return await asyncio.wait_for(self.client.connect(endpoint), timeout=timeout)
                except asyncio.TimeoutError:
                    last_error = ConnectionTimeoutError(
                        f"Connecting to {endpoint} timed out after {timeout}s",
                        context=ErrorContext(network=self.network, endpoint=endpoint),
                    )
                except Exception as e:
                    last_error = e

                self._failures.append(
                    EndpointFailure(
                        network=self.network,
                        endpoint=endpoint,
                        attempt=attempt,
                        error=error_message(last_error),
                        timestamp=self.clock.now_ms(),
                    )
                )
                self.logger.warning(
                    f"[{self.network}] endpoint {endpoint} failed "
                    f"(attempt {attempt + 1}/{attempts}): {error_message(last_error)}"
                )
                await self._release_client()

            if attempt < attempts - 1:
                delay = policy.exponential_delay(attempt)
                self.logger.info(f"[{self.network}] retrying connection in {delay}s")
                await self.clock.sleep(delay)

        raise ChainConnectionError(
            f"Failed to connect to {self.network} after {attempts} attempts",
            context=ErrorContext(
                network=self.network,
                operation="connect",
                details={"endpoints": list(self.endpoints)},
            ),
            cause=last_error,
        )

    def _raise_if_stopped(self) -> None:
        if self._stopped:
            raise ChainConnectionError(
                f"Supervisor for {self.network} stopped while connecting",
                context=ErrorContext(network=self.network, operation="connect"),
            )

    async def _release_client(self) -> None:
        try:
            await self.client.disconnect()
        except Exception as e:
            self.logger.warning(f"[{self.network}] client disconnect raised: {e}")

    # ---------------------------
    # Health checks
    # ---------------------------
    async def check_health(self) -> HealthCheckResult:
        result = await self.health_checker.run(connected=self._state == ConnectionState.CONNECTED)
        self._last_health = result
        if result.status != HealthStatus.HEALTHY:
            self.logger.warning(f"[{self.network}] health {result.status.value}")
        self.bus.emit(MonitorEvent.HEALTH_UPDATED, result)
        return result

    def _start_health_checks(self) -> None:
        if self._stopped or not self.settings.enable_health_checks:
            return
        if self.health_checks_running:
            return
        self._health_task = asyncio.create_task(
            self._health_loop(), name=f"health-check-{self.network}"
        )

    async def _health_loop(self) -> None:
        interval = self.settings.health_check_interval_ms / 1000
        while not self._stopped:
            await self.clock.sleep(interval)
            if self._stopped:
                return

            try:
                result = await self.check_health()
            except Exception as e:
                self.logger.error(f"[{self.network}] health check crashed: {e}", exc_info=True)
                continue

            if result.checks.connection.status == HealthStatus.HEALTHY:
                continue

            self.bus.emit(
                MonitorEvent.HEALTH_CHECK_FAILED,
                {"network": self.network, "error": result.checks.connection.error},
            )
            if not self.settings.auto_reconnect or self._connecting:
                continue
            if not await self.reconnect():
                return

    async def _stop_health_task(self) -> None:
        task = self._health_task
        self._health_task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from inside the loop; it exits on its own
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def stop(self) -> None:
        """Cancel the health timer and refuse further connects. Idempotent."""
        self._stopped = True
        await self._stop_health_task()
