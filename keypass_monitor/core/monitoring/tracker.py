"""
Transaction tracking.

Follows one submitted transaction reference until it reaches a terminal
status (confirmed, failed or timeout). Failed confirmation waits are
classified; retryable failures are retried with a linear delay until the
retry budget is spent.

Every retry appends an intermediate ``retrying`` snapshot to the history;
the terminal record is appended exactly once. Failures never propagate to
the caller: the returned record carries the outcome and ``last_error``.
"""

import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from ...config import MonitorSettings
from ..recovery.backoff import BackoffPolicy
from ..recovery.classifier import classify_error, is_retryable
from ..recovery.errors import (
    ConfirmationTimeoutError,
    EngineStoppedError,
    ErrorContext,
    InvalidParametersError,
    MonitorError,
    TransactionExecutionError,
    TransactionRevertedError,
)
from .chain_client import ChainClient
from .clock import Clock, SYSTEM_CLOCK
from .events import EventBus, MonitorEvent
from .models import MonitoredTransaction, Receipt, TransactionStatus
from .reporting import ErrorReporter
from .store import MonitoringStore


ProgressCallback = Callable[[MonitoredTransaction], Any]


class TransactionTracker:
    """Drives confirmation waits and retries for monitored transactions."""

    def __init__(
        self,
        store: MonitoringStore,
        bus: EventBus,
        *,
        settings: MonitorSettings,
        reporter: Optional[ErrorReporter] = None,
        backoff: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        is_stopped: Optional[Callable[[], bool]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.bus = bus
        self.settings = settings
        self.clock = clock or SYSTEM_CLOCK
        self.logger = logger or logging.getLogger(__name__)
        self.reporter = reporter or ErrorReporter(store, bus, self.clock, self.logger)
        # Replaced at runtime by MonitoringEngine.update_retry_settings
        self.backoff = backoff or BackoffPolicy.from_settings(settings)
        self._is_stopped = is_stopped or (lambda: False)

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def monitor(
        self,
        network: str,
        client: ChainClient,
        reference: str,
        operation: str = "unknown",
        *,
        max_retries: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MonitoredTransaction:
        """
        Monitor ``reference`` until it is confirmed or given up on.

        A second call for a reference that is already being monitored waits
        for the first chain to finish, then starts a fresh one.

        Raises:
            InvalidParametersError: empty or malformed reference, negative max_retries
            EngineStoppedError: the engine was stopped
        """
        if not reference:
            raise InvalidParametersError(
                "Transaction reference is required",
                context=ErrorContext(network=network, operation=operation),
            )
        client.validate_reference(reference)
        if max_retries is not None and max_retries < 0:
            raise InvalidParametersError(
                f"max_retries must be >= 0, got {max_retries}",
                context=ErrorContext(network=network, operation=operation, reference=reference),
            )
        if self._is_stopped():
            raise EngineStoppedError("Monitoring engine is stopped")

        lock = self._acquire_lock(reference)
        try:
            async with lock:
                if self._is_stopped():
                    raise EngineStoppedError("Monitoring engine is stopped")
                return await self._run(
                    network,
                    client,
                    reference,
                    operation,
                    max_retries=self.backoff.max_retries if max_retries is None else max_retries,
                    on_progress=on_progress,
                    metadata=metadata,
                )
        finally:
            self._release_lock(reference)

    def _acquire_lock(self, reference: str) -> asyncio.Lock:
        lock = self._locks.setdefault(reference, asyncio.Lock())
        self._lock_users[reference] = self._lock_users.get(reference, 0) + 1
        return lock

    def _release_lock(self, reference: str) -> None:
        users = self._lock_users.get(reference, 1) - 1
        if users <= 0:
            self._lock_users.pop(reference, None)
            self._locks.pop(reference, None)
        else:
            self._lock_users[reference] = users

    def is_monitoring(self, reference: str) -> bool:
        return reference in self._locks and self._locks[reference].locked()

    async def _run(
        self,
        network: str,
        client: ChainClient,
        reference: str,
        operation: str,
        *,
        max_retries: int,
        on_progress: Optional[ProgressCallback],
        metadata: Optional[Dict[str, Any]],
    ) -> MonitoredTransaction:
        now = self.clock.now_ms()
        tx = MonitoredTransaction(
            id=uuid.uuid4().hex,
            network=network,
            reference=reference,
            status=TransactionStatus.PENDING,
            submitted_at=now,
            operation=operation,
            max_retries=max_retries,
            metadata=dict(metadata or {}),
        )
        await self.store.register_live(tx, now)

        try:
            self.logger.info(f"[{network}] monitoring {operation} {reference}")
            self.bus.emit(MonitorEvent.TRANSACTION_STARTED, tx.snapshot())
            await self._notify(on_progress, tx)

            while True:
                await self._transition(tx, TransactionStatus.CONFIRMING, on_progress)

                receipt, error = await self._await_confirmation(client, tx)
                if self._is_stopped():
                    self.logger.info(f"[{network}] engine stopped, discarding result for {reference}")
                    return tx

                if error is None:
                    await self._confirm(tx, receipt, on_progress)
                    return tx

                classification = classify_error(error)
                tx.last_error = classification.message
                tx.failed_at = self.clock.now_ms()

                await self.reporter.report(
                    network,
                    classification.severity,
                    operation,
                    classification.message,
                    retryable=classification.retryable,
                    category=classification.category,
                    reference=reference,
                    context=self._error_context(error, tx),
                )

                if is_retryable(classification) and tx.retry_count < tx.max_retries:
                    tx.retry_count += 1
                    tx.status = TransactionStatus.RETRYING
                    await self.store.append_history(tx.snapshot())
                    await self.store.touch_live(reference, self.clock.now_ms())

                    delay = self.backoff.linear_delay(tx.retry_count)
                    self.logger.warning(
                        f"[{network}] retrying {reference} in {delay}s "
                        f"({tx.retry_count}/{tx.max_retries}): {tx.last_error}"
                    )
                    self.bus.emit(MonitorEvent.TRANSACTION_RETRYING, tx.snapshot())
                    await self._notify(on_progress, tx)

                    await self.clock.sleep(delay)
                    if self._is_stopped():
                        self.logger.info(f"[{network}] engine stopped, abandoning retry of {reference}")
                        return tx

                    await self._transition(tx, TransactionStatus.PENDING, on_progress)
                    continue

                tx.status = TransactionStatus.TIMEOUT if classification.is_timeout else TransactionStatus.FAILED
                await self.store.append_history(tx.snapshot())
                self.logger.error(
                    f"[{network}] {reference} {tx.status.value} after {tx.retry_count} retries: {tx.last_error}"
                )
                self.bus.emit(MonitorEvent.TRANSACTION_FAILED, tx.snapshot())
                await self._notify(on_progress, tx)
                return tx
        finally:
            await self.store.release_live(reference)

    async def _await_confirmation(
        self,
        client: ChainClient,
        tx: MonitoredTransaction,
    ) -> Tuple[Optional[Receipt], Optional[BaseException]]:
        timeout = self.settings.transaction_timeout_ms / 1000
        context = ErrorContext(
            network=tx.network,
            operation=tx.operation,
            reference=tx.reference,
            retry_attempt=tx.retry_count,
        )
        try:
            receipt = await asyncio.wait_for(
                client.wait_for_confirmation(tx.reference, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            return None, ConfirmationTimeoutError(
                f"Transaction confirmation timeout after {timeout}s",
                context=context,
                cause=e,
            )
        except Exception as e:
            return None, e

        if receipt is None:
            return None, TransactionExecutionError("Transaction receipt not found", context=context)
        if not receipt.success:
            return None, TransactionRevertedError(
                f"Transaction reverted: {receipt.revert_reason}" if receipt.revert_reason else "Transaction reverted",
                context=context,
                reason=receipt.revert_reason,
            )
        return receipt, None

    async def _confirm(
        self,
        tx: MonitoredTransaction,
        receipt: Receipt,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        tx.status = TransactionStatus.CONFIRMED
        tx.confirmed_at = self.clock.now_ms()
        tx.block_number = receipt.block_number
        tx.gas_used = receipt.gas_used
        tx.cost = receipt.cost
        tx.confirmations = receipt.confirmations

        await self.store.append_history(tx.snapshot())
        self.logger.info(
            f"[{tx.network}] {tx.reference} confirmed in block {tx.block_number} "
            f"after {tx.confirmation_latency_ms}ms"
        )
        self.bus.emit(MonitorEvent.TRANSACTION_CONFIRMED, tx.snapshot())
        await self._notify(on_progress, tx)

    async def _transition(
        self,
        tx: MonitoredTransaction,
        status: TransactionStatus,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        tx.status = status
        await self.store.touch_live(tx.reference, self.clock.now_ms())
        await self._notify(on_progress, tx)

    async def _notify(self, on_progress: Optional[ProgressCallback], tx: MonitoredTransaction) -> None:
        if on_progress is None:
            return
        try:
            result = on_progress(tx.snapshot())
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.warning(f"Progress callback failed for {tx.reference}: {e}", exc_info=True)

    @staticmethod
    def _error_context(error: BaseException, tx: MonitoredTransaction) -> Dict[str, Any]:
        context: Dict[str, Any] = {}
        if isinstance(error, MonitorError):
            context.update(error.context.to_dict())
        context.setdefault("retryAttempt", tx.retry_count)
        context["errorType"] = type(error).__name__
        return context
