import logging
import uuid
from typing import Any, Dict, Optional

from ..recovery.errors import ErrorCategory, ErrorSeverity
from .clock import Clock, SYSTEM_CLOCK
from .events import EventBus, MonitorEvent
from .models import ErrorReport
from .store import MonitoringStore


_LOG_LEVELS = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.ERROR,
}


class ErrorReporter:
    """Builds, logs, stores and announces ErrorReports."""

    def __init__(
        self,
        store: MonitoringStore,
        bus: EventBus,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.bus = bus
        self.clock = clock or SYSTEM_CLOCK
        self.logger = logger or logging.getLogger(__name__)

    async def report(
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
        report = ErrorReport(
            id=uuid.uuid4().hex,
            network=network,
            severity=ErrorSeverity(severity),
            timestamp=self.clock.now_ms(),
            operation=operation,
            message=message,
            retryable=retryable,
            category=ErrorCategory(category) if category is not None else None,
            reference=reference,
            context=dict(context or {}),
        )

        self.logger.log(
            _LOG_LEVELS[report.severity],
            f"[{network}] {operation} error ({report.severity.value}): {message}",
        )
        await self.store.add_error(report)
        self.bus.emit(MonitorEvent.ERROR_REPORTED, report)
        return report
