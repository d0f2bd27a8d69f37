"""
Monitoring Module

Connection supervision, transaction tracking, health checks and metrics
for the KILT and Moonbeam networks.
"""

from .chain_client import ChainClient
from .clock import Clock, SYSTEM_CLOCK
from .connection import ConnectionSupervisor
from .engine import MonitoringEngine
from .events import EventBus, MonitorEvent
from .health import HealthChecker
from .metrics import MetricsAggregator, median, percentile
from .models import (
    ChainHead,
    ChainInfo,
    ConnectionState,
    EndpointFailure,
    ErrorReport,
    FeeSnapshot,
    HealthCheckResult,
    HealthStatus,
    MonitoredTransaction,
    PerformanceMetrics,
    Receipt,
    TransactionStatus,
)
from .reporting import ErrorReporter
from .store import MonitoringStore
from .tracker import TransactionTracker

__all__ = [
    # Engine
    "MonitoringEngine",
    "ConnectionSupervisor",
    "TransactionTracker",
    "MetricsAggregator",
    "HealthChecker",
    "ErrorReporter",
    "MonitoringStore",
    "EventBus",
    "MonitorEvent",
    "Clock",
    "SYSTEM_CLOCK",
    # Chain client
    "ChainClient",
    "ChainInfo",
    "ChainHead",
    "FeeSnapshot",
    "Receipt",
    # Models
    "ConnectionState",
    "TransactionStatus",
    "HealthStatus",
    "MonitoredTransaction",
    "EndpointFailure",
    "HealthCheckResult",
    "PerformanceMetrics",
    "ErrorReport",
    # Helpers
    "median",
    "percentile",
]
