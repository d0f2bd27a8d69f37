"""
Monitoring models and types.

Runtime records that are mutated through a lifecycle are dataclasses;
snapshots handed to observers and the HTTP layer are immutable pydantic
models. All timestamps are integer epoch milliseconds.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..recovery.errors import ErrorCategory, ErrorSeverity


class ConnectionState(str, Enum):
    """Connection lifecycle of one network supervisor."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class TransactionStatus(str, Enum):
    """Monitored transaction lifecycle status."""
    PENDING = "pending"          # Waiting to start (again)
    CONFIRMING = "confirming"    # Waiting for confirmation
    RETRYING = "retrying"        # Failed, retry scheduled
    CONFIRMED = "confirmed"      # Successfully confirmed
    FAILED = "failed"            # Gave up
    TIMEOUT = "timeout"          # Gave up after a confirmation timeout


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.CONFIRMED, TransactionStatus.FAILED, TransactionStatus.TIMEOUT}
)


class HealthStatus(str, Enum):
    """Health levels, ordered from best to worst."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    CRITICAL = "critical"


_HEALTH_RANK = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
    HealthStatus.CRITICAL: 3,
}


def worst_status(*statuses: HealthStatus) -> HealthStatus:
    return max(statuses, key=_HEALTH_RANK.__getitem__, default=HealthStatus.HEALTHY)


# ---------------------------------------------------------------------------
# Chain client value types
# ---------------------------------------------------------------------------


class ChainInfo(BaseModel):
    """What a chain client learned while connecting."""
    model_config = ConfigDict(frozen=True)

    network: str
    name: str
    endpoint: str
    chain_id: Optional[int] = None
    version: Optional[str] = None
    runtime: Optional[str] = None
    genesis_hash: Optional[str] = None


class ChainHead(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int
    hash: Optional[str] = None
    timestamp_ms: Optional[int] = None


class FeeSnapshot(BaseModel):
    """Current fee level in the chain's smallest unit."""
    model_config = ConfigDict(frozen=True)

    gas_price: int = 0
    max_priority_fee: Optional[int] = None


class Receipt(BaseModel):
    """Confirmation outcome for a transaction reference."""
    model_config = ConfigDict(frozen=True)

    reference: str
    block_number: int
    success: bool = True
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None
    confirmations: int = 1
    revert_reason: Optional[str] = None

    @property
    def cost(self) -> Optional[int]:
        if self.gas_used is None or self.effective_gas_price is None:
            return None
        return self.gas_used * self.effective_gas_price


# ---------------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------------


@dataclass
class MonitoredTransaction:
    """A transaction followed from submission to a terminal status."""
    id: str
    network: str
    reference: str
    status: TransactionStatus
    submitted_at: int
    operation: str = "unknown"
    retry_count: int = 0
    max_retries: int = 3

    confirmed_at: Optional[int] = None
    failed_at: Optional[int] = None
    last_error: Optional[str] = None

    gas_used: Optional[int] = None
    cost: Optional[int] = None
    block_number: Optional[int] = None
    confirmations: Optional[int] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def confirmation_latency_ms(self) -> Optional[int]:
        if self.status != TransactionStatus.CONFIRMED or self.confirmed_at is None:
            return None
        return self.confirmed_at - self.submitted_at

    def snapshot(self) -> "MonitoredTransaction":
        """Independent copy for the append-only history."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "network": self.network,
            "reference": self.reference,
            "status": self.status.value,
            "submittedAt": self.submitted_at,
            "confirmedAt": self.confirmed_at,
            "failedAt": self.failed_at,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "lastError": self.last_error,
            # Integers can exceed JSON-safe range; keep them exact as strings
            "gasUsed": str(self.gas_used) if self.gas_used is not None else None,
            "cost": str(self.cost) if self.cost is not None else None,
            "blockNumber": self.block_number,
            "confirmations": self.confirmations,
            "operation": self.operation,
            "metadata": self.metadata,
        }


@dataclass
class EndpointFailure:
    """One failed endpoint during a connect attempt."""
    network: str
    endpoint: str
    attempt: int
    error: str
    timestamp: int


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class CheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: Optional[int] = None
    error: Optional[str] = None


class BlockProductionCheck(CheckResult):
    head_number: Optional[int] = None
    last_block_time: Optional[int] = None
    block_time_delta: Optional[int] = None


class NodeSyncCheck(CheckResult):
    is_syncing: Optional[bool] = None


class FeeLevelCheck(CheckResult):
    current_fee: Optional[int] = None
    trend: Optional[Literal["stable", "increasing", "decreasing"]] = None


class HealthChecks(BaseModel):
    model_config = ConfigDict(frozen=True)

    connection: CheckResult = Field(default_factory=CheckResult)
    block_production: BlockProductionCheck = Field(default_factory=BlockProductionCheck)
    node_sync: NodeSyncCheck = Field(default_factory=NodeSyncCheck)
    fee_level: FeeLevelCheck = Field(default_factory=FeeLevelCheck)


class HealthCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    network: str
    status: HealthStatus
    timestamp: int
    checks: HealthChecks = Field(default_factory=HealthChecks)
    recommendations: List[str] = Field(default_factory=list)


class MetricsPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: int
    end: int
    duration_ms: int


class TransactionCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    successful: int = 0
    failed: int = 0
    timed_out: int = 0
    pending: int = 0
    retried: int = 0
    success_rate: float = 0.0


class LatencyStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_ms: float = 0.0
    median_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0


class CostStats(BaseModel):
    """Exact integer totals in the chain's smallest unit."""
    model_config = ConfigDict(frozen=True)

    total_gas_used: int = 0
    total_cost: int = 0
    average_cost: int = 0
    average_gas_price: int = 0


class ErrorStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    network: str
    period: MetricsPeriod
    transactions: TransactionCounts
    latency: LatencyStats
    costs: CostStats
    errors: ErrorStats


class ErrorReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    network: str
    severity: ErrorSeverity
    timestamp: int
    operation: str
    message: str
    retryable: bool
    category: Optional[ErrorCategory] = None
    reference: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
