"""
Error Taxonomy

Defines the error types raised and consumed by the monitoring engine.
Every error carries a category, a severity and whether it may be retried,
so the rest of the engine can react by tag instead of by message.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of errors for retry decisions."""

    NETWORK = "network"           # Endpoint/connectivity/RPC transport
    TRANSACTION = "transaction"   # Confirmation, timeouts, on-chain rejection
    CONTRACT = "contract"         # Smart contract execution failure
    VALIDATION = "validation"     # Malformed caller input
    USER = "user"                 # Insufficient funds, gas estimation


class ErrorSeverity(str, Enum):
    """Severity levels, ordered from least to most severe."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode(str, Enum):
    """Stable error codes shared by both networks."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    RPC_ERROR = "RPC_ERROR"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    TRANSACTION_TIMEOUT = "TRANSACTION_TIMEOUT"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"
    NONCE_TOO_LOW = "NONCE_TOO_LOW"
    UNDERPRICED = "UNDERPRICED"
    CONTRACT_EXECUTION_FAILED = "CONTRACT_EXECUTION_FAILED"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    network: Optional[str] = None
    operation: Optional[str] = None
    reference: Optional[str] = None
    endpoint: Optional[str] = None
    address: Optional[str] = None
    retry_attempt: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "network": self.network,
            "operation": self.operation,
            "reference": self.reference,
            "endpoint": self.endpoint,
            "address": self.address,
            "retryAttempt": self.retry_attempt,
        }
        data = {k: v for k, v in data.items() if v is not None}
        if self.details:
            data["details"] = dict(self.details)
        return data


class MonitorError(Exception):
    """
    Base class for classified monitoring errors.

    Subclasses fix the category, severity and retryability; callers only
    choose the message and context.
    """

    category: ErrorCategory = ErrorCategory.TRANSACTION
    severity: ErrorSeverity = ErrorSeverity.HIGH
    retryable: bool = False
    is_timeout: bool = False
    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
        }


# Network errors: critical, retryable
class NetworkError(MonitorError):
    """Network connectivity error."""

    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.CRITICAL
    retryable = True
    code = ErrorCode.CONNECTION_FAILED


class ChainConnectionError(NetworkError):
    """Could not establish a connection to any endpoint."""


class ConnectionTimeoutError(NetworkError):
    """Connecting to an endpoint did not finish in time."""

    is_timeout = True
    code = ErrorCode.CONNECTION_TIMEOUT


class RpcTransportError(NetworkError):
    """The RPC request could not be delivered or answered."""

    code = ErrorCode.RPC_ERROR


# Transaction errors: high, retryable only for timeouts and nonce races
class TransactionExecutionError(MonitorError):
    """Transaction did not reach a successful on-chain state."""

    category = ErrorCategory.TRANSACTION
    severity = ErrorSeverity.HIGH
    retryable = False
    code = ErrorCode.TRANSACTION_FAILED


class ConfirmationTimeoutError(TransactionExecutionError):
    """Waiting for confirmation exceeded the configured timeout."""

    retryable = True
    is_timeout = True
    code = ErrorCode.TRANSACTION_TIMEOUT


class NonceTooLowError(TransactionExecutionError):
    """Nonce was already used; resubmission with a fresh nonce may succeed."""

    retryable = True
    code = ErrorCode.NONCE_TOO_LOW


class UnderpricedError(TransactionExecutionError):
    """Transaction or its replacement was underpriced."""

    retryable = True
    code = ErrorCode.UNDERPRICED


class TransactionRevertedError(TransactionExecutionError):
    """Transaction was included but reverted or rejected."""

    code = ErrorCode.TRANSACTION_REVERTED

    def __init__(
        self,
        message: str = "Transaction reverted",
        context: Optional[ErrorContext] = None,
        reason: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, context, cause)
        self.reason = reason
        if reason:
            self.context.details.setdefault("revert_reason", reason)


# Contract errors: resubmit with different parameters, never blindly retry
class ContractExecutionError(MonitorError):
    """Smart contract execution error."""

    category = ErrorCategory.CONTRACT
    severity = ErrorSeverity.HIGH
    retryable = False
    code = ErrorCode.CONTRACT_EXECUTION_FAILED


# Validation errors: caller input is wrong
class ValidationError(MonitorError):
    """Malformed caller input."""

    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.MEDIUM
    retryable = False
    code = ErrorCode.INVALID_PARAMETERS


class InvalidAddressError(ValidationError):
    code = ErrorCode.INVALID_ADDRESS


class InvalidParametersError(ValidationError):
    pass


# User errors: the account cannot pay for the operation
class UserError(MonitorError):
    """Operation cannot proceed because of the user's account state."""

    category = ErrorCategory.USER
    severity = ErrorSeverity.MEDIUM
    retryable = False
    code = ErrorCode.INSUFFICIENT_FUNDS


class InsufficientFundsError(UserError):
    """Wallet has insufficient funds."""


class GasEstimationError(UserError):
    """Gas estimation failed."""

    code = ErrorCode.GAS_ESTIMATION_FAILED


# Programmer / configuration errors: raised synchronously, never classified
class ConfigurationError(Exception):
    """Engine is misconfigured or used with an unknown network."""


class UnknownNetworkError(ValidationError, ConfigurationError):
    """No chain client is registered for the requested network."""


class ConnectionInProgressError(RuntimeError):
    """A connect attempt for this network is already running."""


class EngineStoppedError(RuntimeError):
    """The engine was stopped and no longer accepts work."""
