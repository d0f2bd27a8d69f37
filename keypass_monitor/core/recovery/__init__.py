"""
Error Recovery Module

Provides the error taxonomy, classification and retry delay schedules
shared by connection supervision and transaction tracking.
"""

from .backoff import BackoffPolicy
from .classifier import (
    ErrorClassification,
    classify_error,
    error_message,
    format_for_logging,
    format_for_user,
    is_retryable,
    matches_retryable_text,
)
from .errors import (
    ChainConnectionError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ConnectionInProgressError,
    ConnectionTimeoutError,
    ContractExecutionError,
    EngineStoppedError,
    ErrorCategory,
    ErrorCode,
    ErrorContext,
    ErrorSeverity,
    GasEstimationError,
    InsufficientFundsError,
    InvalidAddressError,
    InvalidParametersError,
    MonitorError,
    NetworkError,
    NonceTooLowError,
    RpcTransportError,
    TransactionExecutionError,
    TransactionRevertedError,
    UnderpricedError,
    UnknownNetworkError,
    UserError,
    ValidationError,
)

__all__ = [
    # Errors
    "MonitorError",
    "NetworkError",
    "ChainConnectionError",
    "ConnectionTimeoutError",
    "RpcTransportError",
    "TransactionExecutionError",
    "ConfirmationTimeoutError",
    "NonceTooLowError",
    "UnderpricedError",
    "TransactionRevertedError",
    "ContractExecutionError",
    "ValidationError",
    "InvalidAddressError",
    "InvalidParametersError",
    "UserError",
    "InsufficientFundsError",
    "GasEstimationError",
    "ConfigurationError",
    "UnknownNetworkError",
    "ConnectionInProgressError",
    "EngineStoppedError",
    "ErrorCategory",
    "ErrorCode",
    "ErrorContext",
    "ErrorSeverity",
    # Classification
    "ErrorClassification",
    "classify_error",
    "error_message",
    "is_retryable",
    "matches_retryable_text",
    "format_for_user",
    "format_for_logging",
    # Backoff
    "BackoffPolicy",
]
