"""
Error Classification

Maps any raised error or raw value to a single ErrorClassification.
Typed MonitorError subclasses classify by tag. Everything else is
classified from its message, which is the only place in the engine that
looks at error text.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .errors import (
    ErrorCategory,
    ErrorCode,
    ErrorSeverity,
    MonitorError,
)


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying an error."""

    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool
    is_timeout: bool = False
    code: ErrorCode = ErrorCode.UNKNOWN
    message: str = ""


# Substrings that make an untyped error retryable whatever its category.
RETRYABLE_PATTERNS = (
    "network",
    "timeout",
    "connection",
    "temporary",
    "busy",
    "rate limit",
    "too many requests",
    "nonce too low",
)

_FUNDS_PATTERNS = (
    "insufficient funds",
    "insufficient balance",
    "balance too low",
    "exceeds balance",
    "gas estimation failed",
    "cannot estimate gas",
    "failed to estimate gas",
)
_VALIDATION_PATTERNS = (
    "invalid address",
    "bad address",
    "invalid parameter",
    "invalid argument",
    "invalid params",
    "malformed",
    "invalid reference",
)
_CONTRACT_PATTERNS = (
    "execution reverted",
    "revert",
    "contract",
)
_REJECTED_PATTERNS = (
    "rejected",
    "dropped",
    "transaction failed",
    "extrinsicfailed",
    "dispatch error",
)
_TX_TIMEOUT_PATTERNS = (
    "transaction timeout",
    "confirmation timeout",
    "timed out waiting",
    "waiting for confirmation",
)
_TX_RETRYABLE_PATTERNS = (
    "nonce too low",
    "underpriced",
)
_NETWORK_PATTERNS = (
    "connection",
    "network",
    "timeout",
    "timed out",
    "websocket",
    "socket",
    "refused",
    "unreachable",
    "rpc",
)


def error_message(error: Any) -> str:
    """Best-effort text for any error or raw value."""
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        text = str(error)
        return text or type(error).__name__
    return str(error)


def matches_retryable_text(message: str) -> bool:
    """Return True when the message reads like a transient failure."""
    lowered = message.lower()
    return any(pattern in lowered for pattern in RETRYABLE_PATTERNS)


def classify_error(error: Any) -> ErrorClassification:
    """
    Classify an exception or raw value.

    Deterministic and side-effect free: the same input always yields the
    same classification.
    """
    message = error_message(error)

    if isinstance(error, MonitorError):
        return ErrorClassification(
            category=error.category,
            severity=error.severity,
            retryable=error.retryable,
            is_timeout=error.is_timeout,
            code=error.code,
            message=message,
        )

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorClassification(
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.CRITICAL,
            retryable=True,
            is_timeout=True,
            code=ErrorCode.CONNECTION_TIMEOUT,
            message=message,
        )

    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorClassification(
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.CRITICAL,
            retryable=True,
            code=ErrorCode.RPC_ERROR,
            message=message,
        )

    base = _classify_message(message)
    if not base.retryable and matches_retryable_text(message):
        return ErrorClassification(
            category=base.category,
            severity=base.severity,
            retryable=True,
            is_timeout=base.is_timeout,
            code=base.code,
            message=message,
        )
    return base


def is_retryable(classification: ErrorClassification) -> bool:
    """The one retry predicate used by the supervisor and the tracker."""
    return classification.retryable


def _classify_message(message: str) -> ErrorClassification:
    lowered = message.lower()

    def build(category, severity, retryable, code, is_timeout=False):
        return ErrorClassification(
            category=category,
            severity=severity,
            retryable=retryable,
            is_timeout=is_timeout,
            code=code,
            message=message,
        )

    if any(p in lowered for p in _FUNDS_PATTERNS):
        code = (
            ErrorCode.GAS_ESTIMATION_FAILED
            if "estimat" in lowered
            else ErrorCode.INSUFFICIENT_FUNDS
        )
        return build(ErrorCategory.USER, ErrorSeverity.MEDIUM, False, code)

    if any(p in lowered for p in _VALIDATION_PATTERNS):
        code = (
            ErrorCode.INVALID_ADDRESS
            if "address" in lowered
            else ErrorCode.INVALID_PARAMETERS
        )
        return build(ErrorCategory.VALIDATION, ErrorSeverity.MEDIUM, False, code)

    if any(p in lowered for p in _TX_TIMEOUT_PATTERNS):
        return build(
            ErrorCategory.TRANSACTION,
            ErrorSeverity.HIGH,
            True,
            ErrorCode.TRANSACTION_TIMEOUT,
            is_timeout=True,
        )

    if any(p in lowered for p in _TX_RETRYABLE_PATTERNS):
        code = ErrorCode.NONCE_TOO_LOW if "nonce" in lowered else ErrorCode.UNDERPRICED
        return build(ErrorCategory.TRANSACTION, ErrorSeverity.HIGH, True, code)

    if any(p in lowered for p in _CONTRACT_PATTERNS):
        return build(
            ErrorCategory.CONTRACT,
            ErrorSeverity.HIGH,
            False,
            ErrorCode.CONTRACT_EXECUTION_FAILED,
        )

    if any(p in lowered for p in _REJECTED_PATTERNS):
        return build(
            ErrorCategory.TRANSACTION,
            ErrorSeverity.HIGH,
            False,
            ErrorCode.TRANSACTION_REVERTED,
        )

    if any(p in lowered for p in _NETWORK_PATTERNS):
        is_timeout = "timeout" in lowered or "timed out" in lowered
        return build(
            ErrorCategory.NETWORK,
            ErrorSeverity.CRITICAL,
            True,
            ErrorCode.CONNECTION_TIMEOUT if is_timeout else ErrorCode.CONNECTION_FAILED,
            is_timeout=is_timeout,
        )

    return build(
        ErrorCategory.TRANSACTION,
        ErrorSeverity.MEDIUM,
        False,
        ErrorCode.UNKNOWN,
    )


_CATEGORY_MESSAGES = {
    ErrorCategory.NETWORK: "Network connection issue",
    ErrorCategory.CONTRACT: "Smart contract error",
    ErrorCategory.USER: "Invalid input or insufficient funds",
    ErrorCategory.TRANSACTION: "Transaction failed",
    ErrorCategory.VALIDATION: "Validation error",
}


def format_for_user(classification: ErrorClassification) -> str:
    """Short, user-facing description of a classified error."""
    message = _CATEGORY_MESSAGES.get(classification.category, "An error occurred")

    if classification.code == ErrorCode.INSUFFICIENT_FUNDS:
        message = "Insufficient funds to complete this transaction"
    elif classification.code == ErrorCode.INVALID_ADDRESS:
        message = "Invalid address format"
    elif classification.code == ErrorCode.TRANSACTION_REVERTED:
        message = "Transaction was rejected by the blockchain"
    elif classification.is_timeout and classification.category == ErrorCategory.TRANSACTION:
        message = "Transaction confirmation timed out"

    if classification.retryable:
        message += ". Please try again"
    return message


def format_for_logging(
    error: Any,
    classification: Optional[ErrorClassification] = None,
) -> str:
    """Detailed single-line description for logs."""
    classification = classification or classify_error(error)
    parts = [
        f"[{classification.severity.value.upper()}]",
        f"[{classification.category.value.upper()}]",
        f"[{classification.code.value}] {classification.message}",
    ]
    if isinstance(error, MonitorError):
        context = error.context.to_dict()
        if context:
            parts.append(f"context: {context}")
        if error.cause is not None:
            parts.append(f"cause: {error_message(error.cause)}")
    return " | ".join(parts)
