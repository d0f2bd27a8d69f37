"""
JSON-RPC over HTTP, shared by the Substrate and EVM chain clients.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from ..core.recovery.classifier import ErrorClassification, classify_error
from ..core.recovery.errors import (
    ContractExecutionError,
    ErrorCode,
    ErrorContext,
    GasEstimationError,
    InsufficientFundsError,
    InvalidAddressError,
    InvalidParametersError,
    MonitorError,
    NonceTooLowError,
    RpcTransportError,
    TransactionRevertedError,
    UnderpricedError,
)


class JsonRpcError(MonitorError):
    """The node answered with a JSON-RPC error object we cannot classify further."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        rpc_code: Optional[int] = None,
        classification: Optional[ErrorClassification] = None,
    ):
        super().__init__(message, context)
        self.rpc_code = rpc_code
        if classification is not None:
            self.category = classification.category
            self.severity = classification.severity
            self.code = classification.code


_ERRORS_BY_CODE = {
    ErrorCode.NONCE_TOO_LOW: NonceTooLowError,
    ErrorCode.UNDERPRICED: UnderpricedError,
    ErrorCode.INSUFFICIENT_FUNDS: InsufficientFundsError,
    ErrorCode.GAS_ESTIMATION_FAILED: GasEstimationError,
    ErrorCode.CONTRACT_EXECUTION_FAILED: ContractExecutionError,
    ErrorCode.TRANSACTION_REVERTED: TransactionRevertedError,
    ErrorCode.INVALID_ADDRESS: InvalidAddressError,
    ErrorCode.INVALID_PARAMETERS: InvalidParametersError,
}


def error_from_rpc(error: Any, context: ErrorContext) -> MonitorError:
    """Turn a JSON-RPC error object into a typed error."""
    if isinstance(error, dict):
        message = str(error.get("message") or error)
        rpc_code = error.get("code")
        if error.get("data"):
            context.details["data"] = error["data"]
    else:
        message = str(error)
        rpc_code = None
    if rpc_code is not None:
        context.details["rpc_code"] = rpc_code

    classification = classify_error(message)
    error_cls = _ERRORS_BY_CODE.get(classification.code)
    if error_cls is not None:
        return error_cls(message, context=context)
    if classification.retryable:
        return RpcTransportError(message, context=context)
    return JsonRpcError(message, context=context, rpc_code=rpc_code, classification=classification)


class JsonRpcTransport:
    """
    Minimal JSON-RPC 2.0 client bound to one endpoint at a time.

    Transport failures surface as RpcTransportError, RPC error objects as the
    matching typed error.
    """

    def __init__(
        self,
        network: str,
        *,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.network = network
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._endpoint: Optional[str] = None
        self._request_id = 0

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @property
    def is_open(self) -> bool:
        return self._endpoint is not None and self._client is not None and not self._client.is_closed

    async def open(self, endpoint: str) -> None:
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)
        self._endpoint = endpoint

    async def close(self) -> None:
        self._endpoint = None
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        endpoint = self._endpoint
        context = ErrorContext(network=self.network, endpoint=endpoint, operation=method)
        if endpoint is None or self._client is None:
            raise RpcTransportError(f"No open connection for {self.network}", context=context)

        self._request_id += 1
        request: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post(endpoint, json=request)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise RpcTransportError(f"{method} request timeout", context=context, cause=e) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            reason = "too many requests" if status == 429 else f"HTTP {status}"
            raise RpcTransportError(f"{method} failed: {reason}", context=context, cause=e) from e
        except httpx.TransportError as e:
            raise RpcTransportError(f"{method} connection error: {e}", context=context, cause=e) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise RpcTransportError(f"{method} returned invalid JSON", context=context, cause=e) from e

        if payload.get("error"):
            raise error_from_rpc(payload["error"], context)
        return payload.get("result")
