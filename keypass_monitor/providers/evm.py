"""
Moonbeam (EVM) chain client over Ethereum JSON-RPC.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import MOONBEAM, MonitorSettings, get_settings
from ..core.monitoring.chain_client import ChainClient
from ..core.monitoring.clock import Clock, SYSTEM_CLOCK
from ..core.monitoring.models import ChainHead, ChainInfo, FeeSnapshot, Receipt
from ..core.recovery.errors import (
    ChainConnectionError,
    ConfirmationTimeoutError,
    ErrorContext,
    MonitorError,
)
from .jsonrpc import JsonRpcTransport

logger = logging.getLogger(__name__)


CHAIN_NAMES = {
    1284: "Moonbeam",
    1285: "Moonriver",
    1287: "Moonbase Alpha",
}


def _hex_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


class EvmRpcClient(ChainClient):
    """Polls receipts with eth_getTransactionReceipt until the transaction is mined."""

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        *,
        network: str = MOONBEAM,
        settings: Optional[MonitorSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ):
        settings = settings or get_settings()
        self.network = network
        self.endpoints = list(endpoints or settings.endpoints_for(network))
        self.poll_interval_seconds = settings.receipt_poll_interval_ms / 1000
        self.clock = clock or SYSTEM_CLOCK
        self._rpc = JsonRpcTransport(
            network,
            timeout_seconds=settings.rpc_request_timeout_seconds,
            transport=transport,
        )

    async def connect(self, endpoint: str) -> ChainInfo:
        await self._rpc.open(endpoint)
        try:
            chain_id = _hex_int(await self._rpc.call("eth_chainId"))
        except MonitorError as e:
            raise ChainConnectionError(
                f"Could not reach {endpoint}: {e}",
                context=ErrorContext(network=self.network, endpoint=endpoint),
                cause=e,
            ) from e

        try:
            version = await self._rpc.call("web3_clientVersion")
        except MonitorError as e:
            # Some public endpoints disable web3_ namespace
            logger.debug(f"web3_clientVersion unavailable on {endpoint}: {e}")
            version = None

        return ChainInfo(
            network=self.network,
            name=CHAIN_NAMES.get(chain_id, f"EVM chain {chain_id}"),
            endpoint=endpoint,
            chain_id=chain_id,
            version=version,
        )

    async def disconnect(self) -> None:
        await self._rpc.close()

    def is_connected(self) -> bool:
        return self._rpc.is_open

    async def get_head(self) -> ChainHead:
        block = await self._rpc.call("eth_getBlockByNumber", ["latest", False])
        if not block:
            raise ChainConnectionError(
                "Node returned no latest block",
                context=ErrorContext(network=self.network, endpoint=self._rpc.endpoint),
            )
        timestamp = _hex_int(block.get("timestamp"))
        return ChainHead(
            number=_hex_int(block["number"]),
            hash=block.get("hash"),
            timestamp_ms=timestamp * 1000 if timestamp is not None else None,
        )

    async def wait_for_confirmation(self, reference: str, timeout_seconds: float) -> Receipt:
        deadline = self.clock.now_ms() + int(timeout_seconds * 1000)

        while True:
            receipt = await self._rpc.call("eth_getTransactionReceipt", [reference])
            if receipt and receipt.get("blockNumber"):
                return await self._to_receipt(reference, receipt)

            if self.clock.now_ms() >= deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction confirmation timeout after {timeout_seconds}s",
                    context=ErrorContext(network=self.network, reference=reference),
                )
            await self.clock.sleep(self.poll_interval_seconds)

    async def _to_receipt(self, reference: str, receipt: dict) -> Receipt:
        block_number = _hex_int(receipt["blockNumber"])
        head = _hex_int(await self._rpc.call("eth_blockNumber"))
        confirmations = max(1, head - block_number + 1) if head is not None else 1

        return Receipt(
            reference=reference,
            block_number=block_number,
            success=receipt.get("status") == "0x1",
            gas_used=_hex_int(receipt.get("gasUsed")),
            effective_gas_price=_hex_int(receipt.get("effectiveGasPrice")),
            confirmations=confirmations,
        )

    async def get_fee_level(self) -> FeeSnapshot:
        gas_price = _hex_int(await self._rpc.call("eth_gasPrice")) or 0
        return FeeSnapshot(gas_price=gas_price)

    async def is_syncing(self) -> bool:
        # eth_syncing returns false or a progress object
        return bool(await self._rpc.call("eth_syncing"))
