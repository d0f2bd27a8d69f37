"""
KILT (Substrate) chain client over the node's JSON-RPC API.

Extrinsics are found by scanning new blocks for the blake2b-256 hash of
each extrinsic. Dispatch results live in SCALE-encoded events, which this
client does not decode, so a found extrinsic is reported as included.
"""

from __future__ import annotations

import hashlib
from typing import Optional, Sequence

import httpx

from ..config import KILT, MonitorSettings, get_settings
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


# Blocks before the current head to scan, for extrinsics included before monitoring started
DEFAULT_LOOKBACK_BLOCKS = 10


def extrinsic_hash(extrinsic_hex: str) -> str:
    """blake2b-256 of the SCALE-encoded extrinsic, as 0x-prefixed hex."""
    raw = bytes.fromhex(extrinsic_hex[2:] if extrinsic_hex.startswith("0x") else extrinsic_hex)
    return "0x" + hashlib.blake2b(raw, digest_size=32).hexdigest()


class SubstrateRpcClient(ChainClient):
    """Block-scanning confirmation for Substrate parachains."""

    def __init__(
        self,
        endpoints: Optional[Sequence[str]] = None,
        *,
        network: str = KILT,
        settings: Optional[MonitorSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
    ):
        settings = settings or get_settings()
        self.network = network
        self.endpoints = list(endpoints or settings.endpoints_for(network))
        self.poll_interval_seconds = settings.receipt_poll_interval_ms / 1000
        self.lookback_blocks = lookback_blocks
        self.clock = clock or SYSTEM_CLOCK
        self._rpc = JsonRpcTransport(
            network,
            timeout_seconds=settings.rpc_request_timeout_seconds,
            transport=transport,
        )

    async def connect(self, endpoint: str) -> ChainInfo:
        await self._rpc.open(endpoint)
        try:
            name = await self._rpc.call("system_chain")
            runtime = await self._rpc.call("state_getRuntimeVersion") or {}
            genesis_hash = await self._rpc.call("chain_getBlockHash", [0])
        except MonitorError as e:
            raise ChainConnectionError(
                f"Could not reach {endpoint}: {e}",
                context=ErrorContext(network=self.network, endpoint=endpoint),
                cause=e,
            ) from e

        spec_name = runtime.get("specName")
        spec_version = runtime.get("specVersion")
        return ChainInfo(
            network=self.network,
            name=name or self.network,
            endpoint=endpoint,
            version=str(spec_version) if spec_version is not None else None,
            runtime=f"{spec_name}/{spec_version}" if spec_name else None,
            genesis_hash=genesis_hash,
        )

    async def disconnect(self) -> None:
        await self._rpc.close()

    def is_connected(self) -> bool:
        return self._rpc.is_open

    async def get_head(self) -> ChainHead:
        header = await self._rpc.call("chain_getHeader")
        if not header:
            raise ChainConnectionError(
                "Node returned no header",
                context=ErrorContext(network=self.network, endpoint=self._rpc.endpoint),
            )
        number = int(header["number"], 16)
        block_hash = await self._rpc.call("chain_getBlockHash", [number])
        # Block timestamps sit in the encoded timestamp.set extrinsic; left undecoded
        return ChainHead(number=number, hash=block_hash)

    async def wait_for_confirmation(self, reference: str, timeout_seconds: float) -> Receipt:
        deadline = self.clock.now_ms() + int(timeout_seconds * 1000)
        target = reference.lower()

        head = (await self.get_head()).number
        next_block = max(0, head - self.lookback_blocks)

        while True:
            while next_block <= head:
                if await self._block_contains(next_block, target):
                    return Receipt(
                        reference=reference,
                        block_number=next_block,
                        success=True,
                        confirmations=head - next_block + 1,
                    )
                next_block += 1

            if self.clock.now_ms() >= deadline:
                raise ConfirmationTimeoutError(
                    f"Transaction confirmation timeout after {timeout_seconds}s",
                    context=ErrorContext(network=self.network, reference=reference),
                )
            await self.clock.sleep(self.poll_interval_seconds)
            head = (await self.get_head()).number

    async def _block_contains(self, number: int, target: str) -> bool:
        block_hash = await self._rpc.call("chain_getBlockHash", [number])
        if not block_hash:
            return False
        signed_block = await self._rpc.call("chain_getBlock", [block_hash]) or {}
        extrinsics = (signed_block.get("block") or {}).get("extrinsics") or []
        return any(extrinsic_hash(ext) == target for ext in extrinsics)

    async def get_fee_level(self) -> FeeSnapshot:
        # Weight-based fees have no gas price equivalent over plain RPC
        return FeeSnapshot(gas_price=0)

    async def is_syncing(self) -> bool:
        health = await self._rpc.call("system_health") or {}
        return bool(health.get("isSyncing"))
