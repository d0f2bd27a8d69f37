"""
Tests for the JSON-RPC transport and the KILT / Moonbeam chain clients

Nodes are simulated with httpx.MockTransport.
"""

import hashlib
import json

import httpx
import pytest

from keypass_monitor.core.recovery.errors import (
    ChainConnectionError,
    ConfirmationTimeoutError,
    ErrorCategory,
    ErrorSeverity,
    InsufficientFundsError,
    NonceTooLowError,
    RpcTransportError,
)
from keypass_monitor.providers.evm import EvmRpcClient
from keypass_monitor.providers.jsonrpc import JsonRpcError, JsonRpcTransport
from keypass_monitor.providers.substrate import SubstrateRpcClient, extrinsic_hash

ENDPOINT = "https://node.test"
TX_HASH = "0x" + "d" * 64


class RpcFailure:
    def __init__(self, message: str, code: int = -32000):
        self.message = message
        self.code = code


class FakeNode:
    """
    Scripted JSON-RPC node.

    ``results`` maps a method to a value, a callable taking the params, an
    RpcFailure, an httpx.Response or an exception to raise.
    """

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append((method, params))

        value = self.results[method]
        if callable(value) and not isinstance(value, type):
            value = value(params)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, RpcFailure):
            error = {"code": value.code, "message": value.message}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})

    def methods(self):
        return [method for method, _ in self.calls]


@pytest.fixture
def rpc_settings(settings):
    return settings.model_copy(update={"receipt_poll_interval_ms": 1000})


async def open_transport(node: FakeNode) -> JsonRpcTransport:
    transport = JsonRpcTransport("moonbeam", timeout_seconds=5, transport=httpx.MockTransport(node))
    await transport.open(ENDPOINT)
    return transport


# =============================================================================
# JSON-RPC Transport
# =============================================================================


class TestJsonRpcTransport:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        node = FakeNode({"eth_chainId": "0x504"})
        transport = await open_transport(node)

        assert await transport.call("eth_chainId") == "0x504"
        assert node.calls == [("eth_chainId", [])]
        await transport.close()
        assert not transport.is_open

    @pytest.mark.asyncio
    async def test_call_before_open_fails(self):
        transport = JsonRpcTransport("kilt")
        with pytest.raises(RpcTransportError):
            await transport.call("system_chain")

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable_transport_error(self):
        transport = await open_transport(FakeNode({"eth_gasPrice": httpx.Response(429)}))

        with pytest.raises(RpcTransportError) as exc_info:
            await transport.call("eth_gasPrice")

        assert "too many requests" in str(exc_info.value)
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_server_error_status(self):
        transport = await open_transport(FakeNode({"eth_gasPrice": httpx.Response(503)}))

        with pytest.raises(RpcTransportError, match="HTTP 503"):
            await transport.call("eth_gasPrice")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        node = FakeNode({"eth_gasPrice": httpx.ConnectError("connection refused")})
        transport = await open_transport(node)

        with pytest.raises(RpcTransportError, match="connection error"):
            await transport.call("eth_gasPrice")

    @pytest.mark.asyncio
    async def test_timeout(self):
        def slow(params):
            return httpx.ReadTimeout("read timed out")

        transport = await open_transport(FakeNode({"eth_gasPrice": slow}))

        with pytest.raises(RpcTransportError, match="request timeout"):
            await transport.call("eth_gasPrice")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        transport = await open_transport(FakeNode({"eth_gasPrice": httpx.Response(200, text="<html>")}))

        with pytest.raises(RpcTransportError, match="invalid JSON"):
            await transport.call("eth_gasPrice")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("nonce too low", NonceTooLowError),
            ("insufficient funds for gas * price + value", InsufficientFundsError),
        ],
    )
    async def test_rpc_error_is_typed(self, message, expected):
        transport = await open_transport(FakeNode({"eth_sendRawTransaction": RpcFailure(message)}))

        with pytest.raises(expected):
            await transport.call("eth_sendRawTransaction")

    @pytest.mark.asyncio
    async def test_unclassified_rpc_error_keeps_code(self):
        transport = await open_transport(FakeNode({"foo_bar": RpcFailure("Method not found", code=-32601)}))

        with pytest.raises(JsonRpcError) as exc_info:
            await transport.call("foo_bar")

        assert exc_info.value.rpc_code == -32601
        assert not exc_info.value.retryable
        assert exc_info.value.context.details["rpc_code"] == -32601
        assert exc_info.value.category == ErrorCategory.TRANSACTION
        assert exc_info.value.severity == ErrorSeverity.MEDIUM


# =============================================================================
# Moonbeam (EVM)
# =============================================================================


def evm_node(**overrides) -> FakeNode:
    results = {
        "eth_chainId": "0x504",
        "web3_clientVersion": "moonbeam/v0.36.0",
        "eth_getBlockByNumber": {"number": "0x1f4", "hash": "0x" + "e" * 64, "timestamp": "0x6553f100"},
        "eth_getTransactionReceipt": None,
        "eth_blockNumber": "0x1f5",
        "eth_gasPrice": "0x174876e800",
        "eth_syncing": False,
    }
    results.update(overrides)
    return FakeNode(results)


def evm_client(node, settings, clock) -> EvmRpcClient:
    return EvmRpcClient([ENDPOINT], settings=settings, transport=httpx.MockTransport(node), clock=clock)


class TestEvmRpcClient:
    @pytest.mark.asyncio
    async def test_connect_reads_chain_identity(self, rpc_settings, clock):
        client = evm_client(evm_node(), rpc_settings, clock)

        info = await client.connect(ENDPOINT)

        assert info.name == "Moonbeam"
        assert info.chain_id == 1284
        assert info.version == "moonbeam/v0.36.0"
        assert client.is_connected()

        await client.disconnect()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_client_version_is_optional(self, rpc_settings, clock):
        node = evm_node(web3_clientVersion=RpcFailure("Method not found", code=-32601))
        info = await evm_client(node, rpc_settings, clock).connect(ENDPOINT)

        assert info.version is None
        assert info.chain_id == 1284

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, rpc_settings, clock):
        client = evm_client(evm_node(eth_chainId=httpx.Response(502)), rpc_settings, clock)

        with pytest.raises(ChainConnectionError):
            await client.connect(ENDPOINT)

    def test_endpoints_default_to_settings(self, rpc_settings):
        client = EvmRpcClient(settings=rpc_settings)
        assert client.endpoints == ["https://rpc-1.test", "https://rpc-2.test"]

    @pytest.mark.asyncio
    async def test_head_and_fee(self, rpc_settings, clock):
        client = evm_client(evm_node(), rpc_settings, clock)
        await client.connect(ENDPOINT)

        head = await client.get_head()
        fee = await client.get_fee_level()

        assert head.number == 500
        assert head.timestamp_ms == 0x6553F100 * 1000
        assert fee.gas_price == 100_000_000_000
        assert await client.is_syncing() is False

    @pytest.mark.asyncio
    async def test_syncing_object_means_syncing(self, rpc_settings, clock):
        node = evm_node(eth_syncing={"currentBlock": "0x10", "highestBlock": "0x20"})
        client = evm_client(node, rpc_settings, clock)
        await client.connect(ENDPOINT)

        assert await client.is_syncing() is True

    @pytest.mark.asyncio
    async def test_polls_until_mined(self, rpc_settings, clock):
        receipts = [
            None,
            {
                "transactionHash": TX_HASH,
                "blockNumber": "0x1f4",
                "status": "0x1",
                "gasUsed": "0x5208",
                "effectiveGasPrice": "0x3b9aca00",
            },
        ]
        node = evm_node(eth_getTransactionReceipt=lambda params: receipts.pop(0))
        client = evm_client(node, rpc_settings, clock)
        await client.connect(ENDPOINT)

        receipt = await client.wait_for_confirmation(TX_HASH, 30)

        assert receipt.success
        assert receipt.block_number == 500
        assert receipt.gas_used == 21000
        assert receipt.cost == 21000 * 1_000_000_000
        assert receipt.confirmations == 2
        assert clock.sleeps == [1.0]
        assert node.methods().count("eth_getTransactionReceipt") == 2

    @pytest.mark.asyncio
    async def test_failed_status(self, rpc_settings, clock):
        mined = {"blockNumber": "0x1f5", "status": "0x0", "gasUsed": "0x5208"}
        client = evm_client(evm_node(eth_getTransactionReceipt=mined), rpc_settings, clock)
        await client.connect(ENDPOINT)

        receipt = await client.wait_for_confirmation(TX_HASH, 30)

        assert receipt.success is False
        assert receipt.confirmations == 1
        assert receipt.cost is None

    @pytest.mark.asyncio
    async def test_gives_up_at_deadline(self, rpc_settings, clock):
        client = evm_client(evm_node(), rpc_settings, clock)
        await client.connect(ENDPOINT)

        with pytest.raises(ConfirmationTimeoutError):
            await client.wait_for_confirmation(TX_HASH, 3)

        assert clock.sleeps == [1.0, 1.0, 1.0]


# =============================================================================
# KILT (Substrate)
# =============================================================================


GENESIS = "0x411f057b9107718c9624d6aa4a3f23c1653898297f3d4d529d9bb6511a39dd21"


class SubstrateChain:
    """Blocks keyed by number, each a list of hex-encoded extrinsics."""

    def __init__(self, head: int):
        self.head = head
        self.blocks = {}

    def block_hash(self, number: int) -> str:
        return GENESIS if number == 0 else "0x" + format(number, "064x")

    def node(self, **overrides) -> FakeNode:
        def get_block_hash(params):
            number = params[0]
            return self.block_hash(number) if number <= self.head else None

        def get_block(params):
            number = int(params[0], 16)
            return {"block": {"header": {"number": hex(number)}, "extrinsics": self.blocks.get(number, [])}}

        results = {
            "system_chain": "KILT Spiritnet",
            "state_getRuntimeVersion": {"specName": "kilt-spiritnet", "specVersion": 11200},
            "chain_getBlockHash": get_block_hash,
            "chain_getHeader": lambda params: {"number": hex(self.head)},
            "chain_getBlock": get_block,
            "system_health": {"peers": 12, "isSyncing": False, "shouldHavePeers": True},
        }
        results.update(overrides)
        return FakeNode(results)


def substrate_client(node, settings, clock, **kwargs) -> SubstrateRpcClient:
    return SubstrateRpcClient(
        [ENDPOINT], settings=settings, transport=httpx.MockTransport(node), clock=clock, **kwargs
    )


class TestExtrinsicHash:
    def test_blake2b_256(self):
        assert extrinsic_hash("0x") == "0x0e5751c026e543b2e8ab2eb06099daa1d1e5df47778f7787faab45cdf12fe3a8"

    def test_prefix_is_optional(self):
        assert extrinsic_hash("0x280403000b") == extrinsic_hash("280403000b")
        expected = hashlib.blake2b(bytes.fromhex("280403000b"), digest_size=32).hexdigest()
        assert extrinsic_hash("0x280403000b") == "0x" + expected


class TestSubstrateRpcClient:
    @pytest.mark.asyncio
    async def test_connect_reads_runtime(self, rpc_settings, clock):
        chain = SubstrateChain(head=100)
        client = substrate_client(chain.node(), rpc_settings, clock)

        info = await client.connect(ENDPOINT)

        assert info.name == "KILT Spiritnet"
        assert info.runtime == "kilt-spiritnet/11200"
        assert info.version == "11200"
        assert info.genesis_hash == GENESIS

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self, rpc_settings, clock):
        node = SubstrateChain(head=1).node(system_chain=httpx.ConnectError("refused"))

        with pytest.raises(ChainConnectionError):
            await substrate_client(node, rpc_settings, clock).connect(ENDPOINT)

    @pytest.mark.asyncio
    async def test_head_has_no_timestamp(self, rpc_settings, clock):
        chain = SubstrateChain(head=100)
        client = substrate_client(chain.node(), rpc_settings, clock)
        await client.connect(ENDPOINT)

        head = await client.get_head()

        assert head.number == 100
        assert head.hash == chain.block_hash(100)
        assert head.timestamp_ms is None
        assert (await client.get_fee_level()).gas_price == 0
        assert await client.is_syncing() is False

    @pytest.mark.asyncio
    async def test_finds_extrinsic_in_recent_block(self, rpc_settings, clock):
        chain = SubstrateChain(head=100)
        extrinsic = "0x4502840012345678"
        chain.blocks[97] = ["0x280403000b", extrinsic]
        client = substrate_client(chain.node(), rpc_settings, clock)
        await client.connect(ENDPOINT)

        receipt = await client.wait_for_confirmation(extrinsic_hash(extrinsic), 30)

        assert receipt.block_number == 97
        assert receipt.success
        assert receipt.confirmations == 4
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_scan_starts_at_lookback(self, rpc_settings, clock):
        chain = SubstrateChain(head=100)
        node = chain.node()
        client = substrate_client(node, rpc_settings, clock, lookback_blocks=3)
        await client.connect(ENDPOINT)
        chain.blocks[100] = ["0x01"]

        await client.wait_for_confirmation(extrinsic_hash("0x01"), 30)

        scanned = [params[0] for method, params in node.calls if method == "chain_getBlockHash"]
        assert scanned[-4:] == [97, 98, 99, 100]
        assert 96 not in scanned

    @pytest.mark.asyncio
    async def test_waits_for_new_blocks(self, rpc_settings, clock):
        chain = SubstrateChain(head=100)
        extrinsic = "0x4502840087654321"

        def header(params):
            # The extrinsic lands in the block produced after the first poll
            if clock.sleeps and chain.head == 100:
                chain.head = 101
                chain.blocks[101] = [extrinsic]
            return {"number": hex(chain.head)}

        client = substrate_client(chain.node(chain_getHeader=header), rpc_settings, clock)
        await client.connect(ENDPOINT)

        receipt = await client.wait_for_confirmation(extrinsic_hash(extrinsic).upper().replace("0X", "0x"), 30)

        assert receipt.block_number == 101
        assert receipt.confirmations == 1
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_gives_up_at_deadline(self, rpc_settings, clock):
        chain = SubstrateChain(head=5)
        client = substrate_client(chain.node(), rpc_settings, clock)
        await client.connect(ENDPOINT)

        with pytest.raises(ConfirmationTimeoutError):
            await client.wait_for_confirmation(TX_HASH, 2)

        assert clock.sleeps == [1.0, 1.0]
