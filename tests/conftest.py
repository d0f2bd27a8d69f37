"""
Shared fakes for the monitoring tests.

FakeClock replaces wall time and sleeps; FakeChainClient is a scripted
ChainClient whose every call is recorded.
"""

import asyncio
from typing import Dict, List, Optional, Sequence, Union

import pytest

from keypass_monitor.config import MonitorSettings
from keypass_monitor.core.monitoring.chain_client import ChainClient
from keypass_monitor.core.monitoring.models import ChainHead, ChainInfo, FeeSnapshot, Receipt
from keypass_monitor.core.recovery.errors import ChainConnectionError, ErrorContext


START_MS = 1_700_000_000_000

REF_A = "0x" + "a" * 64
REF_B = "0x" + "b" * 64


async def settle(rounds: int = 100) -> None:
    """Let every ready task run until the loop goes quiet."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeClock:
    """
    Controllable clock.

    In auto mode every sleep advances time immediately. In manual mode
    sleepers wait until ``advance`` moves time past their deadline.
    """

    def __init__(self, start_ms: int = START_MS, auto_advance: bool = True):
        self._now = start_ms
        self.auto_advance = auto_advance
        self.sleeps: List[float] = []
        self._sleepers: List = []

    def now_ms(self) -> int:
        return self._now

    def set(self, now_ms: int) -> None:
        self._now = now_ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance:
            self._now += int(seconds * 1000)
            await asyncio.sleep(0)
            return

        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + int(seconds * 1000), future))
        await future

    async def advance(self, seconds: float) -> None:
        # Let freshly started timer tasks register their sleeps at the current time
        await settle()
        self._now += int(seconds * 1000)
        due = [(deadline, f) for deadline, f in self._sleepers if deadline <= self._now]
        self._sleepers = [(deadline, f) for deadline, f in self._sleepers if deadline > self._now]
        for _, future in due:
            if not future.done():
                future.set_result(None)
        await settle()

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, f in self._sleepers if not f.done())


Outcome = Optional[Union[Receipt, BaseException]]


def make_receipt(
    reference: str = REF_A,
    block_number: int = 100,
    gas_used: Optional[int] = 21000,
    effective_gas_price: Optional[int] = 1_000_000_000,
    success: bool = True,
) -> Receipt:
    return Receipt(
        reference=reference,
        block_number=block_number,
        success=success,
        gas_used=gas_used,
        effective_gas_price=effective_gas_price,
        confirmations=1,
    )


class FakeChainClient(ChainClient):
    """Scripted chain client."""

    def __init__(
        self,
        network: str = "moonbeam",
        endpoints: Sequence[str] = ("https://rpc-1.test", "https://rpc-2.test"),
        clock: Optional[FakeClock] = None,
    ):
        self.network = network
        self.endpoints = list(endpoints)
        self.clock = clock

        # Connect: endpoints in failing_endpoints always fail; connect_script
        # pops one outcome per call (None = success)
        self.failing_endpoints = set()
        self.connect_script: Dict[str, List[Optional[BaseException]]] = {}
        self.connect_calls: List[str] = []
        self.disconnect_calls = 0
        self._connected_to: Optional[str] = None

        # Head / health
        self.head_number = 1000
        self.head_timestamp_ms: Optional[int] = None
        self.head_error: Optional[BaseException] = None
        self.head_calls = 0
        self.gas_price = 1_000_000_000
        self.syncing = False

        # Confirmation: outcomes are consumed in order, then default_outcome repeats
        self.outcomes: List[Outcome] = []
        self.default_outcome: Optional[Outcome] = None
        self.wait_calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def connect(self, endpoint: str) -> ChainInfo:
        self.connect_calls.append(endpoint)
        if endpoint in self.failing_endpoints:
            raise ChainConnectionError(
                f"Connection refused by {endpoint}",
                context=ErrorContext(network=self.network, endpoint=endpoint),
            )
        script = self.connect_script.get(endpoint)
        if script:
            outcome = script.pop(0)
            if outcome is not None:
                raise outcome
        self._connected_to = endpoint
        return ChainInfo(network=self.network, name=self.network.title(), endpoint=endpoint, chain_id=1284)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected_to = None

    def is_connected(self) -> bool:
        return self._connected_to is not None

    async def get_head(self) -> ChainHead:
        self.head_calls += 1
        if self.head_error is not None:
            raise self.head_error
        return ChainHead(number=self.head_number, hash="0x" + "1" * 64, timestamp_ms=self.head_timestamp_ms)

    async def wait_for_confirmation(self, reference: str, timeout_seconds: float) -> Optional[Receipt]:
        self.wait_calls.append(reference)
        if self.gate is not None:
            await self.gate.wait()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.default_outcome is not None:
            outcome = self.default_outcome
        else:
            outcome = make_receipt(reference)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def get_fee_level(self) -> FeeSnapshot:
        return FeeSnapshot(gas_price=self.gas_price)

    async def is_syncing(self) -> bool:
        return self.syncing


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> MonitorSettings:
    # Timers are off by default; timer tests turn them on with a manual clock
    return MonitorSettings(
        _env_file=None,
        enable_health_checks=False,
        enable_metrics=False,
        max_retries=3,
        base_retry_delay_ms=1000,
        max_retry_delay_ms=8000,
        retry_backoff_multiplier=2.0,
        connection_timeout_ms=1000,
        transaction_timeout_ms=5000,
        health_check_timeout_ms=1000,
        health_check_interval_ms=30000,
        metrics_interval_ms=60000,
        kilt_endpoints=["https://kilt-1.test", "https://kilt-2.test"],
        moonbeam_endpoints=["https://rpc-1.test", "https://rpc-2.test"],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def manual_clock() -> FakeClock:
    return FakeClock(auto_advance=False)


@pytest.fixture
def client_factory():
    """Build FakeChainClient instances: client_factory(network="kilt", clock=...)."""
    return FakeChainClient


@pytest.fixture
def receipt_factory():
    return make_receipt
