#!/usr/bin/env python3
"""Command line access to network health and transaction monitoring"""

import argparse
import asyncio
import sys
from typing import Optional

from .config import KILT, MOONBEAM, get_settings
from .core.monitoring.chain_client import ChainClient
from .core.monitoring.engine import MonitoringEngine
from .core.monitoring.events import MonitorEvent
from .core.monitoring.models import HealthCheckResult, MonitoredTransaction, TransactionStatus
from .core.recovery.errors import ValidationError
from .logging_config import setup_logging
from .providers.evm import EvmRpcClient
from .providers.substrate import SubstrateRpcClient

STATUS_ICONS = {
    "healthy": "✅",
    "degraded": "⚠️ ",
    "unhealthy": "❌",
    "critical": "🛑",
}


def build_client(network: str, settings) -> ChainClient:
    if network == KILT:
        return SubstrateRpcClient(settings=settings)
    if network == MOONBEAM:
        return EvmRpcClient(settings=settings)
    raise ValueError(f"Unknown network: {network}")


def print_health(result: HealthCheckResult) -> None:
    """Pretty print a health check"""
    print(f"\n{STATUS_ICONS.get(result.status.value, '')} {result.network.title()} is {result.status.value}")
    print("=" * 50)

    checks = result.checks
    connection = checks.connection
    if connection.error:
        print(f"Connection:       {connection.status.value} ({connection.error})")
    else:
        print(f"Connection:       {connection.status.value} ({connection.latency_ms} ms)")

    block = checks.block_production
    if block.head_number is not None:
        print(f"Head block:       #{block.head_number} ({block.block_time_delta} ms ago)")
    if checks.node_sync.is_syncing is not None:
        print(f"Syncing:          {'yes' if checks.node_sync.is_syncing else 'no'}")
    if checks.fee_level.current_fee is not None:
        print(f"Fee level:        {checks.fee_level.current_fee} ({checks.fee_level.trend})")

    for recommendation in result.recommendations:
        print(f"💡 {recommendation}")


def print_transaction(tx: MonitoredTransaction) -> None:
    icon = "✅" if tx.status == TransactionStatus.CONFIRMED else "❌"
    print(f"\n{icon} {tx.operation} {tx.reference}")
    print("=" * 50)
    print(f"Status:           {tx.status.value}")
    print(f"Retries:          {tx.retry_count}/{tx.max_retries}")
    if tx.block_number is not None:
        print(f"Block:            #{tx.block_number} ({tx.confirmations} confirmations)")
    if tx.confirmation_latency_ms is not None:
        print(f"Latency:          {tx.confirmation_latency_ms} ms")
    if tx.cost is not None:
        print(f"Cost:             {tx.cost} (gas {tx.gas_used})")
    if tx.last_error:
        print(f"Last error:       {tx.last_error}")


async def cli_health(network: str) -> int:
    """Connect to one network and run a single health check"""
    settings = get_settings(enable_health_checks=False, enable_metrics=False)
    engine = MonitoringEngine(settings)

    print(f"🔍 Checking {network}...")
    try:
        connected = await engine.initialize(build_client(network, settings))
        if connected.get(network) is None:
            print(f"❌ Could not connect to any {network} endpoint")
            for failure in engine.supervisor(network).endpoint_failures:
                print(f"   {failure.endpoint} (attempt {failure.attempt + 1}): {failure.error}")
            return 1

        result = await engine.check_health(network)
        print_health(result)
        return 0 if result.status.value in ("healthy", "degraded") else 1
    finally:
        await engine.close()


async def cli_watch(network: str, reference: str, operation: str, max_retries: Optional[int]) -> int:
    """Follow one transaction to a terminal status"""
    settings = get_settings(enable_metrics=False)
    engine = MonitoringEngine(settings)
    engine.on(
        MonitorEvent.TRANSACTION_RETRYING,
        lambda tx: print(f"🔁 Retry {tx.retry_count}/{tx.max_retries}: {tx.last_error}"),
    )

    try:
        connected = await engine.initialize(build_client(network, settings))
        if connected.get(network) is None:
            print(f"❌ Could not connect to any {network} endpoint")
            return 1

        print(f"⏳ Watching {reference} on {network}...")
        tx = await engine.monitor_transaction(network, reference, operation, max_retries=max_retries)
        print_transaction(tx)
        return 0 if tx.status == TransactionStatus.CONFIRMED else 1
    except ValidationError as e:
        print(f"❌ {e}")
        return 2
    finally:
        await engine.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="KeyPass network monitor")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Override log level")
    subparsers = parser.add_subparsers(dest="command")

    health_parser = subparsers.add_parser("health", help="Run a health check")
    health_parser.add_argument("network", choices=[KILT, MOONBEAM], help="Network to check")

    watch_parser = subparsers.add_parser("watch", help="Monitor a submitted transaction")
    watch_parser.add_argument("network", choices=[KILT, MOONBEAM], help="Network the transaction was sent to")
    watch_parser.add_argument("reference", help="Transaction or extrinsic hash (0x + 64 hex)")
    watch_parser.add_argument("--operation", default="unknown", help="Operation label (default: unknown)")
    watch_parser.add_argument("--max-retries", type=int, help="Retry budget (default: from settings)")

    return parser


async def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(get_settings(), log_level=args.log_level)

    if args.command == "health":
        return await cli_health(args.network)
    if args.command == "watch":
        return await cli_watch(args.network, args.reference, args.operation, args.max_retries)

    parser.print_help()
    return 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
