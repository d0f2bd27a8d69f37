"""
Shared mutable state of the monitoring engine.

Holds the append-only transaction history, the bounded error log and the
registry of transactions currently being monitored. Every write goes
through one asyncio lock so concurrent monitors can append safely.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from ..recovery.errors import ErrorSeverity
from .models import ErrorReport, MonitoredTransaction, TransactionStatus


@dataclass
class LiveEntry:
    """A transaction under monitoring, keyed by reference."""
    transaction: MonitoredTransaction
    last_updated: int


class MonitoringStore:
    """
    History, error log and live registry.

    - History only grows; entries are independent snapshots.
    - The error log keeps the most recent ``max_error_reports`` entries and
      evicts the oldest first.
    - A live entry exists from monitor start until the terminal snapshot is
      appended, at most one per reference.
    """

    def __init__(self, max_error_reports: int = 1000):
        self._lock = asyncio.Lock()
        self._history: List[MonitoredTransaction] = []
        self._errors: Deque[ErrorReport] = deque(maxlen=max_error_reports)
        self._live: Dict[str, LiveEntry] = {}

    # ---------------------------
    # Live registry
    # ---------------------------
    async def register_live(self, tx: MonitoredTransaction, now: int) -> None:
        async with self._lock:
            existing = self._live.get(tx.reference)
            if existing is not None and existing.transaction is not tx:
                raise RuntimeError(f"Reference {tx.reference} is already being monitored")
            self._live[tx.reference] = LiveEntry(transaction=tx, last_updated=now)

    async def touch_live(self, reference: str, now: int) -> None:
        async with self._lock:
            entry = self._live.get(reference)
            if entry is not None:
                entry.last_updated = now

    async def release_live(self, reference: str) -> None:
        async with self._lock:
            self._live.pop(reference, None)

    def live(self, network: Optional[str] = None) -> List[MonitoredTransaction]:
        entries = [e.transaction for e in self._live.values()]
        if network:
            entries = [tx for tx in entries if tx.network == network]
        return entries

    def live_entry(self, reference: str) -> Optional[LiveEntry]:
        return self._live.get(reference)

    # ---------------------------
    # History
    # ---------------------------
    async def append_history(self, snapshot: MonitoredTransaction) -> None:
        async with self._lock:
            self._history.append(snapshot)

    def history(
        self,
        network: Optional[str] = None,
        status: Optional[TransactionStatus] = None,
        since: Optional[int] = None,
    ) -> List[MonitoredTransaction]:
        entries = list(self._history)
        if network:
            entries = [tx for tx in entries if tx.network == network]
        if status:
            entries = [tx for tx in entries if tx.status == status]
        if since is not None:
            entries = [tx for tx in entries if tx.submitted_at >= since]
        return entries

    # ---------------------------
    # Error log
    # ---------------------------
    async def add_error(self, report: ErrorReport) -> None:
        async with self._lock:
            self._errors.append(report)

    def errors(
        self,
        network: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        since: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ErrorReport]:
        """Error reports, newest first."""
        entries = list(self._errors)
        if network:
            entries = [e for e in entries if e.network == network]
        if severity:
            entries = [e for e in entries if e.severity == severity]
        if since is not None:
            entries = [e for e in entries if e.timestamp >= since]

        # Stable sort keeps insertion order for reports with equal timestamps
        entries = list(reversed(entries))
        entries.sort(key=lambda e: e.timestamp, reverse=True)

        if limit:
            entries = entries[:limit]
        return entries

    @property
    def error_capacity(self) -> int:
        return self._errors.maxlen or 0
