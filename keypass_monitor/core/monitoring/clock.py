"""
Time source used by the monitoring engine.

Everything that reads the time or waits goes through a Clock so tests can
substitute a fake one and drive retries and timers without real delays.
"""

import asyncio
import time


class Clock:
    """Wall clock in epoch milliseconds plus asyncio sleep."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
