"""
Concurrency Gate
================

Process-wide admission control for upstream calls: a bounded counting
semaphore whose waiters are served first come, first served.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict
import asyncio

from zpl_render.config.logging import get_logger

logger = get_logger(__name__)


class ConcurrencyGate:
    """
    Bounds the number of upstream requests in flight.

    Waiters are served in arrival order. This relies on ``asyncio.Semaphore``
    queueing new arrivals behind any pending waiter, which holds from Python 3.12.
    """

    def __init__(self, capacity: int = 4):
        self.capacity = max(1, capacity)
        self._semaphore = asyncio.Semaphore(self.capacity)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.waiting = 0
        self.logger: Any = logger.bind(component="concurrency_gate")

    async def acquire(self) -> None:
        """Suspend until a slot is free, then take it."""
        self.waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.waiting -= 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)

    def release(self) -> None:
        """Give a slot back and wake the longest waiter."""
        if self.in_flight <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self.in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self) -> AsyncGenerator[None, None]:
        """Hold a slot for the duration of the block, released on every exit path."""
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def stats(self) -> Dict[str, int]:
        return {
            "capacity": self.capacity,
            "in_flight": self.in_flight,
            "peak_in_flight": self.peak_in_flight,
            "waiting": self.waiting,
        }
