"""
Unit Tests for Concurrency Gate
===============================

Unit tests for admission control of upstream calls.
"""

import asyncio

import pytest

from zpl_render.core.upstream.gate import ConcurrencyGate


class TestConcurrencyGate:
    """Test the bounded FIFO gate."""

    def test_capacity_is_clamped(self):
        assert ConcurrencyGate(0).capacity == 1

    @pytest.mark.asyncio
    async def test_never_exceeds_capacity(self):
        gate = ConcurrencyGate(3)
        observed = []

        async def worker():
            async with gate.slot():
                observed.append(gate.in_flight)
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(10)))

        assert max(observed) <= 3
        assert gate.peak_in_flight == 3
        assert gate.in_flight == 0
        assert gate.waiting == 0

    @pytest.mark.asyncio
    async def test_waiters_are_served_in_arrival_order(self):
        gate = ConcurrencyGate(1)
        order = []

        async def worker(n: int):
            async with gate.slot():
                order.append(n)

        await gate.acquire()
        tasks = []
        for n in range(5):
            tasks.append(asyncio.create_task(worker(n)))
            await asyncio.sleep(0)
        assert gate.waiting == 5

        gate.release()
        await asyncio.gather(*tasks)

        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_late_arrival_does_not_jump_woken_waiter(self):
        gate = ConcurrencyGate(1)
        order = []

        async def worker(name: str):
            async with gate.slot():
                order.append(name)

        await gate.acquire()
        waiter = asyncio.create_task(worker("waiter"))
        await asyncio.sleep(0)

        gate.release()
        latecomer = asyncio.create_task(worker("latecomer"))
        await asyncio.gather(waiter, latecomer)

        assert order == ["waiter", "latecomer"]

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        gate = ConcurrencyGate(1)

        with pytest.raises(ValueError):
            async with gate.slot():
                raise ValueError("boom")

        assert gate.in_flight == 0
        await asyncio.wait_for(gate.acquire(), timeout=1)
        gate.release()

    def test_over_release_raises(self):
        gate = ConcurrencyGate(2)
        with pytest.raises(RuntimeError):
            gate.release()

    @pytest.mark.asyncio
    async def test_stats(self):
        gate = ConcurrencyGate(2)
        await gate.acquire()
        assert gate.stats() == {"capacity": 2, "in_flight": 1, "peak_in_flight": 1, "waiting": 0}
        gate.release()
