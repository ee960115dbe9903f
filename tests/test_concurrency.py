from __future__ import annotations

import asyncio
import unittest

from alphagroove.concurrency import WorkerPool


class TestWorkerPool(unittest.IsolatedAsyncioTestCase):
    async def test_results_keep_input_order(self) -> None:
        pool = WorkerPool(3)

        async def job(n: int) -> int:
            # Earlier items sleep longer so they finish last.
            await asyncio.sleep(0.01 * (5 - n))
            return n * n

        self.assertEqual(await pool.map(job, range(5)), [0, 1, 4, 9, 16])

    async def test_in_flight_is_bounded(self) -> None:
        pool = WorkerPool(2)
        active = 0
        peak = 0

        async def job(_: int) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await pool.map(job, range(6))
        self.assertEqual(peak, 2)
        self.assertEqual(pool.max_in_flight, 2)

    async def test_single_worker_is_sequential(self) -> None:
        pool = WorkerPool(1)
        events = []

        async def job(n: int) -> None:
            events.append(("start", n))
            await asyncio.sleep(0)
            events.append(("end", n))

        await pool.map(job, range(3))
        self.assertEqual(
            events, [("start", 0), ("end", 0), ("start", 1), ("end", 1), ("start", 2), ("end", 2)]
        )

    async def test_errors_propagate(self) -> None:
        pool = WorkerPool(2)

        async def job(n: int) -> int:
            if n == 1:
                raise RuntimeError("boom")
            return n

        with self.assertRaises(RuntimeError):
            await pool.map(job, range(3))

    def test_rejects_non_positive_bound(self) -> None:
        with self.assertRaises(ValueError):
            WorkerPool(0)
