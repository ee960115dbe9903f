from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class WorkerPool:
    """
    Bounded concurrency for coroutine work: at most `max_workers` jobs hold a
    permit at once. `map` returns results in input order regardless of which
    job finishes first. A pool of 1 runs jobs strictly one after another.
    """

    def __init__(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._semaphore = asyncio.Semaphore(max_workers)
        self._in_flight = 0
        self.max_in_flight = 0

    async def run(self, job: Callable[[], Awaitable[R]]) -> R:
        async with self._semaphore:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
            try:
                return await job()
            finally:
                self._in_flight -= 1

    async def map(self, fn: Callable[[T], Awaitable[R]], items: Iterable[T]) -> List[R]:
        return list(await asyncio.gather(*(self.run(lambda item=item: fn(item)) for item in items)))
