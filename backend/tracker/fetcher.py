"""Bounded worker pool draining a shared queue."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

K = TypeVar("K")
R = TypeVar("R")


async def run_with_concurrency_limit(
    items: Iterable[K],
    limit: int,
    handler: Callable[[K], Awaitable[R]],
) -> list[R]:
    """
    Run `handler` over `items` with at most `limit` calls in flight.

    Results come back in completion order. Handlers are expected to catch their
    own errors; one that raises fails the whole call once the other workers finish.
    """
    queue: asyncio.Queue[K] = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)
    if queue.empty():
        return []

    results: list[R] = []

    async def worker() -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results.append(await handler(item))

    workers = [worker() for _ in range(min(max(1, limit), queue.qsize()))]
    outcomes = await asyncio.gather(*workers, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
    return results
