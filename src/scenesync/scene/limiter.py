"""Bounded-parallel execution of async operations."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


@dataclass(slots=True)
class Settled(Generic[T]):
    ok: bool
    value: T | None = None
    error: BaseException | None = None


class ConcurrencyLimiter:
    """Run at most ``limit`` operations at once, returning results in input order.

    :meth:`map` fails fast: the first exception cancels the operations still
    running, waits for them to unwind, and is re-raised. :meth:`map_settled`
    runs everything to completion and reports each outcome as :class:`Settled`.
    ``asyncio.CancelledError`` is never captured as an outcome.
    """

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit

    async def map(self, operations: Sequence[Operation[T]]) -> list[T]:
        results: list[Any] = [None] * len(operations)
        cursor = iter(range(len(operations)))

        async def worker() -> None:
            for index in cursor:
                results[index] = await operations[index]()

        workers = [asyncio.create_task(worker()) for _ in range(min(self.limit, len(operations)))]
        if not workers:
            return []
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            # Drain the cancelled stragglers so none is left unawaited.
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return results

    async def map_settled(self, operations: Sequence[Operation[T]]) -> list[Settled[T]]:
        results: list[Settled[T]] = [Settled(ok=False) for _ in operations]
        cursor = iter(range(len(operations)))

        async def worker() -> None:
            for index in cursor:
                try:
                    value = await operations[index]()
                except Exception as exc:
                    results[index] = Settled(ok=False, error=exc)
                else:
                    results[index] = Settled(ok=True, value=value)

        workers = [asyncio.create_task(worker()) for _ in range(min(self.limit, len(operations)))]
        if not workers:
            return []
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return results
