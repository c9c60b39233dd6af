"""Build generations and cooperative yield points.

Every build runs under a :class:`CancellationToken` bound to one generation of
a shared :class:`GenerationCounter`. Starting the next generation makes every
older token stale at once; the traversal calls :meth:`CancellationToken.check`
after each remote call and between batches, so a superseded build unwinds at
its next suspension point.
"""

from __future__ import annotations

import asyncio


class BuildCancelled(Exception):
    """Raised at a suspension point of a build whose generation is stale.

    Not a :class:`~scenesync.scene.errors.SceneSyncError`: per-item handlers
    re-raise it instead of treating it as a fetch failure.
    """

    def __init__(self, generation: int) -> None:
        self.generation = generation
        super().__init__(f"build generation {generation} was superseded")


class GenerationCounter:
    def __init__(self) -> None:
        self._generation = 0

    @property
    def current(self) -> int:
        return self._generation

    def next_token(self) -> "CancellationToken":
        self._generation += 1
        return CancellationToken(self, self._generation)

    def invalidate(self) -> None:
        self._generation += 1


class CancellationToken:
    __slots__ = ("_counter", "generation")

    def __init__(self, counter: GenerationCounter, generation: int) -> None:
        self._counter = counter
        self.generation = generation

    @property
    def is_current(self) -> bool:
        return self._counter.current == self.generation

    def check(self) -> None:
        if not self.is_current:
            raise BuildCancelled(self.generation)


class YieldPacer:
    """Hands control back to the event loop every ``every`` ticks."""

    def __init__(self, every: int) -> None:
        self.every = max(1, every)
        self._ticks = 0

    async def tick(self, token: CancellationToken) -> None:
        self._ticks += 1
        if self._ticks % self.every == 0:
            await asyncio.sleep(0)
        token.check()
