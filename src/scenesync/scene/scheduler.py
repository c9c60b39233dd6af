"""Priority/background work queues for staged loading."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Literal

from scenesync.runtime_logging import RuntimeLogger, get_runtime_logger

Priority = Literal["high", "normal", "low"]


class FetchKind(str, Enum):
    DETAILS = "details"
    CHILDREN = "children"
    ATTRIBUTES = "attributes"


@dataclass(slots=True)
class LoadItem:
    handle: int
    priority: Priority = "normal"
    kind: FetchKind = FetchKind.CHILDREN
    added_at: float = field(default_factory=time.monotonic)


class LoadingScheduler:
    """Two FIFO queues plus loading/loaded sets keyed on handle.

    The priority queue always drains first. The background queue yields
    nothing while paused. ``loaded`` is terminal; a failed handle goes back
    to unknown and may be queued again.
    """

    def __init__(self, logger: RuntimeLogger | None = None) -> None:
        self._logger = logger
        self._priority: deque[LoadItem] = deque()
        self._background: deque[LoadItem] = deque()
        self._loading: set[int] = set()
        self._loaded: set[int] = set()
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._stats = {"processed": 0, "failed": 0, "skipped": 0}

    @property
    def logger(self) -> RuntimeLogger:
        return self._logger or get_runtime_logger()

    def _queued(self, handle: int) -> bool:
        return any(item.handle == handle for item in self._priority) or any(
            item.handle == handle for item in self._background
        )

    def prioritize(self, handles: Iterable[int], kind: FetchKind = FetchKind.CHILDREN) -> int:
        added = 0
        for handle in handles:
            if handle in self._loading or handle in self._loaded:
                self._stats["skipped"] += 1
                continue
            if any(item.handle == handle for item in self._priority):
                continue
            moved = next((item for item in self._background if item.handle == handle), None)
            if moved is not None:
                self._background.remove(moved)
                moved.priority = "high"
                self._priority.append(moved)
            else:
                self._priority.append(LoadItem(handle, "high", kind))
            added += 1
        if added:
            self.logger.debug("scheduler.prioritized", count=added, queue=len(self._priority))
        return added

    def enqueue(
        self,
        handles: Iterable[int],
        kind: FetchKind = FetchKind.CHILDREN,
        priority: Priority = "normal",
    ) -> int:
        added = 0
        for handle in handles:
            if handle in self._loading or handle in self._loaded or self._queued(handle):
                self._stats["skipped"] += 1
                continue
            self._background.append(LoadItem(handle, priority, kind))
            added += 1
        if added:
            self.logger.debug("scheduler.enqueued", count=added, queue=len(self._background))
        return added

    def next(self) -> LoadItem | None:
        if self._priority:
            item = self._priority.popleft()
        elif self._background and not self.is_paused:
            item = self._background.popleft()
        else:
            return None
        self._loading.add(item.handle)
        return item

    def mark_loaded(self, handle: int) -> None:
        if handle in self._loaded:
            return
        self._loading.discard(handle)
        self._loaded.add(handle)
        self._stats["processed"] += 1

    def mark_failed(self, handle: int) -> None:
        self._loading.discard(handle)
        self._stats["failed"] += 1

    def pause(self) -> None:
        if self.is_paused:
            return
        self._resumed.clear()
        self.logger.debug("scheduler.paused", background=len(self._background))

    def resume(self) -> None:
        if not self.is_paused:
            return
        self._resumed.set()
        self.logger.debug("scheduler.resumed", background=len(self._background))

    async def wait_for_resume(self) -> None:
        await self._resumed.wait()

    def clear(self) -> None:
        self._priority.clear()
        self._background.clear()
        self._loading.clear()
        self._loaded.clear()
        self._stats = {"processed": 0, "failed": 0, "skipped": 0}
        self._resumed.set()

    def is_loaded(self, handle: int) -> bool:
        return handle in self._loaded

    def is_loading(self, handle: int) -> bool:
        return handle in self._loading

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    @property
    def has_priority_work(self) -> bool:
        return bool(self._priority)

    @property
    def has_pending(self) -> bool:
        return bool(self._priority or self._background)

    @property
    def has_work(self) -> bool:
        """Whether :meth:`next` would return an item right now."""

        return bool(self._priority) or (bool(self._background) and not self.is_paused)

    def pending_handles(self) -> list[int]:
        return [item.handle for item in self._priority] + [item.handle for item in self._background]

    @property
    def state(self) -> dict[str, Any]:
        return {
            "priority_count": len(self._priority),
            "background_count": len(self._background),
            "loading_count": len(self._loading),
            "loaded_count": len(self._loaded),
            "paused": self.is_paused,
            **self._stats,
        }
