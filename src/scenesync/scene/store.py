"""Canonical handle registry and the visible forest.

Each ``map`` slot is a two-phase entry: :class:`Reserved` from the moment a
handle is first discovered until its fetch finishes, then :class:`Complete`.
A discoverer that finds a :class:`Reserved` slot waits on it instead of
fetching again, so a second concurrent fetch for one handle cannot happen.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterator, Union

from scenesync.scene.model import SceneNode


@dataclass(slots=True)
class Reserved:
    handle: int
    waiters: list[asyncio.Future] = field(default_factory=list)


@dataclass(slots=True)
class Complete:
    node: SceneNode


Entry = Union[Reserved, Complete]


@dataclass(slots=True)
class Reservation:
    is_new: bool
    entry: Entry

    @property
    def node(self) -> SceneNode | None:
        return self.entry.node if isinstance(self.entry, Complete) else None


class SceneStore:
    def __init__(self) -> None:
        self._entries: dict[int, Entry] = {}
        self.tree: list[SceneNode] = []

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if isinstance(entry, Complete))

    def __contains__(self, handle: object) -> bool:
        return isinstance(self._entries.get(handle), Complete)  # type: ignore[arg-type]

    @property
    def map(self) -> dict[int, SceneNode]:
        """Snapshot of committed nodes keyed by handle."""

        return {
            handle: entry.node
            for handle, entry in self._entries.items()
            if isinstance(entry, Complete)
        }

    def get(self, handle: int | None) -> SceneNode | None:
        if handle is None:
            return None
        entry = self._entries.get(handle)
        return entry.node if isinstance(entry, Complete) else None

    def reserved_handles(self) -> list[int]:
        return [handle for handle, entry in self._entries.items() if isinstance(entry, Reserved)]

    def reserve_or_reuse(self, handle: int) -> Reservation:
        entry = self._entries.get(handle)
        if entry is None:
            entry = Reserved(handle)
            self._entries[handle] = entry
            return Reservation(is_new=True, entry=entry)
        return Reservation(is_new=False, entry=entry)

    def commit(self, handle: int, node: SceneNode) -> SceneNode:
        """Install ``node`` for ``handle`` and wake any waiters.

        The first commit is canonical: committing over a complete entry
        returns the existing node unchanged.
        """

        entry = self._entries.get(handle)
        if isinstance(entry, Complete):
            return entry.node
        self._entries[handle] = Complete(node)
        if isinstance(entry, Reserved):
            for waiter in entry.waiters:
                if not waiter.done():
                    waiter.set_result(node)
        return node

    def release(self, handle: int) -> bool:
        """Drop a reservation without committing. Waiters receive ``None``."""

        entry = self._entries.get(handle)
        if not isinstance(entry, Reserved):
            return False
        del self._entries[handle]
        for waiter in entry.waiters:
            if not waiter.done():
                waiter.set_result(None)
        return True

    async def wait_for(self, handle: int) -> SceneNode | None:
        entry = self._entries.get(handle)
        if isinstance(entry, Complete):
            return entry.node
        if entry is None:
            return None
        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        entry.waiters.append(waiter)
        try:
            return await waiter
        finally:
            if waiter in entry.waiters:
                entry.waiters.remove(waiter)

    def add_root(self, node: SceneNode) -> None:
        if not any(existing is node for existing in self.tree):
            self.tree.append(node)

    def iter_reachable(self) -> Iterator[SceneNode]:
        seen: set[int] = set()
        stack = list(reversed(self.tree))
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield node
            stack.extend(reversed(node.children))

    def delete(self, handle: int) -> list[int]:
        """Remove ``handle`` from the tree, every child list and the map.

        Descendants that are no longer reachable from ``tree`` are dropped
        too. Returns the removed handles, the requested one first.
        """

        target = self.get(handle)
        if target is None:
            return []
        self.tree = [node for node in self.tree if node is not target]
        for entry in self._entries.values():
            if isinstance(entry, Complete):
                entry.node.children = [child for child in entry.node.children if child is not target]
        del self._entries[handle]

        reachable = {node.handle for node in self.iter_reachable() if node.handle is not None}
        removed = [handle]
        for descendant in target.walk():
            key = descendant.handle
            if key is None or key == handle or key in reachable:
                continue
            if isinstance(self._entries.get(key), Complete):
                del self._entries[key]
                removed.append(key)
        return removed

    def clear(self) -> None:
        for handle in self.reserved_handles():
            self.release(handle)
        self._entries.clear()
        self.tree = []
