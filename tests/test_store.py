from __future__ import annotations

import asyncio
import unittest

from scenesync.scene.model import SceneNode
from scenesync.scene.store import Complete, Reserved, SceneStore


class SceneStoreReservationTests(unittest.IsolatedAsyncioTestCase):
    async def test_second_discovery_reuses_reservation(self) -> None:
        store = SceneStore()
        first = store.reserve_or_reuse(5)
        second = store.reserve_or_reuse(5)

        self.assertTrue(first.is_new)
        self.assertFalse(second.is_new)
        self.assertIsInstance(second.entry, Reserved)
        self.assertIsNone(second.node)
        self.assertEqual(store.map, {})
        self.assertEqual(store.reserved_handles(), [5])

    async def test_commit_wakes_waiters_with_canonical_node(self) -> None:
        store = SceneStore()
        store.reserve_or_reuse(5)
        waiter = asyncio.create_task(store.wait_for(5))
        await asyncio.sleep(0)

        node = SceneNode(5, "five")
        self.assertIs(store.commit(5, node), node)
        self.assertIs(await waiter, node)

        again = store.reserve_or_reuse(5)
        self.assertFalse(again.is_new)
        self.assertIsInstance(again.entry, Complete)
        self.assertIs(again.node, node)

    async def test_first_commit_wins(self) -> None:
        store = SceneStore()
        store.reserve_or_reuse(5)
        first = SceneNode(5, "first")
        store.commit(5, first)
        self.assertIs(store.commit(5, SceneNode(5, "second")), first)
        self.assertIs(store.get(5), first)

    async def test_release_unblocks_waiters_and_allows_refetch(self) -> None:
        store = SceneStore()
        store.reserve_or_reuse(5)
        waiter = asyncio.create_task(store.wait_for(5))
        await asyncio.sleep(0)

        self.assertTrue(store.release(5))
        self.assertIsNone(await waiter)
        self.assertFalse(store.release(5))
        self.assertTrue(store.reserve_or_reuse(5).is_new)


class SceneStoreDeleteTests(unittest.TestCase):
    def test_delete_cascades_only_to_unreachable_descendants(self) -> None:
        store = SceneStore()
        a, b, c, d = (SceneNode(handle, name) for handle, name in [(1, "a"), (2, "b"), (3, "c"), (4, "d")])
        a.children = [c]
        c.children = [d]
        b.children = [d]
        for node in (a, b, c, d):
            store.reserve_or_reuse(node.handle)
            store.commit(node.handle, node)
        store.add_root(a)
        store.add_root(b)

        self.assertEqual(store.delete(1), [1, 3])
        self.assertEqual(store.tree, [b])
        self.assertEqual(sorted(store.map), [2, 4])
        self.assertIs(b.children[0], d)

    def test_delete_removes_node_from_every_child_list(self) -> None:
        store = SceneStore()
        parent = SceneNode(1, "parent")
        child = SceneNode(2, "child")
        placeholder = SceneNode(None, "unconnected")
        parent.children = [child, placeholder]
        for node in (parent, child):
            store.reserve_or_reuse(node.handle)
            store.commit(node.handle, node)
        store.add_root(parent)

        self.assertEqual(store.delete(2), [2])
        self.assertEqual(parent.children, [placeholder])
        self.assertEqual(store.delete(2), [])

    def test_add_root_ignores_duplicates(self) -> None:
        store = SceneStore()
        node = SceneNode(1, "one")
        store.add_root(node)
        store.add_root(node)
        self.assertEqual(len(store.tree), 1)


if __name__ == "__main__":
    unittest.main()
