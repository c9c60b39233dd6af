"""Scene outliner panel fed by traversal events."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static, Tree
from textual.widgets.tree import TreeNode

from scenesync.runtime_logging import get_runtime_logger
from scenesync.scene.model import SceneNode
from scenesync.scene.progress import (
    BUILD_CANCELLED,
    BUILD_COMPLETE,
    BUILD_PROGRESS,
    CHILDREN_LOADED,
    NODE_ADDED,
    NODE_UPDATED,
    SceneEvent,
)

if TYPE_CHECKING:
    from scenesync.scene.engine import TraversalEngine


class SceneOutlinerPanel(Vertical):
    DEFAULT_CSS = """
    SceneOutlinerPanel {
        height: 1fr;
    }

    SceneOutlinerPanel #scene-status {
        height: 1;
        color: $text-muted;
    }

    SceneOutlinerPanel Tree {
        height: 1fr;
        border: round $surface-lighten-2;
    }
    """

    def __init__(self, engine: "TraversalEngine | None" = None, title: str = "Scene") -> None:
        self.engine = engine
        self.root_label = title
        self._status = "Idle"
        self.logger = get_runtime_logger()
        # A shared remote item can be shown under several parents.
        self._tree_nodes: dict[int, list[TreeNode[SceneNode]]] = {}
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Static("Idle", id="scene-status")
        yield Tree(self.root_label, id="scene-tree")

    def on_mount(self) -> None:
        self.query_one(Tree).root.expand()

    @property
    def status_text(self) -> str:
        return self._status

    def tree_nodes_for(self, handle: int) -> list[TreeNode[SceneNode]]:
        return list(self._tree_nodes.get(handle, []))

    def reset(self) -> None:
        tree = self.query_one(Tree)
        tree.clear()
        tree.root.expand()
        self._tree_nodes.clear()
        self._set_status("Connecting")

    async def handle_event(self, event: SceneEvent) -> None:
        payload = event.payload
        if event.type == NODE_ADDED:
            self._add(self.query_one(Tree).root, payload["node"], frozenset())
        elif event.type == CHILDREN_LOADED:
            parent: SceneNode = payload["parent"]
            for tree_node in self.tree_nodes_for(parent.handle) if parent.handle is not None else []:
                self._forget_children(tree_node)
                tree_node.remove_children()
                for child in payload["children"]:
                    self._add(tree_node, child, frozenset({parent.handle}))
        elif event.type == NODE_UPDATED:
            node: SceneNode = payload["node"]
            for tree_node in self.tree_nodes_for(node.handle) if node.handle is not None else []:
                tree_node.set_label(self._label(node))
        elif event.type == BUILD_PROGRESS:
            message = payload.get("message") or payload["stage"]
            self._set_status(f"{payload['percent']:.0f}%  {message}")
        elif event.type == BUILD_COMPLETE:
            self._set_status(f"Loaded {payload['node_count']} nodes in {payload['elapsed_ms']:.0f} ms")
        elif event.type == BUILD_CANCELLED:
            self._set_status("Build cancelled")

    def on_tree_node_expanded(self, event: Tree.NodeExpanded) -> None:
        node = event.node.data
        if self.engine is None or not isinstance(node, SceneNode) or node.handle is None:
            return
        if not node.children_loaded:
            self.engine.promote(node.handle)

    def on_tree_node_highlighted(self, event: Tree.NodeHighlighted) -> None:
        node = event.node.data
        if self.engine is None or not isinstance(node, SceneNode) or node.handle is None:
            return
        if node.attributes is None and self.engine.settings.lazy_attributes:
            self.run_worker(self.engine.load_attributes(node.handle), group="scene-attributes")

    def _add(self, parent: TreeNode[Any], node: SceneNode, path: frozenset[int]) -> None:
        if node.handle is None:
            parent.add_leaf(self._label(node), data=node)
            return
        tree_node = parent.add(self._label(node), data=node, expand=False)
        self._tree_nodes.setdefault(node.handle, []).append(tree_node)
        # Reused nodes arrive with their children already known.
        if node.children_loaded and node.handle not in path:
            for child in node.children:
                self._add(tree_node, child, path | {node.handle})
        if node.children_loaded and not node.children:
            tree_node.allow_expand = False

    def _forget_children(self, tree_node: TreeNode[Any]) -> None:
        for child in tree_node.children:
            self._forget_children(child)
            data = child.data
            if isinstance(data, SceneNode) and data.handle is not None:
                entries = self._tree_nodes.get(data.handle, [])
                if child in entries:
                    entries.remove(child)

    def _label(self, node: SceneNode) -> Text:
        label = Text(node.name)
        if node.type:
            label.append(f"  {node.type}", style="dim")
        if node.pin is not None and node.handle is None:
            label.append("  (unconnected)", style="italic dim")
        return label

    def _set_status(self, message: str) -> None:
        self._status = message
        self.query_one("#scene-status", Static).update(message)
        self.logger.debug("outliner.status", message=message)
