"""Build progress and node-level events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from scenesync.runtime_logging import BoundLogger, RuntimeLogger
from scenesync.scene.cancellation import CancellationToken
from scenesync.scene.model import SceneNode

EventHandler = Callable[["SceneEvent"], Awaitable[None]]

NODE_ADDED = "node-added"
CHILDREN_LOADED = "children-loaded"
NODE_UPDATED = "node-updated"
BUILD_PROGRESS = "build-progress"
BUILD_COMPLETE = "build-complete"
BUILD_CANCELLED = "build-cancelled"


@dataclass(slots=True)
class SceneEvent:
    type: str
    payload: dict[str, Any]


class Stage(str, Enum):
    IDLE = "idle"
    ROOT = "root"
    SKELETON = "skeleton"
    TREE = "tree"
    CHILDREN = "children"
    COMPLETE = "complete"


# Overall percent band for each stage; progress within a stage maps into it.
STAGE_BANDS: dict[Stage, tuple[float, float]] = {
    Stage.IDLE: (0.0, 0.0),
    Stage.ROOT: (0.0, 5.0),
    Stage.SKELETON: (5.0, 30.0),
    Stage.TREE: (5.0, 99.0),
    Stage.CHILDREN: (30.0, 99.0),
    Stage.COMPLETE: (100.0, 100.0),
}


class ProgressReporter:
    """Forwards events for one build generation to the event sink.

    Once the build's token goes stale nothing more is emitted, except the
    single ``build-cancelled`` notice. Sink failures are logged and dropped;
    they never affect the traversal.
    """

    def __init__(
        self,
        token: CancellationToken,
        on_event: EventHandler | None,
        logger: RuntimeLogger | BoundLogger,
    ) -> None:
        self.token = token
        self.on_event = on_event
        self.logger = logger
        self.stage_name = Stage.IDLE
        self.percent = 0.0
        self.closed = False

    async def _emit(self, event_type: str, payload: dict[str, Any], *, force: bool = False) -> None:
        if self.closed or self.on_event is None:
            return
        if not force and not self.token.is_current:
            return
        try:
            await self.on_event(SceneEvent(event_type, payload))
        except Exception as exc:
            self.logger.error("progress.sink.failed", event_type=event_type, error=str(exc))

    async def stage(self, stage: Stage, fraction: float = 0.0, message: str = "") -> None:
        low, high = STAGE_BANDS[stage]
        fraction = min(max(fraction, 0.0), 1.0)
        percent = max(self.percent, low + (high - low) * fraction)
        self.stage_name = stage
        self.percent = percent
        await self._emit(
            BUILD_PROGRESS,
            {"stage": stage.value, "percent": round(percent, 1), "message": message},
        )

    async def node_added(self, node: SceneNode) -> None:
        await self._emit(NODE_ADDED, {"node": node, "level": max(node.level - 1, 0)})

    async def children_loaded(self, parent: SceneNode, children: list[SceneNode]) -> None:
        await self._emit(CHILDREN_LOADED, {"parent": parent, "children": list(children)})

    async def node_updated(self, node: SceneNode) -> None:
        await self._emit(NODE_UPDATED, {"node": node})

    async def complete(self, node_count: int, elapsed_ms: float) -> None:
        await self.stage(Stage.COMPLETE, 1.0, f"Loaded {node_count} nodes")
        await self._emit(BUILD_COMPLETE, {"node_count": node_count, "elapsed_ms": round(elapsed_ms, 1)})
        self.closed = True

    async def cancelled(self) -> None:
        if self.closed:
            return
        await self._emit(BUILD_CANCELLED, {}, force=True)
        self.closed = True
