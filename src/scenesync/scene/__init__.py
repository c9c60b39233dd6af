"""Scene mirroring core: identity store, scheduler and traversal engine."""

from scenesync.scene.cancellation import BuildCancelled, CancellationToken, GenerationCounter
from scenesync.scene.engine import TraversalEngine
from scenesync.scene.errors import SceneSyncError, StructuralError, TransientFetchError
from scenesync.scene.model import LoadState, PinLink, SceneNode
from scenesync.scene.progress import SceneEvent
from scenesync.scene.scheduler import FetchKind, LoadingScheduler, LoadItem
from scenesync.scene.store import SceneStore

__all__ = [
    "BuildCancelled",
    "CancellationToken",
    "FetchKind",
    "GenerationCounter",
    "LoadItem",
    "LoadState",
    "LoadingScheduler",
    "PinLink",
    "SceneEvent",
    "SceneNode",
    "SceneStore",
    "SceneSyncError",
    "StructuralError",
    "TransientFetchError",
    "TraversalEngine",
]
