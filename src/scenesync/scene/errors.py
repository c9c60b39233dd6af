"""Error taxonomy for scene builds."""

from __future__ import annotations

from dataclasses import dataclass


class SceneSyncError(Exception):
    """Base class for failures surfaced by scenesync."""


class TransientFetchError(SceneSyncError):
    """A single item or pin fetch failed; its branch is omitted."""

    def __init__(self, handle: int | None, cause: BaseException | str) -> None:
        self.handle = handle
        self.cause = cause
        super().__init__(f"fetch failed for handle {handle}: {cause}")


class StructuralError(SceneSyncError):
    """The build cannot proceed, e.g. the root graph could not be resolved."""


@dataclass(slots=True)
class RemoteCallError(SceneSyncError):
    service: str
    method: str
    message: str
    status: int | None = None

    def __str__(self) -> str:
        suffix = f" (HTTP {self.status})" if self.status is not None else ""
        return f"{self.service}.{self.method} failed: {self.message}{suffix}"
