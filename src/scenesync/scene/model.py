"""In-memory scene tree nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LoadState(str, Enum):
    SKELETON = "skeleton"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(slots=True)
class PinLink:
    """Which parent pin currently references a node. Relation only."""

    parent: int | None
    index: int
    label: str
    pin_type: str | None = None
    raw: dict[str, Any] | None = None


@dataclass(slots=True, eq=False)
class SceneNode:
    handle: int | None
    name: str
    type: str = ""
    level: int = 1
    children: list["SceneNode"] = field(default_factory=list, repr=False)
    pin: PinLink | None = None
    load_state: LoadState = LoadState.SKELETON
    details_loaded: bool = False
    children_loaded: bool = False
    is_graph: bool = False
    graph_info: dict[str, Any] | None = None
    node_info: dict[str, Any] | None = None
    position: tuple[float, float] | None = None
    attributes: dict[str, Any] | None = None
    icon: str = "unknown"
    error: str | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.handle is None

    @property
    def label(self) -> str:
        return f"{self.name} [{self.type}]" if self.type else self.name

    def walk(self):
        """Yield this node and its descendants once each, depth first."""

        seen: set[int] = set()
        stack = [self]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self, _path: frozenset[int] = frozenset()) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "handle": self.handle,
            "name": self.name,
            "type": self.type,
            "icon": self.icon,
            "level": self.level,
            "state": self.load_state.value,
        }
        if self.pin is not None:
            payload["pin"] = {"index": self.pin.index, "label": self.pin.label}
        if self.attributes is not None:
            payload["attributes"] = self.attributes
        if id(self) in _path:
            # Cyclic back-reference; the full subtree is printed at its first occurrence.
            payload["ref"] = True
            return payload
        path = _path | {id(self)}
        payload["children"] = [child.to_dict(path) for child in self.children]
        return payload


_PIN_TYPE_ICONS: dict[str, str] = {
    "PT_BOOL": "bool",
    "PT_FLOAT": "float",
    "PT_INT": "int",
    "PT_ENUM": "enum",
    "PT_RGB": "color",
    "PT_STRING": "string",
    "PT_TRANSFORM": "transform",
    "PT_TEXTURE": "texture",
    "PT_MATERIAL": "material",
    "PT_MATERIAL_LAYER": "material",
    "PT_GEOMETRY": "geometry",
    "PT_CAMERA": "camera",
    "PT_ENVIRONMENT": "environment",
    "PT_IMAGER": "imager",
    "PT_KERNEL": "kernel",
    "PT_RENDERTARGET": "render-target",
    "PT_RENDER_PASSES": "render-passes",
    "PT_POSTPROCESSING": "postprocessing",
    "PT_LIGHT": "light",
    "PT_EMISSION": "emission",
    "PT_MEDIUM": "medium",
    "PT_DISPLACEMENT": "displacement",
    "PT_PROJECTION": "projection",
    "PT_TRANSFORM_2D": "transform",
    "PT_ANIMATION_SETTINGS": "animation",
    "PT_RENDER_LAYER": "render-layer",
}

_NAME_HINTS: tuple[tuple[str, str], ...] = (
    ("camera", "camera"),
    ("light", "light"),
    ("texture", "texture"),
    ("material", "material"),
    ("mesh", "geometry"),
    ("geometry", "geometry"),
    ("transform", "transform"),
    ("environment", "environment"),
    ("float", "float"),
    ("int", "int"),
    ("bool", "bool"),
    ("color", "color"),
)


def icon_for_type(type_tag: str | None, name: str | None = None) -> str:
    """Best-effort icon hint for a type tag, falling back to the name."""

    tag = (type_tag or "").upper()
    if tag.startswith("NT_"):
        return "node"
    if tag in _PIN_TYPE_ICONS:
        return _PIN_TYPE_ICONS[tag]
    lowered = (name or "").lower()
    for needle, icon in _NAME_HINTS:
        if needle in lowered:
            return icon
    return "unknown"
