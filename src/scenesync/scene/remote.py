"""Typed adapter over the remote scene API.

Only the handles and scalars the traversal needs are extracted from
responses. Every call passes through one semaphore, so the number of remote
calls in flight never exceeds ``max_in_flight`` however deeply the traversal
fans out.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from scenesync.scene.errors import StructuralError

if TYPE_CHECKING:
    from scenesync.transport import RemoteInvoker

A_VALUE = 185


def extract_handle(value: Any) -> int | None:
    """Return an integer handle from ``value`` or ``{"handle": ...}``.

    ``0``, ``"0"`` and missing values mean "no item".
    """

    if isinstance(value, dict):
        value = value.get("handle")
    if value is None or isinstance(value, bool):
        return None
    try:
        handle = int(value)
    except (TypeError, ValueError):
        return None
    return handle or None


def _result(response: Any) -> Any:
    if isinstance(response, dict):
        return response.get("result")
    return None


class SceneApi:
    def __init__(self, invoker: RemoteInvoker, max_in_flight: int = 6) -> None:
        self.invoker = invoker
        self._gate = asyncio.Semaphore(max(1, max_in_flight))

    async def call(
        self,
        service: str,
        method: str,
        handle: int | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        async with self._gate:
            return await self.invoker.invoke(service, method, handle, params or {})

    async def root_graph(self) -> int:
        response = await self.call("ApiProjectManager", "rootNodeGraph")
        handle = extract_handle(_result(response))
        if handle is None:
            raise StructuralError("remote returned no root node graph")
        return handle

    async def is_graph(self, handle: int) -> bool:
        return bool(_result(await self.call("ApiItem", "isGraph", handle)))

    async def name(self, handle: int) -> str:
        return str(_result(await self.call("ApiItem", "name", handle)) or "Unnamed")

    async def out_type(self, handle: int) -> str:
        value = _result(await self.call("ApiItem", "outType", handle))
        return "" if value is None else str(value)

    async def position(self, handle: int) -> tuple[float, float] | None:
        value = _result(await self.call("ApiItem", "position", handle))
        if not isinstance(value, dict):
            return None
        return float(value.get("x") or 0), float(value.get("y") or 0)

    async def graph_info(self, handle: int) -> dict[str, Any] | None:
        value = _result(await self.call("ApiNodeGraph", "info1", handle))
        return value if isinstance(value, dict) else None

    async def node_info(self, handle: int) -> dict[str, Any] | None:
        value = _result(await self.call("ApiNode", "info", handle))
        return value if isinstance(value, dict) else None

    async def owned_items(self, handle: int) -> list[int]:
        response = await self.call("ApiNodeGraph", "getOwnedItems", handle)
        array = extract_handle(response.get("list") if isinstance(response, dict) else None)
        if array is None:
            return []
        size = int(_result(await self.call("ApiItemArray", "size", array)) or 0)
        handles: list[int] = []
        for index in range(size):
            item = extract_handle(_result(await self.call("ApiItemArray", "get", array, {"index": index})))
            if item is not None:
                handles.append(item)
        return handles

    async def pin_count(self, handle: int) -> int:
        return int(_result(await self.call("ApiNode", "pinCount", handle)) or 0)

    async def connected_item(self, handle: int, pin_index: int) -> int | None:
        response = await self.call(
            "ApiNode",
            "connectedNodeIx",
            handle,
            {"pinIx": pin_index, "enterWrapperNode": True},
        )
        return extract_handle(_result(response))

    async def pin_info(self, handle: int, pin_index: int) -> dict[str, Any] | None:
        response = await self.call("ApiNode", "pinInfoIx", handle, {"index": pin_index})
        info_handle = extract_handle(_result(response))
        if info_handle is None:
            return None
        info = await self.call("ApiNodePinInfoEx", "getApiNodePinInfo", info_handle)
        payload = info.get("nodePinInfo") if isinstance(info, dict) else None
        if not isinstance(payload, dict):
            return None
        return {**payload, "ix": pin_index}

    async def attr_info(self, handle: int) -> dict[str, Any] | None:
        value = _result(await self.call("ApiItem", "attrInfo", handle, {"id": A_VALUE}))
        if not isinstance(value, dict) or value.get("type") == "AT_UNKNOWN":
            return None
        return value
