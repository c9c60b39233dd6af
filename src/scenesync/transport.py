"""Remote call transports."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from scenesync.runtime_logging import get_runtime_logger
from scenesync.scene.errors import RemoteCallError


class RemoteInvoker(Protocol):
    async def invoke(
        self,
        service: str,
        method: str,
        handle: int | None,
        params: dict[str, Any],
    ) -> Any: ...


class HttpInvoker:
    """POSTs each call as JSON to ``{url}/api/grpc/{service}/{method}``."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.logger = get_runtime_logger()

    async def invoke(
        self,
        service: str,
        method: str,
        handle: int | None,
        params: dict[str, Any],
    ) -> Any:
        body: dict[str, Any] = {}
        if handle is not None:
            body["handle"] = handle
        body.update(params)
        endpoint = f"{self.url}/api/grpc/{service}/{method}"
        try:
            response = await self.client.post(endpoint, json=body)
        except httpx.HTTPError as exc:
            raise RemoteCallError(service, method, str(exc)) from exc

        if response.is_success:
            return response.json()

        message = response.reason_phrase or "request failed"
        try:
            detail = response.json()
        except ValueError:
            detail = None
        if isinstance(detail, dict) and detail.get("error"):
            message = str(detail["error"])
        self.logger.debug(
            "transport.call.failed",
            service=service,
            method=method,
            status=response.status_code,
            error=message,
        )
        raise RemoteCallError(service, method, message, response.status_code)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpInvoker":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
