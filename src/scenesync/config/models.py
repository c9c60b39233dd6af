"""Settings schema for scenesync."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

Strategy = Literal["eager", "staged"]


class EngineSettings(BaseModel):
    strategy: Strategy = Field(default="staged", description="Traversal strategy")
    concurrency_limit: int = Field(default=6, ge=1, le=256, description="Max in-flight remote calls")
    visible_batch_size: int = Field(default=10, ge=1)
    pause_on_scroll: bool = Field(default=True)
    lazy_attributes: bool = Field(default=True)
    yield_every: int = Field(default=5, ge=1, description="Cooperative yield cadence")
    max_depth: int = Field(default=64, ge=1, description="Depth ceiling safety net")


class ServerSettings(BaseModel):
    url: str = Field(default="http://127.0.0.1:45769")
    timeout_s: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class AppSettings(BaseModel):
    schema_version: int = Field(default=1)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten key/value pairs for display."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, BaseModel):
                for key in type(value).model_fields:
                    walk(f"{prefix}.{key}" if prefix else key, getattr(value, key))
            else:
                result.append((prefix, str(value)))

        walk("", self)
        return result
