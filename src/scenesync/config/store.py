"""Persisted settings for scenesync."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from scenesync.config.models import AppSettings
from scenesync.paths import settings_path
from scenesync.runtime_logging import get_runtime_logger


class SettingsStore:
    """JSON file holding :class:`AppSettings`.

    A missing file yields defaults and is written on first load. A file that
    no longer parses or validates is moved aside to ``settings.corrupt.json``
    and replaced with defaults.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or settings_path()

    @property
    def corrupt_path(self) -> Path:
        return self.path.with_suffix(".corrupt.json")

    def load(self) -> AppSettings:
        if not self.path.exists():
            return self.save(AppSettings())

        raw = self.path.read_text(encoding="utf-8")
        try:
            return AppSettings.model_validate_json(raw)
        except ValidationError as exc:
            get_runtime_logger().warning(
                "settings.corrupt",
                path=str(self.path),
                backup=str(self.corrupt_path),
                errors=exc.error_count(),
            )
            self.corrupt_path.write_text(raw, encoding="utf-8")
            return self.save(AppSettings())

    def save(self, settings: AppSettings) -> AppSettings:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(settings.model_dump(mode="json"), indent=2, sort_keys=True)
        self.path.write_text(f"{payload}\n", encoding="utf-8")
        return settings

    def update(self, dotted_key: str, value: Any) -> AppSettings:
        """Set one value such as ``engine.strategy`` and persist it."""

        updated = apply_setting(self.load(), dotted_key, value)
        return self.save(updated)


def apply_setting(settings: AppSettings, dotted_key: str, value: Any) -> AppSettings:
    """Return a validated copy of ``settings`` with one dotted key replaced."""

    *sections, leaf = dotted_key.split(".")
    data = settings.model_dump()
    cursor: dict[str, Any] = data
    model: BaseModel = settings
    for section in sections:
        nested = getattr(model, section, None)
        if not isinstance(nested, BaseModel):
            raise KeyError(f"Unknown setting path: {dotted_key}")
        model = nested
        cursor = cursor[section]
    if leaf not in type(model).model_fields:
        raise KeyError(f"Unknown setting path: {dotted_key}")
    cursor[leaf] = value
    return AppSettings.model_validate(data)


def with_engine_overrides(settings: AppSettings, **overrides: Any) -> AppSettings:
    """Apply non-``None`` engine overrides, e.g. from command line flags."""

    for key, value in overrides.items():
        if value is not None:
            settings = apply_setting(settings, f"engine.{key}", value)
    return settings
