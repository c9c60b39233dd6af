"""Structured JSON-lines runtime log.

Each record is one JSON object with ``ts``, ``level``, ``event`` and ``pid``
plus free-form fields. Builds log through :meth:`RuntimeLogger.bind` so every
line they write carries the build generation.
"""

from __future__ import annotations

import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterator, Literal

from scenesync.paths import default_log_path

LogLevel = Literal["off", "error", "warning", "info", "debug"]

LEVELS: dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40, "off": 100}
_ALIASES = {"warn": "warning", "none": "off", "disabled": "off", "0": "off"}

_runtime_logger: "RuntimeLogger | None" = None


def parse_level(value: str | None, default: LogLevel = "warning") -> LogLevel:
    if not value:
        return default
    name = value.strip().lower()
    name = _ALIASES.get(name, name)
    return name if name in LEVELS else default  # type: ignore[return-value]


def resolve_log_file(path: str | Path | None) -> Path:
    return default_log_path() if path is None else Path(path).expanduser().resolve()


class _Emitter(ABC):
    @abstractmethod
    def log(self, level: str, event: str, **fields: Any) -> None: ...

    def debug(self, event: str, **fields: Any) -> None:
        self.log("debug", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log("info", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log("warning", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log("error", event, **fields)


@dataclass(slots=True)
class RuntimeLogger(_Emitter):
    level: LogLevel
    sink_path: Path
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def enabled(self, level: str) -> bool:
        threshold = LEVELS.get(self.level, LEVELS["warning"])
        return threshold < LEVELS["off"] and LEVELS.get(level, LEVELS["debug"]) >= threshold

    def log(self, level: str, event: str, **fields: Any) -> None:
        if not self.enabled(level):
            return
        record = {"ts": datetime.now(UTC).isoformat(), "level": level, "event": event, "pid": os.getpid()}
        record.update(fields)
        line = json.dumps(record, sort_keys=True, default=str)
        with self._lock:
            self.sink_path.parent.mkdir(parents=True, exist_ok=True)
            with self.sink_path.open("a", encoding="utf-8") as sink:
                sink.write(line + "\n")

    def bind(self, **fields: Any) -> "BoundLogger":
        return BoundLogger(self, fields)


class BoundLogger(_Emitter):
    """Adds fixed fields to every record written through it."""

    def __init__(self, parent: RuntimeLogger, fields: dict[str, Any]) -> None:
        self.parent = parent
        self.fields = fields

    def log(self, level: str, event: str, **fields: Any) -> None:
        self.parent.log(level, event, **{**self.fields, **fields})

    def bind(self, **fields: Any) -> "BoundLogger":
        return BoundLogger(self.parent, {**self.fields, **fields})


def _disabled() -> RuntimeLogger:
    return RuntimeLogger(level="off", sink_path=Path(os.devnull))


def configure_runtime_logging(
    *,
    level: str | None = None,
    log_file: str | Path | None = None,
) -> RuntimeLogger:
    """Install the process-wide logger; env vars fill in what is not given."""

    global _runtime_logger

    effective_level = parse_level(level or os.getenv("SCENESYNC_LOG_LEVEL"))
    if effective_level == "off":
        _runtime_logger = _disabled()
        return _runtime_logger

    sink = resolve_log_file(log_file or os.getenv("SCENESYNC_LOG_FILE"))
    _runtime_logger = RuntimeLogger(level=effective_level, sink_path=sink)
    _runtime_logger.info("logging.configured", configured_level=effective_level, sink_path=str(sink))
    return _runtime_logger


def get_runtime_logger() -> RuntimeLogger:
    if _runtime_logger is None:
        return configure_runtime_logging()
    return _runtime_logger


def read_records(
    path: Path,
    *,
    event_prefix: str | None = None,
    min_level: str | None = None,
) -> Iterator[dict[str, Any]]:
    """Yield parsed records from a runtime log, skipping unparsable lines."""

    threshold = LEVELS.get(parse_level(min_level, default="debug"), 0)
    with path.open(encoding="utf-8", errors="replace") as source:
        for line in source:
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            if event_prefix and not str(record.get("event", "")).startswith(event_prefix):
                continue
            if LEVELS.get(str(record.get("level")), 0) < threshold:
                continue
            yield record
