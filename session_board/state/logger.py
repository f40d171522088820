"""Structured JSONL telemetry shared by hooks, the CLI and the store.

Entries go to ``logs/session-board.log`` under the board home, next to the
config and the store, one JSON object per line. Settings are re-read from the
environment on every call so child processes and tests can redirect them:

- SESSION_BOARD_LOG_LEVEL: minimum level written (default ``info``)
- SESSION_BOARD_LOG_PATH: explicit log file, overriding the board home
- SESSION_BOARD_LOG_MAX_BYTES / SESSION_BOARD_LOG_MAX_BACKUPS: rotation
"""
from __future__ import annotations

import json
import os
import time
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, MutableMapping, Optional

from session_board.state.models import utc_timestamp

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}
_LEVEL_ALIASES = {"warning": "warn"}

ROTATE_AT_BYTES = 2 * 1024 * 1024
KEEP_BACKUPS = 3
LOG_FILENAME = "session-board.log"


def _level(name: Optional[str]) -> str:
    key = (name or "").lower()
    key = _LEVEL_ALIASES.get(key, key)
    return key if key in LEVELS else "info"


def _env_int(name: str, default: int, minimum: int) -> int:
    try:
        return max(int(os.environ[name]), minimum)
    except (KeyError, ValueError):
        return default


def resolve_log_path() -> Path:
    """SESSION_BOARD_LOG_PATH, else ``logs/session-board.log`` under the board home."""
    explicit = os.environ.get("SESSION_BOARD_LOG_PATH")
    if explicit:
        return Path(explicit).expanduser()
    # shared_state imports this module, so resolve the home lazily
    from session_board.hooks.shared_state import resolve_home

    return resolve_home() / "logs" / LOG_FILENAME


@dataclass(frozen=True)
class LogSettings:
    """Where and how much to log.

    Attributes:
        path: Live log file
        min_level: Entries below this level are dropped
        rotate_at: Size in bytes that triggers rotation (0 disables it)
        backups: Number of rotated files kept (``.1`` is the newest)
    """

    path: Path
    min_level: str = "info"
    rotate_at: int = ROTATE_AT_BYTES
    backups: int = KEEP_BACKUPS

    @classmethod
    def from_env(cls) -> "LogSettings":
        return cls(
            path=resolve_log_path(),
            min_level=_level(os.environ.get("SESSION_BOARD_LOG_LEVEL")),
            rotate_at=_env_int("SESSION_BOARD_LOG_MAX_BYTES", ROTATE_AT_BYTES, 0),
            backups=_env_int("SESSION_BOARD_LOG_MAX_BACKUPS", KEEP_BACKUPS, 1),
        )

    def accepts(self, level: str) -> bool:
        return LEVELS[level] >= LEVELS[self.min_level]

    def backup(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def rotate(self) -> None:
        """Shift ``.1`` -> ``.2`` ... once the live file reaches ``rotate_at``."""
        if self.rotate_at == 0:
            return
        try:
            if self.path.stat().st_size < self.rotate_at:
                return
        except FileNotFoundError:
            return

        self.backup(self.backups).unlink(missing_ok=True)
        for index in range(self.backups - 1, 0, -1):
            if self.backup(index).exists():
                self.backup(index).replace(self.backup(index + 1))
        with suppress(FileNotFoundError):
            self.path.replace(self.backup(1))


def log_event(
    *,
    event: str,
    component: str,
    level: str = "info",
    hook: str | None = None,
    **fields: Any,
) -> Dict[str, Any] | None:
    """Append one structured entry to the board log.

    ``None`` field values are omitted and ``latency_ms`` is rounded to
    microseconds. Returns the written payload, or None when the entry was
    below the configured level or the log could not be written; telemetry
    never raises into the caller.
    """
    settings = LogSettings.from_env()
    level = _level(level)
    if not settings.accepts(level):
        return None

    payload: Dict[str, Any] = {
        "ts": utc_timestamp(),
        "level": level,
        "component": component,
        "event": event,
        "pid": os.getpid(),
    }
    if hook:
        payload["hook"] = hook
    for key, value in fields.items():
        if value is None:
            continue
        if key == "latency_ms":
            try:
                value = round(float(value), 3)
            except (TypeError, ValueError):
                continue
        payload[key] = value

    line = json.dumps(payload, separators=(",", ":"), default=str)
    try:
        settings.path.parent.mkdir(parents=True, exist_ok=True)
        settings.rotate()
        with settings.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    except OSError:
        return None
    return payload


@contextmanager
def event_timer(
    *,
    event: str,
    component: str,
    level: str = "info",
    hook: str | None = None,
    **base_fields: Any,
) -> Iterator[Callable[[MutableMapping[str, Any] | None], None]]:
    """Time the block and log one entry with ``latency_ms``.

    The yielded callable merges outcome fields into the entry. An exception
    is logged at ``error`` with its message and re-raised.
    """
    start = time.perf_counter()
    outcome: Dict[str, Any] = dict(base_fields)

    def finalize(extra: MutableMapping[str, Any] | None = None) -> None:
        if extra:
            outcome.update(extra)

    def emit(at: str) -> None:
        outcome["latency_ms"] = (time.perf_counter() - start) * 1000
        log_event(event=event, component=component, hook=hook, level=at, **outcome)

    try:
        yield finalize
    except Exception as exc:
        outcome["error"] = str(exc)
        emit("error")
        raise
    emit(level)


def load_events(log_path: Path | None = None, limit: int = 50) -> List[Mapping[str, Any]]:
    """Return the newest events from the JSONL log, oldest first."""
    target = Path(log_path) if log_path is not None else resolve_log_path()
    if not target.exists():
        return []

    lines = target.read_text(encoding="utf-8").splitlines()
    selected = lines[-limit:] if limit else lines
    events: List[Mapping[str, Any]] = []
    for line in selected:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            events.append(entry)
    return events


__all__ = [
    "LogSettings",
    "event_timer",
    "load_events",
    "log_event",
    "resolve_log_path",
]
