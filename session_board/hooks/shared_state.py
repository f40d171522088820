#!/usr/bin/env python3

# ===== IMPORTS ===== #

## ===== STDLIB ===== ##
from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from contextlib import suppress
from datetime import timedelta
from typing import Optional, Dict, Any
from pathlib import Path
import json, os, tempfile
##-##

## ===== LOCAL ===== ##
from session_board.state.logger import log_event
from session_board.state.persistence import SessionStore
##-##

#-#

# ===== GLOBALS ===== #
CONFIG_FILENAME = "config.json"
STORE_RELPATH = Path("data") / "sessions.json"
DEFAULT_PORT = 3457

def resolve_home() -> Path:
    """Install home: SESSION_BOARD_HOME, else ~/.session-board."""
    if (p := os.environ.get("SESSION_BOARD_HOME")): return Path(p).expanduser()
    return Path.home() / ".session-board"

def resolve_config_path(home: Optional[Path] = None) -> Path:
    return (home or resolve_home()) / CONFIG_FILENAME
#-#

"""
Shared configuration for the hook handler, the CLI and the dashboard server.

Every entry point builds its SessionStore through open_store() so the store
path and timing constants come from one place instead of module globals:
- config.json under the install home (written with defaults on first load)
- SESSION_BOARD_STORE overrides the store location
- a corrupt config file is backed up to config.bad.json and replaced
"""

# ===== DECLARATIONS ===== #

## ===== EXCEPTIONS ===== ##
class ConfigError(ValueError): pass
##-##

## ===== DATA CLASSES ===== ##
@dataclass
class BoardConfig:
    terminal: str = "auto"
    port: int = DEFAULT_PORT
    lock_timeout_s: float = 5.0
    lock_retry_ms: int = 20
    stale_after_s: float = 120.0
    store_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.terminal, str) or not self.terminal: raise ConfigError("terminal must be a non-empty string")
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port < 65536: raise ConfigError(f"port out of range: {self.port!r}")
        for name in ("lock_timeout_s", "lock_retry_ms", "stale_after_s"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0: raise ConfigError(f"{name} must be a non-negative number")

    @property
    def stale_after(self) -> timedelta: return timedelta(seconds=self.stale_after_s)

    @property
    def lock_retry_interval(self) -> float: return self.lock_retry_ms / 1000.0

    def resolve_store_path(self, home: Optional[Path] = None) -> Path:
        if (p := os.environ.get("SESSION_BOARD_STORE")): return Path(p).expanduser()
        if self.store_path: return Path(self.store_path).expanduser()
        return (home or resolve_home()) / STORE_RELPATH

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BoardConfig":
        # Unknown keys (older or newer installs) are ignored rather than fatal
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in d.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        if d["store_path"] is None: d.pop("store_path")
        return d
##-##

#-#

# ===== FUNCTIONS ===== #

## ===== CONFIG PROTECTION ===== ##
def _the_ol_in_out(path: Path, obj: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=str(path.parent), encoding="utf-8") as tmp:
        json.dump(obj, tmp, indent=2)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)

def _write_defaults(path: Path) -> BoardConfig:
    # An unwritable home must not stop the caller; defaults still apply
    fresh = BoardConfig()
    try: _the_ol_in_out(path, fresh.to_dict())
    except OSError as exc: log_event(event="config.write_failed", component="hooks.shared_state", level="warn", path=str(path), error=str(exc))
    return fresh
##-##

## ===== GEIPI ===== ##
def load_config(path: Optional[Path] = None) -> BoardConfig:
    config_file = path or resolve_config_path()
    if not config_file.exists(): return _write_defaults(config_file)
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
        if not isinstance(data, dict): raise ConfigError("config must be a JSON object")
        return BoardConfig.from_dict(data)
    except (json.JSONDecodeError, ConfigError, TypeError):
        # Corrupt file: back it up once and start fresh
        backup = config_file.with_suffix(".bad.json")
        with suppress(OSError): config_file.replace(backup)
        return _write_defaults(config_file)

def open_store(config: Optional[BoardConfig] = None, home: Optional[Path] = None) -> SessionStore:
    if config is None: config = load_config(resolve_config_path(home))
    return SessionStore(
        config.resolve_store_path(home),
        lock_timeout=config.lock_timeout_s,
        retry_interval=config.lock_retry_interval)
##-##

#-#
