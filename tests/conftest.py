"""Shared fixtures: every test gets its own install home and store."""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, Dict

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from session_board.state.persistence import SessionStore  # noqa: E402


@pytest.fixture(autouse=True)
def board_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config, store and telemetry at a throwaway install home."""
    home = tmp_path / "board-home"
    monkeypatch.setenv("SESSION_BOARD_HOME", str(home))
    monkeypatch.setenv("SESSION_BOARD_LOG_PATH", str(home / "logs" / "session-board.log"))
    monkeypatch.delenv("SESSION_BOARD_STORE", raising=False)
    monkeypatch.delenv("SESSION_BOARD_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def store_path(board_home: Path) -> Path:
    return board_home / "data" / "sessions.json"


@pytest.fixture
def store(store_path: Path) -> SessionStore:
    return SessionStore(store_path, lock_timeout=10.0)


@pytest.fixture
def child_env() -> Callable[..., Dict[str, str]]:
    """Environment for child interpreters that import session_board from the checkout."""

    def build(**overrides: str) -> Dict[str, str]:
        env = os.environ.copy()
        existing = env.get("PYTHONPATH")
        env["PYTHONPATH"] = str(REPO_ROOT) + (os.pathsep + existing if existing else "")
        env.update(overrides)
        return env

    return build
