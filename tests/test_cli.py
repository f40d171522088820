"""
Tests for the session-board CLI: pin/delete actions, listing and telemetry.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from session_board.api import cli
from session_board.state.lifecycle import HookInput, apply_hook_event
from session_board.state.models import SessionsDocument
from session_board.state.persistence import SessionStore

NOW = datetime.now(timezone.utc)


def seed(store: SessionStore) -> None:
    def build(document: SessionsDocument) -> None:
        for offset, (session_id, prompt) in enumerate([
            ("alpha", "Migrate the billing tables to the new schema"),
            ("beta", "Write docs for the deploy pipeline"),
            ("gamma", "Investigate flaky login tests in CI"),
        ]):
            moment = NOW - timedelta(seconds=offset)
            apply_hook_event(document, HookInput("SessionStart", session_id, cwd=f"/work/{session_id}"), now=moment)
            apply_hook_event(document, HookInput("UserPromptSubmit", session_id, prompt=prompt), now=moment)
        apply_hook_event(document, HookInput("SessionEnd", "gamma"), now=NOW)

    store.mutate(build)


def run(capsys: pytest.CaptureFixture[str], *argv: str):
    code = cli.main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestPin:
    def test_pin_then_unpin(self, store: SessionStore, capsys):
        seed(store)

        code, out, _ = run(capsys, "pin", "alpha")
        assert code == 0
        assert out.strip() == "Session pinned - it will stay in the dashboard after you exit."
        assert store.read().sessions["alpha"].pinned is True

        code, out, _ = run(capsys, "pin", "alpha")
        assert out.strip() == "Session unpinned."
        assert store.read().sessions["alpha"].pinned is False

    def test_pinning_archived_session_resurfaces_it(self, store: SessionStore, capsys):
        seed(store)
        run(capsys, "pin", "gamma")
        record = store.read().sessions["gamma"]
        assert (record.status, record.pinned) == ("pinned", True)

    def test_unknown_session(self, store: SessionStore, capsys):
        seed(store)
        before = store.path.read_bytes()
        code, out, _ = run(capsys, "pin", "nope")
        assert code == 0
        assert out.strip() == "Session nope not found."
        assert store.path.read_bytes() == before

    def test_explicit_store_path(self, tmp_path: Path, capsys):
        other = SessionStore(tmp_path / "elsewhere" / "sessions.json")
        seed(other)
        code, _, _ = run(capsys, "--store", str(other.path), "pin", "beta")
        assert code == 0
        assert other.read().sessions["beta"].pinned is True


def test_delete(store: SessionStore, capsys):
    seed(store)
    code, out, _ = run(capsys, "delete", "beta")
    assert code == 0
    assert out.strip() == "Deleted session beta."
    assert "beta" not in store.read()

    code, out, _ = run(capsys, "delete", "beta")
    assert code == 0
    assert out.strip() == "Session beta not found."


class TestList:
    def test_table_hides_archived(self, store: SessionStore, capsys):
        seed(store)
        code, out, _ = run(capsys, "list")
        assert code == 0
        lines = out.strip().splitlines()
        assert "alpha" in lines[0]
        assert "beta" in lines[1]
        assert "gamma" not in out

    def test_json_with_archived_and_counts(self, store: SessionStore, capsys):
        seed(store)
        code, out, _ = run(capsys, "list", "--all", "--json")
        assert code == 0
        payload = json.loads(out)
        assert [s["session_id"] for s in payload["sessions"]] == ["alpha", "beta", "gamma"]
        assert payload["counts"] == {"active": 2, "pinned": 0, "archived": 1}

    def test_search(self, store: SessionStore, capsys):
        seed(store)
        _, out, _ = run(capsys, "list", "--all", "--search", "LOGIN", "--json")
        assert [s["session_id"] for s in json.loads(out)["sessions"]] == ["gamma"]

    def test_empty_store(self, capsys):
        code, out, _ = run(capsys, "list")
        assert code == 0
        assert out.strip() == "No sessions."


class TestInit:
    def test_creates_store_and_config(self, store: SessionStore, board_home: Path, capsys):
        code, out, _ = run(capsys, "init")
        assert code == 0
        assert str(store.path) in out
        assert json.loads(store.path.read_text()) == {"version": 1, "sessions": {}}
        assert (board_home / "config.json").exists()

    def test_refuses_to_clobber_without_force(self, store: SessionStore, capsys):
        seed(store)
        code, _, err = run(capsys, "init")
        assert code == 1
        assert err.startswith("Error:")
        assert len(store.read()) == 3

        code, _, _ = run(capsys, "init", "--force")
        assert code == 0
        assert len(store.read()) == 0


def test_events_show_cli_actions(store: SessionStore, capsys):
    seed(store)
    run(capsys, "pin", "alpha")
    run(capsys, "delete", "beta")

    code, out, _ = run(capsys, "events", "--limit", "5")
    assert code == 0
    assert "session.pin_toggled" in out
    assert "session.deleted" in out
    assert "session_id=beta" in out


def test_events_without_log(capsys):
    code, out, _ = run(capsys, "events")
    assert code == 0
    assert out.strip() == "No events."


def test_format_sessions_truncates_long_summaries(store: SessionStore):
    def build(document: SessionsDocument) -> None:
        apply_hook_event(document, HookInput("SessionStart", "long", cwd="/work/long"))
        apply_hook_event(document, HookInput("UserPromptSubmit", "long", prompt="word " * 40))

    store.mutate(build)
    line = cli.format_sessions(list(store.read().sessions.values()))
    assert line.endswith("...")
    assert "word word" in line
    assert len(line) < 200
