"""
Tests for session lifecycle transitions, the stale-session sweep, pin/delete
actions and the dashboard ordering contract.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from session_board.state.lifecycle import (
    HookEvent,
    HookInput,
    apply_hook_event,
    delete_session,
    list_sessions,
    sort_sessions,
    status_counts,
    sweep_stale_sessions,
    toggle_pin,
)
from session_board.state.models import SessionRecord, SessionsDocument, utc_timestamp
from session_board.state.persistence import SessionStore

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def hook(event: str, session_id: str = "s1", **fields) -> HookInput:
    return HookInput(hook_event_name=event, session_id=session_id, **fields)


def record(session_id: str, *, status: str = "active", idle: timedelta = timedelta(0), pinned: bool = False,
           ended_at: str | None = None, **fields) -> SessionRecord:
    return SessionRecord(
        session_id=session_id,
        cwd=f"/work/{session_id}",
        project_name=session_id,
        status=status,
        started_at=utc_timestamp(NOW - idle),
        last_activity_at=utc_timestamp(NOW - idle),
        ended_at=ended_at,
        pinned=pinned,
        **fields,
    )


def document_of(*records: SessionRecord) -> SessionsDocument:
    return SessionsDocument(sessions={r.session_id: r for r in records})


class TestStart:
    def test_creates_active_record(self):
        document = SessionsDocument()
        created = apply_hook_event(
            document,
            hook("SessionStart", cwd="/home/dev/projects/api", transcript_path="/tmp/t.jsonl", source="resume"),
            now=NOW,
        )

        assert created is document.sessions["s1"]
        assert created.to_dict() == {
            "session_id": "s1",
            "cwd": "/home/dev/projects/api",
            "project_name": "api",
            "status": "active",
            "summary": "",
            "started_at": "2025-03-14T09:30:00.000Z",
            "last_activity_at": "2025-03-14T09:30:00.000Z",
            "ended_at": None,
            "source": "resume",
            "prompt_count": 0,
            "stop_count": 0,
            "transcript_path": "/tmp/t.jsonl",
            "pinned": False,
        }

    def test_defaults_for_sparse_payload(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("HOME", "/home/dev")
        document = SessionsDocument()
        created = apply_hook_event(document, hook("SessionStart"), now=NOW, default_cwd="/home/dev")

        assert created.cwd == "/home/dev"
        assert created.project_name == "~"
        assert created.source == "startup"
        assert created.transcript_path == ""

    def test_resuming_pinned_session_refreshes_source(self):
        old = record("s1", status="pinned", pinned=True, idle=timedelta(hours=5),
                     ended_at=utc_timestamp(NOW - timedelta(hours=5)), source="startup", prompt_count=7)
        document = document_of(old)

        apply_hook_event(document, hook("SessionStart", source="resume"), now=NOW)

        assert old.status == "active"
        assert old.ended_at is None
        assert old.last_activity_at == utc_timestamp(NOW)
        assert old.source == "resume"
        assert old.prompt_count == 7
        assert old.pinned is True

    def test_restarting_unpinned_session_keeps_source(self):
        old = record("s1", status="archived", idle=timedelta(hours=1),
                     ended_at=utc_timestamp(NOW - timedelta(hours=1)), source="startup")
        document = document_of(old)

        apply_hook_event(document, hook("SessionStart", source="resume"), now=NOW)

        assert old.status == "active"
        assert old.ended_at is None
        assert old.source == "startup"


class TestSweep:
    def test_start_archives_quiet_sessions_only(self):
        stale = record("stale", idle=timedelta(minutes=3))
        fresh = record("fresh", idle=timedelta(seconds=30))
        document = document_of(stale, fresh)

        apply_hook_event(document, hook("SessionStart", session_id="new", cwd="/work/new"), now=NOW)

        assert stale.status == "archived"
        assert stale.ended_at == utc_timestamp(NOW)
        assert fresh.status == "active"
        assert fresh.ended_at is None
        assert document.sessions["new"].status == "active"

    def test_stale_pinned_session_goes_to_pinned(self):
        stale = record("stale", idle=timedelta(minutes=10), pinned=True)
        document = document_of(stale)

        closed = sweep_stale_sessions(document, now=NOW)

        assert closed == ["stale"]
        assert stale.status == "pinned"
        assert stale.ended_at == utc_timestamp(NOW)

    def test_sweep_skips_starting_session_and_ended_sessions(self):
        own = record("s1", idle=timedelta(hours=2))
        archived = record("old", status="archived", idle=timedelta(hours=2), ended_at="2025-03-14T07:30:00.000Z")
        document = document_of(own, archived)

        apply_hook_event(document, hook("SessionStart"), now=NOW)

        assert own.status == "active"
        assert archived.ended_at == "2025-03-14T07:30:00.000Z"

    def test_unparsable_activity_is_left_alone(self):
        weird = record("weird")
        weird.last_activity_at = "yesterday-ish"
        assert sweep_stale_sessions(document_of(weird), now=NOW) == []
        assert weird.status == "active"

    def test_threshold_is_configurable(self):
        quiet = record("quiet", idle=timedelta(seconds=30))
        closed = sweep_stale_sessions(document_of(quiet), now=NOW, stale_after=timedelta(seconds=10))
        assert closed == ["quiet"]

    def test_other_events_do_not_sweep(self):
        stale = record("stale", idle=timedelta(minutes=30))
        document = document_of(stale, record("s1"))
        apply_hook_event(document, hook("Stop"), now=NOW)
        assert stale.status == "active"


class TestActivity:
    def test_end_to_end_scenario(self, store: SessionStore):
        prompt = "hello there, this is long enough"
        for event in (
            hook("SessionStart", cwd="/work/app"),
            hook("UserPromptSubmit", prompt=prompt),
            hook("Stop"),
        ):
            store.mutate(lambda document, event=event: apply_hook_event(document, event, now=NOW))

        live = store.read().sessions["s1"]
        assert live.status == "active"
        assert live.prompt_count == 1
        assert live.summary == prompt
        assert live.stop_count == 1

        later = NOW + timedelta(minutes=5)
        store.mutate(lambda document: apply_hook_event(document, hook("SessionEnd"), now=later))

        ended = store.read().sessions["s1"]
        assert ended.status == "archived"
        assert ended.ended_at == utc_timestamp(later)
        assert ended.last_activity_at == utc_timestamp(later)
        assert ended.started_at == utc_timestamp(NOW)

    def test_end_keeps_pinned_sessions_visible(self):
        live = record("s1", pinned=True)
        apply_hook_event(document_of(live), hook("SessionEnd"), now=NOW)
        assert live.status == "pinned"
        assert live.ended_at == utc_timestamp(NOW)

    @pytest.mark.parametrize(
        "prompt, expected",
        [
            ("short", ""),
            ("x" * 15, ""),
            ("x" * 16, "x" * 16),
            ("y" * 450, "y" * 200),
        ],
        ids=["short", "exactly-15", "16", "long"],
    )
    def test_summary_rules(self, prompt: str, expected: str):
        live = record("s1")
        apply_hook_event(document_of(live), hook("UserPromptSubmit", prompt=prompt), now=NOW)
        assert live.prompt_count == 1
        assert live.summary == expected

    def test_short_prompt_keeps_previous_summary(self):
        live = record("s1", summary="refactor the billing module")
        apply_hook_event(document_of(live), hook("UserPromptSubmit", prompt="ok"), now=NOW)
        assert live.summary == "refactor the billing module"

    @pytest.mark.parametrize("event", ["UserPromptSubmit", "Stop", "SessionEnd", "Notification"])
    def test_unknown_session_is_a_noop(self, store: SessionStore, event: str):
        store.mutate(lambda document: apply_hook_event(document, hook("SessionStart", session_id="known",
                                                                     cwd="/work"), now=NOW))
        before = store.path.read_bytes()

        result = store.mutate(lambda document: apply_hook_event(
            document, hook(event, session_id="ghost", prompt="a prompt long enough to count"), now=NOW
        ))

        assert result is None
        assert store.path.read_bytes() == before

    def test_unrecognised_event_for_known_session_is_ignored(self):
        live = record("s1")
        assert apply_hook_event(document_of(live), hook("PreCompact"), now=NOW) is None
        assert live.last_activity_at == utc_timestamp(NOW)


class TestPin:
    @pytest.mark.parametrize(
        "status, pinned, ended",
        [
            ("active", False, None),
            ("active", True, None),
            ("pinned", True, "2025-03-14T08:00:00.000Z"),
            ("archived", False, "2025-03-14T08:00:00.000Z"),
        ],
    )
    def test_toggling_twice_restores_state(self, status: str, pinned: bool, ended):
        target = record("s1", status=status, pinned=pinned, ended_at=ended)
        document = document_of(target)

        toggle_pin(document, "s1", now=NOW)
        assert target.pinned is not pinned
        toggle_pin(document, "s1", now=NOW)

        assert (target.status, target.pinned) == (status, pinned)
        assert target.ended_at == ended

    def test_pinning_archived_session_backfills_end(self):
        target = record("s1", status="archived", ended_at=None)
        toggle_pin(document_of(target), "s1", now=NOW)
        assert target.status == "pinned"
        assert target.ended_at == utc_timestamp(NOW)

    def test_unpinning_pinned_session_archives_it(self):
        target = record("s1", status="pinned", pinned=True, ended_at="2025-03-14T08:00:00.000Z")
        toggle_pin(document_of(target), "s1", now=NOW)
        assert (target.status, target.pinned) == ("archived", False)

    def test_pinning_active_session_only_flags_it(self):
        target = record("s1")
        toggle_pin(document_of(target), "s1", now=NOW)
        assert (target.status, target.pinned, target.ended_at) == ("active", True, None)

    def test_unknown_id(self):
        assert toggle_pin(SessionsDocument(), "ghost") is None


def test_delete_is_unconditional():
    document = document_of(record("a", status="pinned", pinned=True), record("b"))
    assert delete_session(document, "a") is True
    assert list(document.sessions) == ["b"]
    assert delete_session(document, "ghost") is False


class TestOrdering:
    def test_status_rank_then_recent_activity(self):
        records = [
            record("archived-new", status="archived", idle=timedelta(minutes=1)),
            record("active-old", idle=timedelta(minutes=50)),
            record("mystery", status="paused", idle=timedelta(0)),
            record("pinned", status="pinned", pinned=True, idle=timedelta(minutes=5)),
            record("active-new", idle=timedelta(minutes=1)),
            record("archived-old", status="archived", idle=timedelta(hours=3)),
        ]
        ordered = [r.session_id for r in sort_sessions(records)]
        assert ordered == ["active-new", "active-old", "pinned", "archived-new", "archived-old", "mystery"]

    def test_listing_hides_archived_by_default(self):
        document = document_of(record("a"), record("b", status="archived"), record("c", status="pinned", pinned=True))
        assert [r.session_id for r in list_sessions(document)] == ["a", "c"]
        assert {r.session_id for r in list_sessions(document, include_archived=True)} == {"a", "b", "c"}

    def test_search_matches_summary_project_and_cwd(self):
        document = document_of(
            record("one", summary="Fix the Login flow"),
            record("two"),
            record("three", status="archived"),
        )
        document.sessions["two"].cwd = "/srv/LOGIN-service"

        assert [r.session_id for r in list_sessions(document, search="login")] == ["one", "two"]
        assert [r.session_id for r in list_sessions(document, search="THREE", include_archived=True)] == ["three"]
        assert list_sessions(document, search="nothing") == []

    def test_status_counts(self):
        document = document_of(record("a"), record("b", status="archived"), record("c", status="archived"))
        assert status_counts(document) == {"active": 1, "pinned": 0, "archived": 2}


class TestHookInput:
    @pytest.mark.parametrize(
        "payload",
        [None, [], "SessionStart", {}, {"session_id": ""}, {"session_id": "   "}, {"session_id": 42}],
    )
    def test_rejects_unusable_payloads(self, payload):
        assert HookInput.from_dict(payload) is None

    def test_parses_known_fields(self):
        parsed = HookInput.from_dict({
            "hook_event_name": "UserPromptSubmit",
            "session_id": "abc",
            "prompt": "please add tests",
            "cwd": "/work",
            "permission_mode": "default",
        })
        assert parsed.event is HookEvent.PROMPT_SUBMITTED
        assert parsed.prompt == "please add tests"
        assert parsed.cwd == "/work"
        assert parsed.extra == {"permission_mode": "default"}

    def test_unknown_event_name(self):
        parsed = HookInput.from_dict({"hook_event_name": "PreToolUse", "session_id": "abc"})
        assert parsed.event is None
