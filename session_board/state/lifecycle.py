"""Session lifecycle transitions applied inside a locked store mutation.

Every function here mutates a ``SessionsDocument`` in place and is meant to be
called from ``SessionStore.mutate`` so the change is serialized with all other
writers. Events for unknown session ids are ignored, which keeps hooks
idempotent against duplicate or out-of-order delivery.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from session_board.state.models import (
    SessionRecord,
    SessionStatus,
    SessionsDocument,
    utc_timestamp,
)

DEFAULT_STALE_AFTER = timedelta(minutes=2)
SUMMARY_MIN_PROMPT_LENGTH = 15
SUMMARY_MAX_LENGTH = 200
DEFAULT_SOURCE = "startup"


class HookEvent(str, Enum):
    START = "SessionStart"
    PROMPT_SUBMITTED = "UserPromptSubmit"
    STOPPED = "Stop"
    END = "SessionEnd"


@dataclass(frozen=True)
class HookInput:
    """Validated hook payload.

    Attributes:
        hook_event_name: Raw event name as delivered by the host
        session_id: Session the event belongs to
        cwd: Working directory reported by the host (None if absent)
        transcript_path: Transcript reference reported by the host
        prompt: Prompt text for UserPromptSubmit
        source: How the session started, for SessionStart
        extra: Remaining payload keys
    """

    hook_event_name: str
    session_id: str
    cwd: Optional[str] = None
    transcript_path: Optional[str] = None
    prompt: Optional[str] = None
    source: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def event(self) -> Optional[HookEvent]:
        try:
            return HookEvent(self.hook_event_name)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["HookInput"]:
        """Build a HookInput, or None when the payload cannot be used."""
        if not isinstance(data, Mapping):
            return None
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id.strip():
            return None

        def text(key: str) -> Optional[str]:
            value = data.get(key)
            return value if isinstance(value, str) and value else None

        known = {"hook_event_name", "session_id", "cwd", "transcript_path", "prompt", "source"}
        return cls(
            hook_event_name=str(data.get("hook_event_name") or ""),
            session_id=session_id,
            cwd=text("cwd"),
            transcript_path=text("transcript_path"),
            prompt=data.get("prompt") if isinstance(data.get("prompt"), str) else None,
            source=text("source"),
            extra={key: value for key, value in data.items() if key not in known},
        )


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def project_name_for(cwd: str, home: Optional[str] = None) -> str:
    """Display name for a working directory: ``~`` for home, else its basename."""
    if home is None:
        home = os.environ.get("HOME")
    if home and cwd == home:
        return "~"
    return Path(cwd).name or cwd


# ===== SWEEP ===== #

def sweep_stale_sessions(
    document: SessionsDocument,
    *,
    exclude_id: Optional[str] = None,
    now: Optional[datetime] = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
) -> List[str]:
    """Close active sessions that stopped emitting events.

    A session whose process crashed or was killed never sends SessionEnd.
    Any other active record idle for longer than ``stale_after`` is moved to
    pinned (if pinned) or archived with ``ended_at`` set to now.

    Returns:
        Ids of the records that were closed
    """
    moment = _now(now)
    threshold = moment - stale_after
    stamp = utc_timestamp(moment)
    closed: List[str] = []
    for key, record in document.sessions.items():
        if key == exclude_id or record.status != SessionStatus.ACTIVE.value:
            continue
        last_activity = record.last_activity
        if last_activity is None or last_activity >= threshold:
            continue
        record.close(stamp)
        closed.append(key)
    return closed


# ===== TRANSITIONS ===== #

def start_session(
    document: SessionsDocument,
    hook: HookInput,
    *,
    now: Optional[datetime] = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    default_cwd: Optional[str] = None,
) -> SessionRecord:
    moment = _now(now)
    stamp = utc_timestamp(moment)
    session_id = hook.session_id
    source = hook.source or DEFAULT_SOURCE

    sweep_stale_sessions(document, exclude_id=session_id, now=moment, stale_after=stale_after)

    existing = document.get(session_id)
    if existing is None:
        cwd = hook.cwd or default_cwd or os.getcwd()
        record = SessionRecord(
            session_id=session_id,
            cwd=cwd,
            project_name=project_name_for(cwd),
            status=SessionStatus.ACTIVE.value,
            summary="",
            started_at=stamp,
            last_activity_at=stamp,
            ended_at=None,
            source=source,
            prompt_count=0,
            stop_count=0,
            transcript_path=hook.transcript_path or "",
            pinned=False,
        )
        document.unparsed.pop(session_id, None)
        document.sessions[session_id] = record
        return record

    existing.status = SessionStatus.ACTIVE.value
    existing.last_activity_at = stamp
    existing.ended_at = None
    if existing.pinned:
        existing.source = source
    return existing


def submit_prompt(
    document: SessionsDocument,
    session_id: str,
    prompt: Optional[str],
    *,
    now: Optional[datetime] = None,
) -> Optional[SessionRecord]:
    record = document.get(session_id)
    if record is None:
        return None
    record.prompt_count += 1
    record.last_activity_at = utc_timestamp(_now(now))
    text = prompt or ""
    if len(text) > SUMMARY_MIN_PROMPT_LENGTH:
        record.summary = text[:SUMMARY_MAX_LENGTH]
    return record


def stop_turn(
    document: SessionsDocument,
    session_id: str,
    *,
    now: Optional[datetime] = None,
) -> Optional[SessionRecord]:
    record = document.get(session_id)
    if record is None:
        return None
    record.stop_count += 1
    record.last_activity_at = utc_timestamp(_now(now))
    return record


def end_session(
    document: SessionsDocument,
    session_id: str,
    *,
    now: Optional[datetime] = None,
) -> Optional[SessionRecord]:
    record = document.get(session_id)
    if record is None:
        return None
    stamp = utc_timestamp(_now(now))
    record.last_activity_at = stamp
    record.close(stamp)
    return record


def apply_hook_event(
    document: SessionsDocument,
    hook: HookInput,
    *,
    now: Optional[datetime] = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
    default_cwd: Optional[str] = None,
) -> Optional[SessionRecord]:
    """Apply one hook event to the document.

    Args:
        document: Store document, mutated in place
        hook: Validated hook payload
        now: Event time (defaults to the current UTC time)
        stale_after: Idle period after which other active sessions are swept
        default_cwd: Working directory for new sessions lacking ``cwd``

    Returns:
        The affected record, or None when the event was a no-op
    """
    event = hook.event
    if event is HookEvent.START:
        return start_session(
            document, hook, now=now, stale_after=stale_after, default_cwd=default_cwd
        )
    if event is HookEvent.PROMPT_SUBMITTED:
        return submit_prompt(document, hook.session_id, hook.prompt, now=now)
    if event is HookEvent.STOPPED:
        return stop_turn(document, hook.session_id, now=now)
    if event is HookEvent.END:
        return end_session(document, hook.session_id, now=now)
    return None


# ===== DASHBOARD ACTIONS ===== #

def toggle_pin(
    document: SessionsDocument,
    session_id: str,
    *,
    now: Optional[datetime] = None,
) -> Optional[SessionRecord]:
    """Flip the pinned flag, keeping status consistent with it.

    Pinning an archived session makes it pinned (backfilling ``ended_at``);
    unpinning a pinned session archives it. Active sessions only change the
    flag and settle when they end.
    """
    record = document.get(session_id)
    if record is None:
        return None
    record.pinned = not record.pinned
    if record.pinned and record.status == SessionStatus.ARCHIVED.value:
        record.status = SessionStatus.PINNED.value
        record.ended_at = record.ended_at or utc_timestamp(_now(now))
    elif not record.pinned and record.status == SessionStatus.PINNED.value:
        record.status = SessionStatus.ARCHIVED.value
    return record


def delete_session(document: SessionsDocument, session_id: str) -> bool:
    return document.discard(session_id)


# ===== ORDERING ===== #

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def sort_sessions(records: Iterable[SessionRecord]) -> List[SessionRecord]:
    """Order by status rank, then most recent activity first."""
    by_activity = sorted(records, key=lambda r: r.last_activity or _EPOCH, reverse=True)
    return sorted(by_activity, key=lambda r: r.status_rank)


def list_sessions(
    document: SessionsDocument,
    *,
    include_archived: bool = False,
    search: str = "",
) -> List[SessionRecord]:
    """Records the dashboard shows, filtered and sorted."""
    records = list(document.sessions.values())
    if not include_archived:
        records = [r for r in records if r.status != SessionStatus.ARCHIVED.value]

    needle = search.strip().lower()
    if needle:
        records = [
            r
            for r in records
            if needle in r.summary.lower()
            or needle in r.project_name.lower()
            or needle in r.cwd.lower()
        ]
    return sort_sessions(records)


def status_counts(document: SessionsDocument) -> Dict[str, int]:
    counts = {status.value: 0 for status in SessionStatus}
    for record in document.sessions.values():
        counts[record.status] = counts.get(record.status, 0) + 1
    return counts


__all__ = [
    "DEFAULT_STALE_AFTER",
    "HookEvent",
    "HookInput",
    "apply_hook_event",
    "delete_session",
    "end_session",
    "list_sessions",
    "project_name_for",
    "sort_sessions",
    "start_session",
    "status_counts",
    "stop_turn",
    "submit_prompt",
    "sweep_stale_sessions",
    "toggle_pin",
]
