"""Data models for the session store document.

This module defines the dataclasses persisted in ``sessions.json``. The
document is read and rewritten by several independent processes (hooks, the
pin CLI, the dashboard server), so decoding is deliberately forgiving:

- A malformed document decodes as the empty document
- Non-object session entries are kept aside in ``unparsed`` and written back
- Missing fields fall back to their defaults
- Unknown record keys and unknown top-level keys are kept in ``extra`` and
  written back unchanged

Records are mutable: lifecycle transitions update them in place inside a
locked mutation and the whole document is written back afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

STORE_VERSION = 1


class SessionStatus(str, Enum):
    """Status of a tracked session.

    Attributes:
        ACTIVE: Session process is live and emitting hook events
        PINNED: Session ended but is kept on the dashboard
        ARCHIVED: Session ended and is hidden by default
    """

    ACTIVE = "active"
    PINNED = "pinned"
    ARCHIVED = "archived"


STATUS_RANK: Dict[str, int] = {
    SessionStatus.ACTIVE.value: 0,
    SessionStatus.PINNED.value: 1,
    SessionStatus.ARCHIVED.value: 2,
}
UNKNOWN_STATUS_RANK = 3


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Format ``moment`` (default: now) as ``2024-01-31T12:00:00.000Z``."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp, returning None when it is not usable."""
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


def _coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


_RECORD_KEYS = (
    "session_id",
    "cwd",
    "project_name",
    "status",
    "summary",
    "started_at",
    "last_activity_at",
    "ended_at",
    "source",
    "prompt_count",
    "stop_count",
    "transcript_path",
    "pinned",
)


@dataclass
class SessionRecord:
    """A single tracked session.

    Attributes:
        session_id: Stable identifier, the key of the record in the store
        cwd: Working directory the session was started in
        project_name: Display name derived from cwd
        status: One of the SessionStatus values (unknown strings are kept)
        summary: First 200 characters of the latest substantial prompt
        started_at: ISO 8601 timestamp of the first SessionStart
        last_activity_at: ISO 8601 timestamp of the latest hook event
        ended_at: ISO 8601 timestamp of the session end (None while live)
        source: How the session started (startup, resume, clear, ...)
        prompt_count: Number of submitted prompts
        stop_count: Number of assistant turns that finished
        transcript_path: Path of the transcript file, not interpreted here
        pinned: Sticky flag keeping the session visible after it ends
        extra: Unknown keys carried through a read/write cycle
    """

    session_id: str
    cwd: str = ""
    project_name: str = ""
    status: str = SessionStatus.ACTIVE.value
    summary: str = ""
    started_at: str = ""
    last_activity_at: str = ""
    ended_at: Optional[str] = None
    source: str = "startup"
    prompt_count: int = 0
    stop_count: int = 0
    transcript_path: str = ""
    pinned: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def status_rank(self) -> int:
        return STATUS_RANK.get(self.status, UNKNOWN_STATUS_RANK)

    @property
    def last_activity(self) -> Optional[datetime]:
        return parse_timestamp(self.last_activity_at)

    def close(self, ended_at: str) -> None:
        """Move a session out of the active state after it stopped being live."""
        self.status = SessionStatus.PINNED.value if self.pinned else SessionStatus.ARCHIVED.value
        self.ended_at = ended_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dict for JSON serialization.

        Returns:
            Dictionary with the known fields followed by any preserved extras
        """
        data: Dict[str, Any] = {
            "session_id": self.session_id,
            "cwd": self.cwd,
            "project_name": self.project_name,
            "status": self.status,
            "summary": self.summary,
            "started_at": self.started_at,
            "last_activity_at": self.last_activity_at,
            "ended_at": self.ended_at,
            "source": self.source,
            "prompt_count": self.prompt_count,
            "stop_count": self.stop_count,
            "transcript_path": self.transcript_path,
            "pinned": self.pinned,
        }
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, session_id: Optional[str] = None) -> "SessionRecord":
        """Reconstruct a record from stored data.

        Args:
            data: Mapping read from the store
            session_id: Store key, used when the record lacks its own id

        Returns:
            SessionRecord instance
        """
        ended_at = data.get("ended_at")
        return cls(
            session_id=_coerce_str(data.get("session_id"), session_id or ""),
            cwd=_coerce_str(data.get("cwd")),
            project_name=_coerce_str(data.get("project_name")),
            status=_coerce_str(data.get("status"), SessionStatus.ACTIVE.value),
            summary=_coerce_str(data.get("summary")),
            started_at=_coerce_str(data.get("started_at")),
            last_activity_at=_coerce_str(data.get("last_activity_at")),
            ended_at=ended_at if isinstance(ended_at, str) else None,
            source=_coerce_str(data.get("source"), "startup"),
            prompt_count=_coerce_count(data.get("prompt_count")),
            stop_count=_coerce_count(data.get("stop_count")),
            transcript_path=_coerce_str(data.get("transcript_path")),
            pinned=data.get("pinned") is True,
            extra={key: value for key, value in data.items() if key not in _RECORD_KEYS},
        )


@dataclass
class SessionsDocument:
    """The whole store document, the unit of atomicity for one mutation.

    Attributes:
        sessions: Records keyed by session id, in insertion order
        version: Document format version
        unparsed: Session entries that are not objects, written back as found
        extra: Unknown top-level keys carried through a read/write cycle
    """

    sessions: Dict[str, SessionRecord] = field(default_factory=dict)
    version: int = STORE_VERSION
    unparsed: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self.sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        """Drop an entry, parsed or not. Returns True if anything was removed."""
        removed = self.sessions.pop(session_id, None) is not None
        return self.unparsed.pop(session_id, None) is not None or removed

    def __contains__(self, session_id: object) -> bool:
        return session_id in self.sessions

    def __len__(self) -> int:
        return len(self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        sessions: Dict[str, Any] = {key: record.to_dict() for key, record in self.sessions.items()}
        for key, value in self.unparsed.items():
            sessions.setdefault(key, value)
        data: Dict[str, Any] = {"version": self.version, "sessions": sessions}
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "SessionsDocument":
        """Reconstruct a document, falling back to empty for malformed data."""
        if not isinstance(data, Mapping):
            return cls()
        extra = {key: value for key, value in data.items() if key not in ("version", "sessions")}
        raw_sessions = data.get("sessions")
        if not isinstance(raw_sessions, Mapping):
            return cls(extra=extra)

        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, int):
            version = STORE_VERSION

        sessions: Dict[str, SessionRecord] = {}
        unparsed: Dict[str, Any] = {}
        for key, value in raw_sessions.items():
            if not isinstance(key, str):
                continue
            if isinstance(value, Mapping):
                sessions[key] = SessionRecord.from_dict(value, session_id=key)
            else:
                unparsed[key] = value
        return cls(sessions=sessions, version=version, unparsed=unparsed, extra=extra)

    @staticmethod
    def is_usable(data: Any) -> bool:
        """True when raw JSON has the document shape (object with a sessions object)."""
        return isinstance(data, Mapping) and isinstance(data.get("sessions"), Mapping)


__all__ = [
    "STORE_VERSION",
    "SessionRecord",
    "SessionStatus",
    "SessionsDocument",
    "STATUS_RANK",
    "UNKNOWN_STATUS_RANK",
    "parse_timestamp",
    "utc_timestamp",
]
