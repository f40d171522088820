"""CLI utilities for inspecting and managing the session store."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from session_board.hooks.shared_state import (
    BoardConfig,
    load_config,
    open_store,
    resolve_config_path,
)
from session_board.state.lifecycle import delete_session, list_sessions, status_counts, toggle_pin
from session_board.state.logger import load_events, log_event
from session_board.state.models import SessionRecord, SessionsDocument
from session_board.state.persistence import SessionStore

SUMMARY_WIDTH = 60


def initialize_store(store: SessionStore, *, force: bool = False) -> Path:
    """Create an empty store file, refusing to clobber one unless forced."""
    if store.exists() and not force:
        raise FileExistsError(f"Session store already exists: {store.path}")

    def reset(document: SessionsDocument) -> None:
        document.sessions.clear()

    store.mutate(reset)
    return store.path


def pin_session(store: SessionStore, session_id: str) -> Optional[SessionRecord]:
    """Toggle the pin flag of one session; None when the id is unknown."""
    record = store.mutate(lambda document: toggle_pin(document, session_id))
    log_event(
        event="session.pin_toggled",
        component="api.cli",
        session_id=session_id,
        pinned=record.pinned if record else None,
        found=record is not None,
    )
    return record


def remove_session(store: SessionStore, session_id: str) -> bool:
    removed = store.mutate(lambda document: delete_session(document, session_id))
    log_event(event="session.deleted", component="api.cli", session_id=session_id, found=removed)
    return removed


def _truncate(text: str, width: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def format_sessions(records: Sequence[SessionRecord]) -> str:
    if not records:
        return "No sessions."
    lines: List[str] = []
    for record in records:
        marker = "*" if record.pinned else " "
        summary = _truncate(record.summary or "(no prompt yet)", SUMMARY_WIDTH)
        lines.append(
            f"{marker} {record.status:<8} {record.last_activity_at:<24} "
            f"{record.project_name:<20} {record.session_id}  {summary}"
        )
    return "\n".join(lines)


def format_events(events: Sequence[Mapping[str, Any]]) -> str:
    if not events:
        return "No events."
    lines: List[str] = []
    for event in events:
        skip = {"ts", "level", "component", "event"}
        details = " ".join(f"{key}={value}" for key, value in event.items() if key not in skip)
        lines.append(f"{event.get('ts', '')} {event.get('level', ''):<5} {event.get('event', '')} {details}".rstrip())
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="session-board", description="Session dashboard store management CLI.")
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="Path of the sessions.json store (defaults to the configured location).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Write the default config and an empty session store.")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Reset the store even if it already exists.",
    )

    pin_parser = subparsers.add_parser("pin", help="Toggle whether a session stays on the dashboard after it ends.")
    pin_parser.add_argument("session_id")

    delete_parser = subparsers.add_parser("delete", help="Remove a session from the store.")
    delete_parser.add_argument("session_id")

    list_parser = subparsers.add_parser("list", help="List sessions in dashboard order.")
    list_parser.add_argument("--all", action="store_true", help="Include archived sessions.")
    list_parser.add_argument("--search", type=str, default="", help="Filter by summary, project or directory.")
    list_parser.add_argument("--json", action="store_true", help="Emit JSON instead of a table.")

    events_parser = subparsers.add_parser("events", help="Show recent telemetry events.")
    events_parser.add_argument("--limit", type=int, default=20, help="Number of events to show.")

    return parser


def _resolve_store(args: argparse.Namespace, config: BoardConfig) -> SessionStore:
    if args.store:
        return SessionStore(
            Path(args.store).expanduser(),
            lock_timeout=config.lock_timeout_s,
            retry_interval=config.lock_retry_interval,
        )
    return open_store(config)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point for store management commands."""
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "events":
        print(format_events(load_events(limit=max(args.limit, 0))))
        return 0

    try:
        config = load_config(resolve_config_path())
        store = _resolve_store(args, config)

        if args.command == "init":
            path = initialize_store(store, force=args.force)
            print(f"Initialized session store at {path}")
            return 0

        if args.command == "pin":
            record = pin_session(store, args.session_id)
            if record is None:
                print(f"Session {args.session_id} not found.")
            elif record.pinned:
                print("Session pinned - it will stay in the dashboard after you exit.")
            else:
                print("Session unpinned.")
            return 0

        if args.command == "delete":
            if remove_session(store, args.session_id):
                print(f"Deleted session {args.session_id}.")
            else:
                print(f"Session {args.session_id} not found.")
            return 0

        if args.command == "list":
            document = store.read()
            records = list_sessions(document, include_archived=args.all, search=args.search)
            if args.json:
                payload: Dict[str, Any] = {
                    "sessions": [record.to_dict() for record in records],
                    "counts": status_counts(document),
                }
                print(json.dumps(payload, indent=2))
            else:
                print(format_sessions(records))
            return 0
    except (FileExistsError, NotADirectoryError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
