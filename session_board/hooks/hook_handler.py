#!/usr/bin/env python3

# ===== IMPORTS ===== #

## ===== STDLIB ===== ##
from __future__ import annotations

from typing import Optional, TextIO, Any, Dict, Set
import json, os, sys
##-##

## ===== LOCAL ===== ##
from session_board.hooks.shared_state import load_config, open_store, resolve_config_path
from session_board.state.lifecycle import HookInput, apply_hook_event
from session_board.state.logger import event_timer, log_event
from session_board.state.models import SessionStatus, SessionsDocument
from session_board.state.persistence import SessionStore
##-##

#-#

"""
Hook entry point registered for SessionStart, UserPromptSubmit, Stop and SessionEnd.

Reads one JSON payload from stdin and records it in the session store:
- Empty, unparsable or id-less payloads are dropped before touching the store
- Every accepted event runs as one locked mutation (SessionStart also sweeps
  sessions that went quiet without a SessionEnd)
- Always exits 0; a failing hook must never interrupt the assistant session
"""

# ===== FUNCTIONS ===== #

def parse_payload(raw: str) -> Optional[HookInput]:
    if not raw.strip(): return None
    try: data: Any = json.loads(raw)
    except json.JSONDecodeError: return None
    return HookInput.from_dict(data)

def _active_ids(document: SessionsDocument) -> Set[str]:
    return {key for key, record in document.sessions.items() if record.status == SessionStatus.ACTIVE.value}

def handle(hook: HookInput, *, store: Optional[SessionStore] = None) -> Dict[str, Any]:
    """Apply one hook payload as a single locked mutation and return its outcome."""
    with event_timer(event="hook.applied", component="hooks.hook_handler", hook=hook.hook_event_name, session_id=hook.session_id) as finalize:
        config = load_config(resolve_config_path())
        if store is None: store = open_store(config)
        default_cwd = os.getcwd()

        def mutator(document: SessionsDocument) -> Dict[str, Any]:
            before = _active_ids(document)
            record = apply_hook_event(document, hook, stale_after=config.stale_after, default_cwd=default_cwd)
            swept = sorted(before - _active_ids(document) - {hook.session_id})
            return {"applied": record is not None, "status": record.status if record else None, "swept": swept or None}

        outcome = store.mutate(mutator)
        finalize(outcome)
    return outcome

def main(stdin: Optional[TextIO] = None) -> int:
    stream = stdin if stdin is not None else sys.stdin
    try: raw = "" if stream.isatty() else stream.read()
    except (OSError, ValueError): raw = ""

    hook = parse_payload(raw)
    if hook is None:
        log_event(event="hook.discarded", component="hooks.hook_handler", level="debug", bytes=len(raw))
        return 0

    try: handle(hook)
    except Exception: return 0  # recorded by event_timer
    return 0

#-#

if __name__ == "__main__":
    raise SystemExit(main())
