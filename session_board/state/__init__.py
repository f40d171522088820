"""Session store: lock, persistence, models and lifecycle transitions."""
from session_board.state.errors import LockError, StoreError
from session_board.state.lifecycle import (
    HookEvent,
    HookInput,
    apply_hook_event,
    delete_session,
    list_sessions,
    sort_sessions,
    sweep_stale_sessions,
    toggle_pin,
)
from session_board.state.lock import AdvisoryLock, FileLock, is_process_alive, lock_dir_for
from session_board.state.logger import event_timer, log_event
from session_board.state.models import (
    SessionRecord,
    SessionStatus,
    SessionsDocument,
    utc_timestamp,
)
from session_board.state.persistence import SessionStore, StoreWatcher

__all__ = [
    "AdvisoryLock",
    "FileLock",
    "HookEvent",
    "HookInput",
    "LockError",
    "SessionRecord",
    "SessionStatus",
    "SessionStore",
    "SessionsDocument",
    "StoreError",
    "StoreWatcher",
    "apply_hook_event",
    "delete_session",
    "event_timer",
    "is_process_alive",
    "list_sessions",
    "lock_dir_for",
    "log_event",
    "sort_sessions",
    "sweep_stale_sessions",
    "toggle_pin",
    "utc_timestamp",
]
