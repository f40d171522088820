"""Durable JSON store for session records.

``SessionStore`` owns one ``sessions.json`` file. Reads are lock-free and
always see a complete document because every write goes to a temporary file
that is renamed over the canonical path. Mutations go through ``mutate`` or
``edit``, which hold the cross-process lock for the read-modify-write cycle.

Critical: never write the store outside ``mutate``/``edit``. Hooks run as
independent processes and an unlocked write loses their updates.
"""
from __future__ import annotations

import json
import os
import threading
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, TypeVar

from session_board.state.lock import (
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_TIMEOUT,
    AdvisoryLock,
    FileLock,
)
from session_board.state.logger import log_event
from session_board.state.models import SessionsDocument

T = TypeVar("T")
Observer = Callable[[SessionsDocument], None]
Signature = Tuple[int, int, int]


def _atomic_write(path: Path, payload: Dict[str, Any]) -> None:
    """Write JSON payload to path atomically (pid-suffixed temp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    try:
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        with suppress(OSError):
            temp_path.unlink()
        raise


class SessionStore:
    """File-backed mapping of session id to SessionRecord.

    Args:
        path: Location of the JSON document
        lock_timeout: Seconds to wait before forcing the lock
        retry_interval: Seconds between lock attempts under contention
        lock_factory: Builds the lock for one mutation; defaults to FileLock
    """

    def __init__(
        self,
        path: Path | str,
        *,
        lock_timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        lock_factory: Optional[Callable[[Path], AdvisoryLock]] = None,
    ) -> None:
        self._path = Path(path).expanduser()
        self._lock_timeout = lock_timeout
        self._retry_interval = retry_interval
        self._lock_factory = lock_factory
        self._observers: List[Observer] = []
        self._observers_lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def __repr__(self) -> str:
        return f"SessionStore({str(self._path)!r})"

    # ------------------------------------------------------------------
    # Reading

    def exists(self) -> bool:
        return self._path.is_file()

    def read_raw(self) -> Any:
        """Return the decoded JSON content, or None when missing or invalid."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            log_event(
                event="store.unreadable",
                component="store.persistence",
                level="debug",
                path=str(self._path),
                error=str(exc),
            )
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            log_event(
                event="store.corrupt",
                component="store.persistence",
                level="debug",
                path=str(self._path),
            )
            return None

    def read(self) -> SessionsDocument:
        """Load the current document; anything unusable reads as empty."""
        return SessionsDocument.from_dict(self.read_raw())

    def signature(self) -> Optional[Signature]:
        """Return a token that changes whenever the file is replaced."""
        try:
            stat = self._path.stat()
        except OSError:
            return None
        return (stat.st_mtime_ns, stat.st_size, stat.st_ino)

    # ------------------------------------------------------------------
    # Writing

    def write(self, document: SessionsDocument) -> None:
        """Persist the whole document atomically and notify observers."""
        _atomic_write(self._path, document.to_dict())
        self._notify(document)

    def lock(self) -> AdvisoryLock:
        """Build a fresh lock guarding this store."""
        if self._lock_factory is not None:
            return self._lock_factory(self._path)
        return FileLock(self._path, timeout=self._lock_timeout, retry_interval=self._retry_interval)

    def mutate(self, mutator: Callable[[SessionsDocument], T]) -> T:
        """Run ``mutator`` on the latest document under the lock and save it.

        The document is only written when the mutator returns normally and
        changed it (or the file was missing or unusable); the lock is released
        either way.
        """
        with self.edit() as document:
            result = mutator(document)
        return result

    @contextmanager
    def edit(self) -> Iterator[SessionsDocument]:
        # Acquire lock, reload (so we operate on latest), yield, then save atomically.
        # An unchanged document is not rewritten, so the file keeps its exact bytes;
        # a missing or unusable file is always written.
        with self.lock():
            raw = self.read_raw()
            document = SessionsDocument.from_dict(raw)
            baseline = document.to_dict()
            yield document
            if not SessionsDocument.is_usable(raw) or document.to_dict() != baseline:
                self.write(document)

    # ------------------------------------------------------------------
    # Change notification

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer`` after every successful write through this store.

        Returns:
            A callable that removes the observer again
        """
        with self._observers_lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._observers_lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _notify(self, document: SessionsDocument) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(document)
            except Exception as exc:
                log_event(
                    event="store.observer_failed",
                    component="store.persistence",
                    level="error",
                    path=str(self._path),
                    error=str(exc),
                )


class StoreWatcher:
    """Poll a store file and report changes made by any process.

    Writes that land within one polling interval are reported once.
    """

    def __init__(self, store: SessionStore, callback: Observer, *, interval: float = 0.5) -> None:
        self._store = store
        self._callback = callback
        self._interval = max(float(interval), 0.01)
        self._last: Optional[Signature] = store.signature()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def poll_once(self) -> bool:
        """Check the file once; return True if the callback was invoked."""
        current = self._store.signature()
        if current is None or current == self._last:
            return False
        self._last = current
        self._callback(self._store.read())
        return True

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.poll_once()
            except Exception as exc:
                log_event(
                    event="store.watch_failed",
                    component="store.persistence",
                    level="error",
                    path=str(self._store.path),
                    error=str(exc),
                )

    def start(self) -> "StoreWatcher":
        if self._thread is not None and self._thread.is_alive():
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-board-watcher", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout if timeout is not None else self._interval * 4)
            self._thread = None

    def __enter__(self) -> "StoreWatcher":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()


__all__ = ["SessionStore", "StoreWatcher"]
