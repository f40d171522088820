"""Cross-process advisory lock guarding the sessions store.

Hooks, the pin CLI and the dashboard server all rewrite ``sessions.json``.
They are separate processes with no shared memory, so mutual exclusion lives
on the filesystem. Always hold this lock (via ``SessionStore.mutate`` or
``SessionStore.edit``) when writing the store.

Lock layout: a directory ``<store>.lock`` containing a ``pid`` file with the
holder's process id as plain decimal text.

- The directory is staged under a private sibling name with the ``pid`` file
  already written, then renamed into place. The rename fails while another
  holder's directory exists, so a live holder's entry always carries its pid.
- A holder whose pid is missing, unparsable or not running is stale; its
  entry is removed and acquisition retries immediately.
- Past the timeout the entry is removed regardless of liveness and taken by
  force. Availability wins over strict exclusion for interactive use.
"""
from __future__ import annotations

import errno
import os
import shutil
import time
import uuid
from contextlib import AbstractContextManager, suppress
from pathlib import Path
from types import TracebackType
from typing import Callable, Optional, Protocol, Type, runtime_checkable

from session_board.state.errors import LockError
from session_board.state.logger import log_event

LOCK_SUFFIX = ".lock"
PID_FILENAME = "pid"
DEFAULT_TIMEOUT = 5.0
DEFAULT_RETRY_INTERVAL = 0.02
MAX_FORCED_ATTEMPTS = 50

_CONTENTION_ERRNOS = {errno.EEXIST, errno.ENOTEMPTY}


def lock_dir_for(store_path: Path | str) -> Path:
    """Return the lock directory guarding ``store_path``."""
    return Path(f"{store_path}{LOCK_SUFFIX}")


def is_process_alive(pid: int) -> bool:
    """Return True when ``pid`` names a running process on this machine."""
    if pid <= 0:
        return False
    if os.name == "nt":
        # os.kill terminates the target on Windows; rely on the timeout there.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except (OverflowError, OSError):
        return False
    return True


@runtime_checkable
class AdvisoryLock(Protocol):
    """Lock interface the store depends on."""

    def acquire(self) -> None: ...

    def release(self) -> None: ...

    def __enter__(self) -> "AdvisoryLock": ...

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> Optional[bool]: ...


class FileLock(AbstractContextManager["FileLock"]):
    """Directory-based lock with pid liveness checks and forced takeover."""

    def __init__(
        self,
        store_path: Path | str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        liveness: Callable[[int], bool] = is_process_alive,
    ) -> None:
        self._lock_dir = lock_dir_for(store_path)
        self._timeout = max(float(timeout), 0.0)
        self._retry_interval = max(float(retry_interval), 0.0)
        self._liveness = liveness
        self._held = False

    @property
    def lock_dir(self) -> Path:
        return self._lock_dir

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def acquire(self) -> None:
        """Block until the lock is held, forcing it after the timeout.

        Raises:
            LockError: If this object already holds the lock, or the lock
                path cannot be claimed even by force
            OSError: For filesystem errors other than contention
        """
        if self._held:
            raise LockError(f"Lock re-entry detected for {self._lock_dir}")

        deadline = time.monotonic() + self._timeout
        self._lock_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = self._stage()
        try:
            while time.monotonic() < deadline:
                if self._claim(staging):
                    self._held = True
                    return

                owner = self.read_owner()
                if owner is None and not self._lock_dir.exists():
                    continue
                if owner is None or not self._liveness(owner):
                    log_event(
                        event="lock.stale_removed",
                        component="store.lock",
                        level="warn",
                        lock_dir=str(self._lock_dir),
                        owner_pid=owner,
                    )
                    self._force_release()
                    continue

                time.sleep(self._retry_interval)

            log_event(
                event="lock.forced_takeover",
                component="store.lock",
                level="warn",
                lock_dir=str(self._lock_dir),
                owner_pid=self.read_owner(),
                timeout_s=self._timeout,
            )
            for _ in range(MAX_FORCED_ATTEMPTS):
                self._force_release()
                if self._claim(staging):
                    self._held = True
                    return
            raise LockError(f"Unable to take lock at {self._lock_dir}")
        finally:
            self._discard(staging)

    def release(self) -> None:
        """Release the lock if held. Errors are ignored."""
        if not self._held:
            return
        self._held = False
        with suppress(OSError):
            (self._lock_dir / PID_FILENAME).unlink(missing_ok=True)
            self._lock_dir.rmdir()

    def read_owner(self) -> Optional[int]:
        """Return the pid recorded in the lock entry, or None if unusable."""
        try:
            raw = (self._lock_dir / PID_FILENAME).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None
        try:
            return int(raw.strip())
        except ValueError:
            return None

    def _stage(self) -> Path:
        staging = self._lock_dir.with_name(
            f"{self._lock_dir.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}"
        )
        staging.mkdir()
        (staging / PID_FILENAME).write_text(str(os.getpid()), encoding="utf-8")
        return staging

    def _claim(self, staging: Path) -> bool:
        try:
            os.rename(staging, self._lock_dir)
        except FileExistsError:
            return False
        except OSError as exc:
            if exc.errno in _CONTENTION_ERRNOS:
                return False
            raise
        return True

    def _force_release(self) -> None:
        shutil.rmtree(self._lock_dir, ignore_errors=True)

    @staticmethod
    def _discard(staging: Path) -> None:
        shutil.rmtree(staging, ignore_errors=True)


__all__ = [
    "AdvisoryLock",
    "DEFAULT_RETRY_INTERVAL",
    "DEFAULT_TIMEOUT",
    "FileLock",
    "PID_FILENAME",
    "is_process_alive",
    "lock_dir_for",
]
