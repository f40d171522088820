"""Exception types raised by the session store."""
from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for session store failures."""


class LockError(StoreError):
    """Raised when the store lock cannot be taken even by force."""
