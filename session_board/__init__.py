"""Track interactive assistant sessions in a shared, lock-guarded JSON store."""

__version__ = "0.1.0"
