"""Database error helpers."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError


class StorageError(Exception):
    """Raised when the storage layer fails (constraint, I/O, driver errors)."""


def is_unique_violation(error: IntegrityError) -> bool:
    """Return True when the IntegrityError indicates a unique-constraint conflict."""
    original = getattr(error, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate == "23505":
        return True
    message = str(original or error).lower()
    return (
        "duplicate key" in message
        or "unique constraint" in message
        or "primary key must be unique" in message
    )


def is_foreign_key_violation(error: IntegrityError) -> bool:
    """Return True when the IntegrityError points at a missing referenced row."""
    original = getattr(error, "orig", None)
    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate == "23503":
        return True
    return "foreign key constraint" in str(original or error).lower()


__all__ = ["StorageError", "is_foreign_key_violation", "is_unique_violation"]
