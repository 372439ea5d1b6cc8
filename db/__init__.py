"""Database helpers."""

from .errors import StorageError, is_foreign_key_violation, is_unique_violation
from .session import Storage

__all__ = ["Storage", "StorageError", "is_foreign_key_violation", "is_unique_violation"]
