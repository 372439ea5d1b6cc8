"""Core configuration and security helpers."""

from .config import Settings, get_settings, normalize_database_url, settings
from .security import (
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    hash_password,
    is_valid_password_length,
    verify_password,
)

__all__ = [
    "Settings",
    "get_settings",
    "normalize_database_url",
    "settings",
    "MIN_PASSWORD_LENGTH",
    "MAX_PASSWORD_LENGTH",
    "hash_password",
    "is_valid_password_length",
    "verify_password",
]
