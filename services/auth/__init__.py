"""Authentication domain services."""

from .identity_resolution import (
    USERNAME_PATTERN,
    is_valid_username,
    normalize_username,
    registration_conflict_exists,
    resolve_login_user,
)
from .service import PASSWORD_RULE, USERNAME_RULE, WELCOME_BIO, AuthService

__all__ = [
    "AuthService",
    "PASSWORD_RULE",
    "USERNAME_PATTERN",
    "USERNAME_RULE",
    "WELCOME_BIO",
    "is_valid_username",
    "normalize_username",
    "registration_conflict_exists",
    "resolve_login_user",
]
