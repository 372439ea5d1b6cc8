"""Password hashing helpers.

Hashes are argon2id PHC strings, so the cost parameters travel with every
stored hash and old hashes keep verifying after the settings change.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError

from .config import settings

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 72

logger = logging.getLogger(__name__)


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(
        time_cost=settings.password_time_cost,
        memory_cost=settings.password_memory_cost,
        parallelism=settings.password_parallelism,
    )


def is_valid_password_length(password: str | None) -> bool:
    if password is None:
        return False
    return MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH


def hash_password(password: str) -> str:
    """Hash a plaintext password with argon2id."""
    if password is None:
        raise ValueError("Password cannot be None")
    return get_password_hasher().hash(password)


def verify_password(password: str | None, hashed_password: str | None) -> bool:
    """Return True when ``password`` matches ``hashed_password``.

    Never raises: a mismatch, a malformed hash or any other verification
    failure is reported as False.
    """
    if password is None or not hashed_password:
        return False
    try:
        return get_password_hasher().verify(hashed_password, password)
    except VerificationError:
        return False
    except InvalidHash:
        logger.warning("Stored password hash could not be parsed")
        return False
