"""Account creation, credential checks and credential changes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from core import hash_password, is_valid_password_length, verify_password
from core.security import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH
from db import Storage, StorageError, is_unique_violation
from models import User, utcnow
from services.errors import ValidationError
from services.views import UserView, fetch_user_view

from .identity_resolution import (
    is_valid_username,
    load_password_hash,
    normalize_username,
    registration_conflict_exists,
    resolve_login_user,
)

if TYPE_CHECKING:
    from services.avatars import AvatarStore

logger = logging.getLogger(__name__)

WELCOME_BIO = "New user on UniSocial!"
USERNAME_RULE = "Username must be 3-20 characters: letters, digits or underscores"
PASSWORD_RULE = (
    f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"
)


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _require_valid_password(password: str | None) -> str:
    if password is None or not is_valid_password_length(password):
        raise ValidationError(PASSWORD_RULE)
    return password


class AuthService:
    def __init__(self, storage: Storage, avatars: AvatarStore | None = None) -> None:
        self.storage = storage
        self.avatars = avatars

    async def authenticate(self, username: str | None, password: str | None) -> UserView | None:
        """Return the user when the credentials match; None for any mismatch."""
        normalized = normalize_username(username)
        if not normalized or password is None or not is_valid_password_length(password):
            return None
        async with self.storage.session() as session:
            user_id = await resolve_login_user(session, username=normalized, password=password)
            if user_id is None:
                logger.info("Login rejected", extra={"username": normalized})
                return None
            user = await fetch_user_view(session, user_id=user_id)
        logger.info("Login accepted", extra={"user_id": user_id})
        return user

    async def user_exists(self, username: str | None) -> bool:
        normalized = normalize_username(username)
        if not normalized:
            return False
        async with self.storage.session() as session:
            return await registration_conflict_exists(session, username=normalized)

    async def create_user(self, username: str | None, password: str | None) -> UserView | None:
        """Register a new account.

        Raises ValidationError when the username or password breaks the input
        rules and returns None when the username is already taken.
        """
        normalized = normalize_username(username)
        if not is_valid_username(normalized):
            raise ValidationError(USERNAME_RULE)
        password = _require_valid_password(password)

        if await self.user_exists(normalized):
            logger.info("Signup rejected: username taken", extra={"username": normalized})
            return None

        password_hash = await asyncio.to_thread(hash_password, password)
        user = User(
            username=normalized,
            password_hash=password_hash,
            full_name=normalized,
            bio=WELCOME_BIO,
        )
        try:
            async with self.storage.transaction() as session:
                session.add(user)
                await session.flush()
        except StorageError as exc:
            cause = exc.__cause__
            # The pre-check above can race with a concurrent signup; the
            # unique index on username decides.
            if isinstance(cause, IntegrityError) and is_unique_violation(cause):
                logger.info("Signup rejected: username taken", extra={"username": normalized})
                return None
            raise

        logger.info("User created", extra={"user_id": user.id, "username": normalized})
        return UserView.model_validate(user)

    async def change_password(
        self,
        user_id: int,
        old_password: str | None,
        new_password: str | None,
    ) -> bool:
        new_password = _require_valid_password(new_password)
        async with self.storage.session() as session:
            credentials = await load_password_hash(session, user_id=user_id)
        if credentials is None:
            return False
        if not await asyncio.to_thread(verify_password, old_password, credentials[1]):
            logger.info("Password change rejected", extra={"user_id": user_id})
            return False
        changed = await self._store_password(user_id, new_password)
        if changed:
            logger.info("Password changed", extra={"user_id": user_id})
        return changed

    async def reset_password(self, username: str | None, new_password: str | None) -> bool:
        """Set a new password without the old one. Operator use only."""
        new_password = _require_valid_password(new_password)
        async with self.storage.session() as session:
            credentials = await load_password_hash(
                session, username=normalize_username(username)
            )
        if credentials is None:
            return False
        return await self._store_password(credentials[0], new_password)

    async def delete_account(self, user_id: int, password: str | None) -> bool:
        """Delete the account and, through cascades, everything it owns."""
        async with self.storage.session() as session:
            credentials = await load_password_hash(session, user_id=user_id)
            avatar_result = await session.execute(
                select(cast(Any, User.avatar_url)).where(_eq(User.id, user_id))
            )
            avatar_url = avatar_result.scalar_one_or_none()
        if credentials is None:
            return False
        if not await asyncio.to_thread(verify_password, password, credentials[1]):
            logger.info("Account deletion rejected", extra={"user_id": user_id})
            return False

        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(delete(User).where(_eq(User.id, user_id)))
            return bool(cast(Any, result).rowcount)

        deleted = await self.storage.with_transaction(_delete)
        if deleted:
            logger.info("Account deleted", extra={"user_id": user_id})
            if avatar_url and self.avatars is not None:
                await self.avatars.delete_url(avatar_url, owner_id=user_id)
        return deleted

    async def _store_password(self, user_id: int, new_password: str) -> bool:
        password_hash = await asyncio.to_thread(hash_password, new_password)

        async def _update(session: AsyncSession) -> bool:
            result = await session.execute(
                update(User)
                .where(_eq(User.id, user_id))
                .values(password_hash=password_hash, updated_at=utcnow())
            )
            return bool(cast(Any, result).rowcount)

        return await self.storage.with_transaction(_update)
