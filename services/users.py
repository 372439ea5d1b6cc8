"""Profiles, search, follows and avatars."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, NamedTuple, cast

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from db import Storage, StorageError
from models import Follow, Post, User, utcnow
from services.avatars import AvatarStore
from services.edges import edge_exists, toggle_edge
from services.errors import ValidationError
from services.views import UserView, build_user_view_query, fetch_user_view

logger = logging.getLogger(__name__)

MAX_FULL_NAME_LENGTH = 100
MAX_BIO_LENGTH = 500
DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 50
DEFAULT_FOLLOW_LIST_LIMIT = 100
MAX_AVATAR_BYTES = 5 * 1024 * 1024


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _asc(column: Any) -> Any:
    return cast(Any, column).asc()


def _desc(column: Any) -> Any:
    return cast(Any, column).desc()


def _clamp(value: int | None, default: int, maximum: int) -> int:
    if value is None or value <= 0:
        return default
    return min(value, maximum)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _decode_avatar(data: str) -> bytes:
    payload = data.strip()
    # Accept data URLs as well as bare base64.
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    return base64.b64decode(payload, validate=True)


class UserStats(NamedTuple):
    post_count: int
    followers_count: int
    following_count: int


class UserService:
    def __init__(
        self,
        storage: Storage,
        avatars: AvatarStore,
        *,
        max_avatar_bytes: int = MAX_AVATAR_BYTES,
    ) -> None:
        self.storage = storage
        self.avatars = avatars
        self.max_avatar_bytes = max_avatar_bytes

    async def get_user_by_id(self, user_id: int) -> UserView | None:
        async with self.storage.session() as session:
            return await fetch_user_view(session, user_id=user_id)

    async def get_user_by_username(self, username: str | None) -> UserView | None:
        normalized = (username or "").strip()
        if not normalized:
            return None
        async with self.storage.session() as session:
            return await fetch_user_view(session, username=normalized)

    async def update_profile(
        self,
        user_id: int,
        *,
        full_name: str | None = None,
        bio: str | None = None,
        avatar_url: str | None = None,
    ) -> bool:
        """Apply the fields that were provided; False when the user does not exist."""
        values: dict[str, Any] = {"updated_at": utcnow()}
        if full_name is not None:
            normalized_name = full_name.strip()
            if len(normalized_name) > MAX_FULL_NAME_LENGTH:
                raise ValidationError(
                    f"Full name cannot exceed {MAX_FULL_NAME_LENGTH} characters"
                )
            values["full_name"] = normalized_name or None
        if bio is not None:
            normalized_bio = bio.strip()
            if len(normalized_bio) > MAX_BIO_LENGTH:
                raise ValidationError(f"Bio cannot exceed {MAX_BIO_LENGTH} characters")
            values["bio"] = normalized_bio or None
        if avatar_url is not None:
            values["avatar_url"] = avatar_url.strip() or None

        async def _update(session: AsyncSession) -> bool:
            result = await session.execute(
                update(User).where(_eq(User.id, user_id)).values(**values)
            )
            return bool(cast(Any, result).rowcount)

        updated = await self.storage.with_transaction(_update)
        if updated:
            logger.info(
                "Profile updated",
                extra={"user_id": user_id, "fields": sorted(set(values) - {"updated_at"})},
            )
        return updated

    async def search_users(self, query: str | None, limit: int | None = None) -> list[UserView]:
        """Case-insensitive substring match on username or full name, by username."""
        term = (query or "").strip().lower()
        if not term:
            return []
        pattern = f"%{_escape_like(term)}%"
        statement = (
            build_user_view_query()
            .where(
                or_(
                    cast(Any, func.lower(cast(Any, User.username))).like(pattern, escape="\\"),
                    cast(Any, func.lower(cast(Any, User.full_name))).like(pattern, escape="\\"),
                )
            )
            .order_by(_asc(User.username))
            .limit(_clamp(limit, DEFAULT_SEARCH_LIMIT, MAX_SEARCH_LIMIT))
        )
        async with self.storage.session() as session:
            result = await session.execute(statement)
            return [UserView.from_row(row) for row in result.mappings().all()]

    async def toggle_follow(self, follower_id: int, followee_id: int) -> bool:
        """Flip the follow edge; False for self-follows, missing users or storage failures."""
        if follower_id == followee_id:
            logger.info("Self-follow rejected", extra={"user_id": follower_id})
            return False
        try:
            async with self.storage.transaction() as session:
                following = await toggle_edge(
                    session, Follow, follower_id=follower_id, followee_id=followee_id
                )
        except StorageError:
            logger.warning(
                "Follow toggle failed",
                extra={"follower_id": follower_id, "followee_id": followee_id},
                exc_info=True,
            )
            return False
        logger.info(
            "Follow toggled",
            extra={
                "follower_id": follower_id,
                "followee_id": followee_id,
                "following": following,
            },
        )
        return True

    async def is_following(self, follower_id: int, followee_id: int) -> bool:
        async with self.storage.session() as session:
            return await edge_exists(
                session, Follow, follower_id=follower_id, followee_id=followee_id
            )

    async def get_followers(self, user_id: int, limit: int | None = None) -> list[UserView]:
        statement = (
            build_user_view_query()
            .join(Follow, _eq(Follow.follower_id, User.id))
            .where(_eq(Follow.followee_id, user_id))
            .order_by(_desc(Follow.created_at), _asc(User.id))
            .limit(_clamp(limit, DEFAULT_FOLLOW_LIST_LIMIT, DEFAULT_FOLLOW_LIST_LIMIT))
        )
        return await self._fetch_users(statement)

    async def get_following(self, user_id: int, limit: int | None = None) -> list[UserView]:
        statement = (
            build_user_view_query()
            .join(Follow, _eq(Follow.followee_id, User.id))
            .where(_eq(Follow.follower_id, user_id))
            .order_by(_desc(Follow.created_at), _asc(User.id))
            .limit(_clamp(limit, DEFAULT_FOLLOW_LIST_LIMIT, DEFAULT_FOLLOW_LIST_LIMIT))
        )
        return await self._fetch_users(statement)

    async def get_user_stats(self, user_id: int) -> UserStats | None:
        async with self.storage.session() as session:
            user = await fetch_user_view(session, user_id=user_id)
            if user is None:
                return None
            result = await session.execute(
                select(func.count()).select_from(Post).where(_eq(Post.user_id, user_id))
            )
            post_count = int(result.scalar_one())
        return UserStats(
            post_count=post_count,
            followers_count=user.followers_count,
            following_count=user.following_count,
        )

    async def get_avatar_url(self, user_id: int) -> str | None:
        async with self.storage.session() as session:
            result = await session.execute(
                select(cast(Any, User.avatar_url)).where(_eq(User.id, user_id))
            )
            return result.scalar_one_or_none()

    async def update_avatar(
        self,
        user_id: int,
        image_data: str | None,
        content_type: str | None,
    ) -> str | None:
        """Store a base64-encoded image as the user's avatar and return its URL.

        The file is written first; if the row cannot be updated the file is
        removed again. The previously managed avatar file is removed once the
        new URL is committed.
        """
        if not image_data:
            return None
        try:
            image_bytes = _decode_avatar(image_data)
        except (binascii.Error, ValueError):
            logger.info("Avatar rejected: invalid base64", extra={"user_id": user_id})
            return None
        if not image_bytes:
            logger.info("Avatar rejected: empty image", extra={"user_id": user_id})
            return None
        if len(image_bytes) > self.max_avatar_bytes:
            logger.info(
                "Avatar rejected: too large",
                extra={"user_id": user_id, "size": len(image_bytes)},
            )
            return None

        previous_url = await self.get_avatar_url(user_id)
        filename = self.avatars.build_filename(user_id, content_type)
        try:
            avatar_url = await self.avatars.write(filename, image_bytes)
        except OSError:
            logger.exception("Failed to write avatar file", extra={"user_id": user_id})
            return None

        try:
            updated = await self._set_avatar_url(user_id, avatar_url)
        except StorageError:
            logger.exception("Failed to record avatar", extra={"user_id": user_id})
            updated = False
        if not updated:
            await self.avatars.delete_url(avatar_url, owner_id=user_id)
            return None

        if previous_url and previous_url != avatar_url:
            await self.avatars.delete_url(previous_url, owner_id=user_id)
        logger.info("Avatar updated", extra={"user_id": user_id, "avatar_url": avatar_url})
        return avatar_url

    async def delete_avatar(self, user_id: int) -> bool:
        previous_url = await self.get_avatar_url(user_id)
        if not await self._set_avatar_url(user_id, None):
            return False
        if previous_url:
            await self.avatars.delete_url(previous_url, owner_id=user_id)
        logger.info("Avatar deleted", extra={"user_id": user_id})
        return True

    async def _set_avatar_url(self, user_id: int, avatar_url: str | None) -> bool:
        async def _update(session: AsyncSession) -> bool:
            result = await session.execute(
                update(User)
                .where(_eq(User.id, user_id))
                .values(avatar_url=avatar_url, updated_at=utcnow())
            )
            return bool(cast(Any, result).rowcount)

        return await self.storage.with_transaction(_update)

    async def _fetch_users(self, statement: Any) -> list[UserView]:
        async with self.storage.session() as session:
            result = await session.execute(statement)
            return [UserView.from_row(row) for row in result.mappings().all()]
