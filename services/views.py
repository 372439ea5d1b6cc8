"""Shared user/post view models and the queries that build them."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, cast

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import Select, exists, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from models import Bookmark, Follow, Like, Post, User, ensure_aware


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _desc(column: Any) -> Any:
    return cast(Any, column).desc()


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class UserView(WireModel):
    id: int
    username: str
    full_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    following_count: int = 0
    followers_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserView":
        return cls.model_validate(dict(row))


class PostView(WireModel):
    id: int
    user_id: int
    username: str
    content: str
    image_url: str | None = None
    like_count: int = 0
    liked: bool = False
    bookmarked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PostView":
        return cls.model_validate(dict(row))


def build_user_view_query() -> Select[Any]:
    """Select the public user columns plus follow counts; never the password hash."""
    following_count = (
        select(func.count())
        .select_from(Follow)
        .where(_eq(Follow.follower_id, User.id))
        .correlate(User)
        .scalar_subquery()
    )
    followers_count = (
        select(func.count())
        .select_from(Follow)
        .where(_eq(Follow.followee_id, User.id))
        .correlate(User)
        .scalar_subquery()
    )
    return select(
        cast(Any, User.id).label("id"),
        cast(Any, User.username).label("username"),
        cast(Any, User.full_name).label("full_name"),
        cast(Any, User.bio).label("bio"),
        cast(Any, User.avatar_url).label("avatar_url"),
        following_count.label("following_count"),
        followers_count.label("followers_count"),
        cast(Any, User.created_at).label("created_at"),
        cast(Any, User.updated_at).label("updated_at"),
    )


def build_post_view_query(viewer_id: int | None) -> Select[Any]:
    """Select posts with author name, like count and the viewer's like/bookmark flags.

    Everything is derived in one statement so the four values come from the
    same snapshot.
    """
    like_count = (
        select(func.count())
        .select_from(Like)
        .where(_eq(Like.post_id, Post.id))
        .correlate(Post)
        .scalar_subquery()
    )
    if viewer_id is None:
        liked: Any = literal(False)
        bookmarked: Any = literal(False)
    else:
        liked = (
            exists()
            .where(_eq(Like.post_id, Post.id), _eq(Like.user_id, viewer_id))
            .correlate(Post)
        )
        bookmarked = (
            exists()
            .where(_eq(Bookmark.post_id, Post.id), _eq(Bookmark.user_id, viewer_id))
            .correlate(Post)
        )

    return select(
        cast(Any, Post.id).label("id"),
        cast(Any, Post.user_id).label("user_id"),
        cast(Any, User.username).label("username"),
        cast(Any, Post.content).label("content"),
        cast(Any, Post.image_url).label("image_url"),
        like_count.label("like_count"),
        liked.label("liked"),
        bookmarked.label("bookmarked"),
        cast(Any, Post.created_at).label("created_at"),
        cast(Any, Post.updated_at).label("updated_at"),
    ).join(User, _eq(User.id, Post.user_id))


def newest_posts_first(query: Select[Any]) -> Select[Any]:
    return query.order_by(_desc(Post.created_at), _desc(Post.id))


async def fetch_user_view(
    session: AsyncSession,
    *,
    user_id: int | None = None,
    username: str | None = None,
) -> UserView | None:
    query = build_user_view_query()
    if user_id is not None:
        query = query.where(_eq(User.id, user_id))
    elif username is not None:
        query = query.where(_eq(User.username, username))
    else:
        raise ValueError("user_id or username is required")
    result = await session.execute(query.limit(1))
    row = result.mappings().first()
    return UserView.from_row(row) if row is not None else None


async def fetch_post_views(
    session: AsyncSession,
    query: Select[Any],
) -> list[PostView]:
    result = await session.execute(query)
    return [PostView.from_row(row) for row in result.mappings().all()]
