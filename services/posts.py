"""Posts, the feed, likes and bookmarks."""

from __future__ import annotations

import logging
from typing import Any, cast

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from db import Storage, StorageError
from models import Bookmark, Follow, Like, Post, utcnow
from services.edges import edge_exists, toggle_edge
from services.errors import ValidationError
from services.views import (
    PostView,
    build_post_view_query,
    fetch_post_views,
    newest_posts_first,
)

logger = logging.getLogger(__name__)

MAX_POST_LENGTH = 500
FEED_LIMIT = 50
BOOKMARKS_LIMIT = 50


def _eq(column: Any, value: Any) -> ColumnElement[bool]:
    return cast(ColumnElement[bool], column == value)


def _desc(column: Any) -> Any:
    return cast(Any, column).desc()


def normalize_content(content: str | None) -> str:
    normalized = (content or "").strip()
    if not normalized:
        raise ValidationError("Post content cannot be empty")
    if len(normalized) > MAX_POST_LENGTH:
        raise ValidationError(f"Post content cannot exceed {MAX_POST_LENGTH} characters")
    return normalized


class PostService:
    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    async def create_post(self, user_id: int, content: str | None) -> PostView | None:
        normalized = normalize_content(content)
        post = Post(user_id=user_id, content=normalized)
        async with self.storage.transaction() as session:
            session.add(post)
            await session.flush()
            post_id = post.id
        logger.info("Post created", extra={"post_id": post_id, "user_id": user_id})
        return await self.get_post_by_id(cast(int, post_id), user_id)

    async def get_post_by_id(self, post_id: int, viewer_id: int | None) -> PostView | None:
        query = build_post_view_query(viewer_id).where(_eq(Post.id, post_id)).limit(1)
        async with self.storage.session() as session:
            posts = await fetch_post_views(session, query)
        return posts[0] if posts else None

    async def get_feed(self, viewer_id: int) -> list[PostView]:
        """The viewer's own posts plus posts by everyone they follow, newest first."""
        followed_ids = select(cast(Any, Follow.followee_id)).where(
            _eq(Follow.follower_id, viewer_id)
        )
        query = newest_posts_first(
            build_post_view_query(viewer_id).where(
                or_(
                    _eq(Post.user_id, viewer_id),
                    cast(Any, Post.user_id).in_(followed_ids),
                )
            )
        ).limit(FEED_LIMIT)
        async with self.storage.session() as session:
            return await fetch_post_views(session, query)

    async def get_user_posts(self, target_user_id: int, viewer_id: int | None) -> list[PostView]:
        query = newest_posts_first(
            build_post_view_query(viewer_id).where(_eq(Post.user_id, target_user_id))
        ).limit(FEED_LIMIT)
        async with self.storage.session() as session:
            return await fetch_post_views(session, query)

    async def get_bookmarked_posts(self, user_id: int) -> list[PostView]:
        query = (
            build_post_view_query(user_id)
            .join(Bookmark, _eq(Bookmark.post_id, Post.id))
            .where(_eq(Bookmark.user_id, user_id))
            .order_by(_desc(Bookmark.created_at), _desc(Post.id))
            .limit(BOOKMARKS_LIMIT)
        )
        async with self.storage.session() as session:
            return await fetch_post_views(session, query)

    async def toggle_like(self, user_id: int, post_id: int) -> bool:
        """Flip the like; False means nothing changed (missing post or storage failure)."""
        try:
            async with self.storage.transaction() as session:
                liked = await toggle_edge(session, Like, user_id=user_id, post_id=post_id)
        except StorageError:
            logger.warning(
                "Like toggle failed",
                extra={"user_id": user_id, "post_id": post_id},
                exc_info=True,
            )
            return False
        logger.info("Like toggled", extra={"user_id": user_id, "post_id": post_id, "liked": liked})
        return True

    async def toggle_bookmark(self, user_id: int, post_id: int) -> bool:
        try:
            async with self.storage.transaction() as session:
                bookmarked = await toggle_edge(
                    session, Bookmark, user_id=user_id, post_id=post_id
                )
        except StorageError:
            logger.warning(
                "Bookmark toggle failed",
                extra={"user_id": user_id, "post_id": post_id},
                exc_info=True,
            )
            return False
        logger.info(
            "Bookmark toggled",
            extra={"user_id": user_id, "post_id": post_id, "bookmarked": bookmarked},
        )
        return True

    async def is_liked(self, user_id: int, post_id: int) -> bool:
        async with self.storage.session() as session:
            return await edge_exists(session, Like, user_id=user_id, post_id=post_id)

    async def is_bookmarked(self, user_id: int, post_id: int) -> bool:
        async with self.storage.session() as session:
            return await edge_exists(session, Bookmark, user_id=user_id, post_id=post_id)

    async def get_like_count(self, post_id: int) -> int:
        async with self.storage.session() as session:
            result = await session.execute(
                select(func.count()).select_from(Like).where(_eq(Like.post_id, post_id))
            )
            return int(result.scalar_one())

    async def delete_post(self, requester_id: int, post_id: int) -> bool:
        """Delete a post owned by ``requester_id``; likes and bookmarks cascade."""

        async def _delete(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(Post).where(_eq(Post.id, post_id), _eq(Post.user_id, requester_id))
            )
            return bool(cast(Any, result).rowcount)

        deleted = await self.storage.with_transaction(_delete)
        if deleted:
            logger.info("Post deleted", extra={"post_id": post_id, "user_id": requester_id})
        else:
            await self._log_rejected_change("delete", requester_id, post_id)
        return deleted

    async def update_post(self, requester_id: int, post_id: int, content: str | None) -> bool:
        normalized = normalize_content(content)

        async def _update(session: AsyncSession) -> bool:
            result = await session.execute(
                update(Post)
                .where(_eq(Post.id, post_id), _eq(Post.user_id, requester_id))
                .values(content=normalized, updated_at=utcnow())
            )
            return bool(cast(Any, result).rowcount)

        updated = await self.storage.with_transaction(_update)
        if updated:
            logger.info("Post updated", extra={"post_id": post_id, "user_id": requester_id})
        else:
            await self._log_rejected_change("update", requester_id, post_id)
        return updated

    async def _log_rejected_change(self, action: str, requester_id: int, post_id: int) -> None:
        async with self.storage.session() as session:
            result = await session.execute(
                select(cast(Any, Post.user_id)).where(_eq(Post.id, post_id))
            )
            owner_id = result.scalar_one_or_none()
        if owner_id is None:
            logger.info(
                "Post %s rejected: not found",
                action,
                extra={"post_id": post_id, "user_id": requester_id},
            )
        else:
            logger.warning(
                "Post %s rejected: not the author",
                action,
                extra={"post_id": post_id, "user_id": requester_id, "owner_id": owner_id},
            )
