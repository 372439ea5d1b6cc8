"""SQLModel models package."""

from .bookmark import Bookmark
from .follow import Follow
from .like import Like
from .post import Post
from .timestamps import ensure_aware, utcnow
from .user import User

__all__ = [
    "User",
    "Post",
    "Like",
    "Bookmark",
    "Follow",
    "ensure_aware",
    "utcnow",
]
