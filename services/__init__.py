"""Business logic services."""

from __future__ import annotations

from dataclasses import dataclass

from core.config import Settings
from db import Storage

from .auth import AuthService
from .avatars import AvatarStore
from .errors import ValidationError
from .posts import PostService
from .users import UserService, UserStats
from .views import PostView, UserView


@dataclass(frozen=True)
class ServiceRegistry:
    """The shared, stateless services every connection dispatches into."""

    storage: Storage
    avatars: AvatarStore
    auth: AuthService
    posts: PostService
    users: UserService


def build_services(storage: Storage, settings: Settings) -> ServiceRegistry:
    avatars = AvatarStore(settings.upload_dir, settings.avatar_url_prefix)
    return ServiceRegistry(
        storage=storage,
        avatars=avatars,
        auth=AuthService(storage, avatars),
        posts=PostService(storage),
        users=UserService(storage, avatars, max_avatar_bytes=settings.max_avatar_bytes),
    )


__all__ = [
    "AuthService",
    "AvatarStore",
    "PostService",
    "PostView",
    "ServiceRegistry",
    "UserService",
    "UserStats",
    "UserView",
    "ValidationError",
    "build_services",
]
