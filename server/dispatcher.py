"""Per-connection command dispatcher and session state."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, cast

from db import StorageError
from services import ServiceRegistry, UserView, ValidationError

from .protocol import (
    GENERIC_ERROR,
    NOT_AUTHENTICATED,
    UNAUTHORIZED,
    ChangePasswordData,
    Command,
    CreatePostData,
    CredentialsData,
    GetUserData,
    HandshakeData,
    PasswordData,
    PingData,
    PostRefData,
    ProtocolError,
    RequestData,
    RequestEnvelope,
    SearchUsersData,
    TargetUserData,
    UpdateAvatarData,
    UpdatePostData,
    UpdateProfileData,
    UserListData,
    UserRefData,
    decode_request,
    failure,
    parse_data,
    success,
)

logger = logging.getLogger(__name__)

Response = dict[str, Any]


class Access(Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    # Authenticated and data.userId must be the session user.
    OWNER = "owner"


class Route(NamedTuple):
    access: Access
    data_model: type[RequestData]
    handler: Callable[[Any], Awaitable[Response]]


@dataclass
class Session:
    user_id: int | None = None
    username: str | None = None
    client_id: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def sign_in(self, user: UserView) -> None:
        self.user_id = user.id
        self.username = user.username

    def sign_out(self) -> None:
        self.user_id = None
        self.username = None


class CommandDispatcher:
    """Turns request lines into responses for one connection, one at a time."""

    def __init__(
        self,
        services: ServiceRegistry,
        *,
        server_version: str = "1.0",
        peer: str = "-",
    ) -> None:
        self.services = services
        self.server_version = server_version
        self.peer = peer
        self.session = Session()
        self.closing = False
        self._routes: dict[Command, Route] = {
            Command.HANDSHAKE: Route(Access.PUBLIC, HandshakeData, self._handshake),
            Command.LOGIN: Route(Access.PUBLIC, CredentialsData, self._login),
            Command.SIGNUP: Route(Access.PUBLIC, CredentialsData, self._signup),
            Command.PING: Route(Access.PUBLIC, PingData, self._ping),
            Command.DISCONNECT: Route(Access.PUBLIC, UserRefData, self._disconnect),
            Command.GET_USER: Route(Access.PUBLIC, GetUserData, self._get_user),
            Command.GET_USER_STATS: Route(Access.PUBLIC, UserRefData, self._get_user_stats),
            Command.SEARCH_USERS: Route(Access.PUBLIC, SearchUsersData, self._search_users),
            Command.GET_FOLLOWERS: Route(Access.PUBLIC, UserListData, self._get_followers),
            Command.GET_FOLLOWING: Route(Access.PUBLIC, UserListData, self._get_following),
            Command.GET_AVATAR_URL: Route(Access.PUBLIC, UserRefData, self._get_avatar_url),
            Command.LOGOUT: Route(Access.AUTHENTICATED, UserRefData, self._logout),
            Command.CREATE_POST: Route(Access.AUTHENTICATED, CreatePostData, self._create_post),
            Command.GET_FEED: Route(Access.AUTHENTICATED, UserRefData, self._get_feed),
            Command.GET_POST: Route(Access.AUTHENTICATED, PostRefData, self._get_post),
            Command.GET_USER_POSTS: Route(
                Access.AUTHENTICATED, TargetUserData, self._get_user_posts
            ),
            Command.UPDATE_POST: Route(Access.AUTHENTICATED, UpdatePostData, self._update_post),
            Command.DELETE_POST: Route(Access.AUTHENTICATED, PostRefData, self._delete_post),
            Command.LIKE_POST: Route(Access.AUTHENTICATED, PostRefData, self._like_post),
            Command.BOOKMARK_POST: Route(Access.AUTHENTICATED, PostRefData, self._bookmark_post),
            Command.GET_BOOKMARKS: Route(Access.AUTHENTICATED, UserRefData, self._get_bookmarks),
            Command.FOLLOW_USER: Route(Access.AUTHENTICATED, TargetUserData, self._follow_user),
            Command.IS_FOLLOWING: Route(Access.AUTHENTICATED, TargetUserData, self._is_following),
            Command.CHANGE_PASSWORD: Route(
                Access.AUTHENTICATED, ChangePasswordData, self._change_password
            ),
            Command.DELETE_ACCOUNT: Route(
                Access.AUTHENTICATED, PasswordData, self._delete_account
            ),
            Command.UPDATE_PROFILE: Route(Access.OWNER, UpdateProfileData, self._update_profile),
            Command.UPDATE_AVATAR: Route(Access.OWNER, UpdateAvatarData, self._update_avatar),
            Command.DELETE_AVATAR: Route(Access.OWNER, UserRefData, self._delete_avatar),
        }

    @property
    def commands(self) -> frozenset[Command]:
        return frozenset(self._routes)

    async def handle_line(self, line: bytes | str) -> Response:
        """Answer one raw request line. Never raises for bad input."""
        try:
            request = decode_request(line)
        except ProtocolError as exc:
            logger.warning("Malformed request", extra={"peer": self.peer, "reason": str(exc)})
            return failure(GENERIC_ERROR)
        return await self.dispatch(request)

    async def dispatch(self, request: RequestEnvelope) -> Response:
        route = self._routes.get(request.command)
        if route is None:
            logger.warning("Unknown command", extra={"peer": self.peer, "command": request.command})
            return failure(GENERIC_ERROR)
        if route.access is not Access.PUBLIC and not self.session.authenticated:
            return failure(NOT_AUTHENTICATED)

        try:
            data = parse_data(route.data_model, request.data)
            if route.access is Access.OWNER and data.user_id != self.session.user_id:
                logger.warning(
                    "Owner-scoped command rejected",
                    extra={
                        "peer": self.peer,
                        "command": request.command.value,
                        "user_id": self.session.user_id,
                        "target_user_id": data.user_id,
                    },
                )
                return failure(UNAUTHORIZED)
            return await route.handler(data)
        except ValidationError as exc:
            return failure(exc.detail)
        except ProtocolError as exc:
            logger.warning(
                "Invalid request data",
                extra={"peer": self.peer, "command": request.command.value, "reason": str(exc)},
            )
            return failure(GENERIC_ERROR)
        except StorageError:
            logger.exception(
                "Storage failure", extra={"peer": self.peer, "command": request.command.value}
            )
            return failure(GENERIC_ERROR)
        except Exception:
            logger.exception(
                "Unhandled error", extra={"peer": self.peer, "command": request.command.value}
            )
            return failure(GENERIC_ERROR)

    def _current_user_id(self) -> int:
        return cast(int, self.session.user_id)

    # Session and connection

    async def _handshake(self, data: HandshakeData) -> Response:
        self.session.client_id = data.client_id
        logger.info(
            "Handshake",
            extra={"peer": self.peer, "client_id": data.client_id, "client_version": data.version},
        )
        return success("Handshake successful", serverVersion=self.server_version)

    async def _login(self, data: CredentialsData) -> Response:
        user = await self.services.auth.authenticate(data.username, data.password)
        if user is None:
            logger.warning("Failed login", extra={"peer": self.peer})
            return failure("Invalid credentials")
        self.session.sign_in(user)
        logger.info("User logged in", extra={"peer": self.peer, "user_id": user.id})
        return success("Login successful", user=user.to_wire())

    async def _signup(self, data: CredentialsData) -> Response:
        user = await self.services.auth.create_user(data.username, data.password)
        if user is None:
            return failure("Username already exists")
        self.session.sign_in(user)
        logger.info("User signed up", extra={"peer": self.peer, "user_id": user.id})
        return success("Signup successful", user=user.to_wire())

    async def _logout(self, _data: UserRefData) -> Response:
        logger.info("User logged out", extra={"peer": self.peer, "user_id": self.session.user_id})
        self.session.sign_out()
        return success("Logout successful")

    async def _ping(self, _data: PingData) -> Response:
        return success("pong", timestamp=int(time.time() * 1000))

    async def _disconnect(self, _data: UserRefData) -> Response:
        self.closing = True
        return success("Disconnect acknowledged")

    # Posts

    async def _create_post(self, data: CreatePostData) -> Response:
        post = await self.services.posts.create_post(self._current_user_id(), data.content)
        if post is None:
            return failure("Failed to create post")
        return success("Post created", post=post.to_wire())

    async def _get_feed(self, _data: UserRefData) -> Response:
        posts = await self.services.posts.get_feed(self._current_user_id())
        return success(posts=[post.to_wire() for post in posts])

    async def _get_post(self, data: PostRefData) -> Response:
        post = await self.services.posts.get_post_by_id(data.post_id, self._current_user_id())
        if post is None:
            return failure(f"Post {data.post_id} not found")
        return success(post=post.to_wire())

    async def _get_user_posts(self, data: TargetUserData) -> Response:
        posts = await self.services.posts.get_user_posts(
            data.target_user_id, self._current_user_id()
        )
        return success(posts=[post.to_wire() for post in posts])

    async def _update_post(self, data: UpdatePostData) -> Response:
        user_id = self._current_user_id()
        if not await self.services.posts.update_post(user_id, data.post_id, data.content):
            return failure("Failed to update post")
        post = await self.services.posts.get_post_by_id(data.post_id, user_id)
        if post is None:
            return failure(f"Post {data.post_id} not found")
        return success("Post updated", post=post.to_wire())

    async def _delete_post(self, data: PostRefData) -> Response:
        if not await self.services.posts.delete_post(self._current_user_id(), data.post_id):
            return failure("Failed to delete post")
        return success("Post deleted")

    async def _like_post(self, data: PostRefData) -> Response:
        toggled = await self.services.posts.toggle_like(self._current_user_id(), data.post_id)
        like_count = await self.services.posts.get_like_count(data.post_id)
        if not toggled:
            return failure("Failed to toggle like", likeCount=like_count)
        return success("Like toggled", likeCount=like_count)

    async def _bookmark_post(self, data: PostRefData) -> Response:
        user_id = self._current_user_id()
        if not await self.services.posts.toggle_bookmark(user_id, data.post_id):
            return failure("Failed to toggle bookmark")
        bookmarked = await self.services.posts.is_bookmarked(user_id, data.post_id)
        return success("Bookmark toggled", bookmarked=bookmarked)

    async def _get_bookmarks(self, _data: UserRefData) -> Response:
        posts = await self.services.posts.get_bookmarked_posts(self._current_user_id())
        return success(posts=[post.to_wire() for post in posts])

    # Users

    async def _get_user(self, data: GetUserData) -> Response:
        if data.user_id is not None:
            user = await self.services.users.get_user_by_id(data.user_id)
        else:
            user = await self.services.users.get_user_by_username(data.username)
        if user is None:
            return failure("User not found")
        return success(user=user.to_wire())

    async def _get_user_stats(self, data: UserRefData) -> Response:
        stats = None
        if data.user_id is not None:
            stats = await self.services.users.get_user_stats(data.user_id)
        if stats is None:
            return failure("User not found")
        return success(
            postCount=stats.post_count,
            followersCount=stats.followers_count,
            followingCount=stats.following_count,
        )

    async def _update_profile(self, data: UpdateProfileData) -> Response:
        updated = await self.services.users.update_profile(
            self._current_user_id(),
            full_name=data.full_name,
            bio=data.bio,
            avatar_url=data.avatar_url,
        )
        if not updated:
            return failure("Failed to update profile")
        return success("Profile updated")

    async def _search_users(self, data: SearchUsersData) -> Response:
        users = await self.services.users.search_users(data.query, data.limit)
        return success(users=[user.to_wire() for user in users])

    async def _follow_user(self, data: TargetUserData) -> Response:
        user_id = self._current_user_id()
        if data.target_user_id == user_id:
            return failure("Cannot follow yourself")
        if not await self.services.users.toggle_follow(user_id, data.target_user_id):
            return failure("Failed to toggle follow")
        following = await self.services.users.is_following(user_id, data.target_user_id)
        return success("Follow toggled", following=following)

    async def _is_following(self, data: TargetUserData) -> Response:
        following = await self.services.users.is_following(
            self._current_user_id(), data.target_user_id
        )
        return success(following=following)

    async def _get_followers(self, data: UserListData) -> Response:
        users = await self.services.users.get_followers(data.user_id, data.limit)
        return success(users=[user.to_wire() for user in users])

    async def _get_following(self, data: UserListData) -> Response:
        users = await self.services.users.get_following(data.user_id, data.limit)
        return success(users=[user.to_wire() for user in users])

    # Avatars

    async def _get_avatar_url(self, data: UserRefData) -> Response:
        avatar_url = None
        if data.user_id is not None:
            avatar_url = await self.services.users.get_avatar_url(data.user_id)
        return success(avatarUrl=avatar_url)

    async def _update_avatar(self, data: UpdateAvatarData) -> Response:
        avatar_url = await self.services.users.update_avatar(
            self._current_user_id(), data.avatar_data, data.content_type
        )
        if avatar_url is None:
            return failure("Failed to update avatar")
        return success("Avatar updated", avatarUrl=avatar_url)

    async def _delete_avatar(self, _data: UserRefData) -> Response:
        if not await self.services.users.delete_avatar(self._current_user_id()):
            return failure("Failed to delete avatar")
        return success("Avatar deleted")

    # Account

    async def _change_password(self, data: ChangePasswordData) -> Response:
        changed = await self.services.auth.change_password(
            self._current_user_id(), data.old_password, data.new_password
        )
        if not changed:
            return failure("Failed to change password")
        return success("Password changed")

    async def _delete_account(self, data: PasswordData) -> Response:
        user_id = self._current_user_id()
        if not await self.services.auth.delete_account(user_id, data.password):
            return failure("Failed to delete account")
        self.session.sign_out()
        return success("Account deleted")
