"""Line-delimited JSON wire format: request envelope, per-command data, responses."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

GENERIC_ERROR = "Internal server error"
NOT_AUTHENTICATED = "Not authenticated"
UNAUTHORIZED = "Unauthorized"


class ProtocolError(ValueError):
    """A request line that cannot be turned into a known command."""


class Command(str, Enum):
    HANDSHAKE = "HANDSHAKE"
    LOGIN = "LOGIN"
    SIGNUP = "SIGNUP"
    LOGOUT = "LOGOUT"
    PING = "PING"
    DISCONNECT = "DISCONNECT"
    CREATE_POST = "CREATE_POST"
    GET_FEED = "GET_FEED"
    GET_POST = "GET_POST"
    GET_USER_POSTS = "GET_USER_POSTS"
    UPDATE_POST = "UPDATE_POST"
    DELETE_POST = "DELETE_POST"
    LIKE_POST = "LIKE_POST"
    BOOKMARK_POST = "BOOKMARK_POST"
    GET_BOOKMARKS = "GET_BOOKMARKS"
    GET_USER = "GET_USER"
    GET_USER_STATS = "GET_USER_STATS"
    UPDATE_PROFILE = "UPDATE_PROFILE"
    SEARCH_USERS = "SEARCH_USERS"
    FOLLOW_USER = "FOLLOW_USER"
    IS_FOLLOWING = "IS_FOLLOWING"
    GET_FOLLOWERS = "GET_FOLLOWERS"
    GET_FOLLOWING = "GET_FOLLOWING"
    GET_AVATAR_URL = "GET_AVATAR_URL"
    UPDATE_AVATAR = "UPDATE_AVATAR"
    DELETE_AVATAR = "DELETE_AVATAR"
    CHANGE_PASSWORD = "CHANGE_PASSWORD"
    DELETE_ACCOUNT = "DELETE_ACCOUNT"


class RequestEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    command: Command
    timestamp: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("command", mode="before")
    @classmethod
    def _upper_command(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return {} if value is None else value


class RequestData(BaseModel):
    """camelCase keys on the wire; unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class HandshakeData(RequestData):
    version: str | None = None
    client_id: str | None = None


class CredentialsData(RequestData):
    username: str | None = None
    password: str | None = None


class UserRefData(RequestData):
    user_id: int | None = None


class CreatePostData(RequestData):
    user_id: int | None = None
    content: str | None = None


class PostRefData(RequestData):
    post_id: int
    user_id: int | None = None


class UpdatePostData(RequestData):
    post_id: int
    content: str | None = None


class GetUserData(RequestData):
    user_id: int | None = None
    username: str | None = None


class UpdateProfileData(RequestData):
    user_id: int | None = None
    full_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None


class SearchUsersData(RequestData):
    query: str | None = None
    limit: int | None = None


class TargetUserData(RequestData):
    target_user_id: int
    user_id: int | None = None


class UserListData(RequestData):
    user_id: int
    limit: int | None = None


class UpdateAvatarData(RequestData):
    user_id: int | None = None
    avatar_data: str | None = None
    content_type: str | None = None


class PingData(RequestData):
    timestamp: int | None = None


class ChangePasswordData(RequestData):
    old_password: str | None = None
    new_password: str | None = None


class PasswordData(RequestData):
    password: str | None = None


def decode_request(line: bytes | str) -> RequestEnvelope:
    """Parse one request line (without or with its trailing newline)."""
    try:
        text = line.decode("utf-8") if isinstance(line, bytes) else line
        payload = json.loads(text)
    except (ValueError, RecursionError) as exc:
        # Oversized integer literals raise a plain ValueError; deep nesting recurses.
        raise ProtocolError(f"malformed request: {type(exc).__name__}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("request must be a JSON object")
    try:
        return RequestEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise ProtocolError(f"invalid request envelope: {exc.error_count()} error(s)") from exc


def parse_data(model: type[RequestData], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ProtocolError(f"invalid {model.__name__}: {exc.error_count()} error(s)") from exc


def success(message: str | None = None, **extras: Any) -> dict[str, Any]:
    response: dict[str, Any] = {"success": True}
    if message is not None:
        response["message"] = message
    response.update(extras)
    return response


def failure(message: str, **extras: Any) -> dict[str, Any]:
    response: dict[str, Any] = {"success": False, "message": message}
    response.update(extras)
    return response


def encode_response(response: dict[str, Any]) -> bytes:
    """Serialize one response as compact UTF-8 JSON terminated by a newline."""
    return json.dumps(response, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + b"\n"
