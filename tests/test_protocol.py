"""Tests for request decoding and response encoding."""

import json

import pytest

from server.protocol import (
    Command,
    PostRefData,
    ProtocolError,
    UpdateAvatarData,
    decode_request,
    encode_response,
    failure,
    parse_data,
    success,
)


def test_decode_request():
    request = decode_request(
        b'{"command": "LOGIN", "timestamp": 1700000000000, '
        b'"data": {"username": "alice", "password": "pw12345"}}\n'
    )
    assert request.command is Command.LOGIN
    assert request.timestamp == 1700000000000
    assert request.data == {"username": "alice", "password": "pw12345"}


def test_decode_request_tolerates_missing_parts():
    request = decode_request('{"command": "ping", "data": null, "extra": 1}')
    assert request.command is Command.PING
    assert request.timestamp is None
    assert request.data == {}


@pytest.mark.parametrize(
    "line",
    [
        b"",
        b"\n",
        b"not json\n",
        b"[1, 2, 3]\n",
        b'"LOGIN"\n',
        b'{"data": {}}\n',
        b'{"command": "SELF_DESTRUCT", "data": {}}\n',
        b'{"command": "LOGIN", "data": [1]}\n',
        b"\xff\xfe\n",
        b'{"command": "PING", "timestamp": ' + b"9" * 5000 + b"}\n",
        b"[" * 100_000 + b"\n",
    ],
    ids=[
        "empty",
        "blank",
        "not-json",
        "array",
        "string",
        "no-command",
        "unknown-command",
        "data-not-object",
        "not-utf8",
        "huge-integer",
        "deep-nesting",
    ],
)
def test_decode_request_rejects_malformed_lines(line):
    with pytest.raises(ProtocolError):
        decode_request(line)


def test_parse_data_uses_camel_case_and_lax_numbers():
    data = parse_data(PostRefData, {"postId": "12", "userId": 3.0, "ignored": True})
    assert data.post_id == 12
    assert data.user_id == 3

    avatar = parse_data(
        UpdateAvatarData, {"userId": 1, "avatarData": "AAAA", "contentType": "image/png"}
    )
    assert avatar.avatar_data == "AAAA"
    assert avatar.content_type == "image/png"


@pytest.mark.parametrize("data", [{}, {"postId": "abc"}, {"postId": None}])
def test_parse_data_rejects_invalid_fields(data):
    with pytest.raises(ProtocolError):
        parse_data(PostRefData, data)


def test_encode_response_is_one_compact_line():
    encoded = encode_response(success("Post created", post={"content": "line one\nline two"}))

    assert encoded.endswith(b"\n")
    assert encoded.count(b"\n") == 1
    assert b": " not in encoded
    assert json.loads(encoded) == {
        "success": True,
        "message": "Post created",
        "post": {"content": "line one\nline two"},
    }


def test_encode_response_keeps_unicode():
    encoded = encode_response(success(users=[{"fullName": "Zoë"}]))
    assert "Zoë".encode("utf-8") in encoded


def test_failure_always_carries_a_message():
    assert failure("Not authenticated") == {"success": False, "message": "Not authenticated"}
    assert failure("Failed to toggle like", likeCount=0)["likeCount"] == 0
    assert success() == {"success": True}
