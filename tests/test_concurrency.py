"""Concurrent toggles must serialize: no duplicate edges, no surfaced conflicts."""

import asyncio

import pytest
from sqlalchemy import func, select

from models import Bookmark, Follow, Like
from services import ServiceRegistry

from conftest import LineClient

ROUNDS = 12


async def _edge_count(services: ServiceRegistry, model, **keys) -> int:
    conditions = [getattr(model, name) == value for name, value in keys.items()]
    async with services.storage.session() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*conditions))
        return int(result.scalar_one())


@pytest.mark.asyncio
async def test_concurrent_like_toggles_serialize(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    post = await services.posts.create_post(alice.id, "race me")

    results = await asyncio.gather(
        *(services.posts.toggle_like(alice.id, post.id) for _ in range(ROUNDS))
    )

    assert all(results)
    count = await _edge_count(services, Like, user_id=alice.id, post_id=post.id)
    assert count == ROUNDS % 2


@pytest.mark.asyncio
async def test_concurrent_bookmark_toggles_never_duplicate(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    post = await services.posts.create_post(alice.id, "race me")

    results = await asyncio.gather(
        *(services.posts.toggle_bookmark(alice.id, post.id) for _ in range(ROUNDS + 1))
    )

    assert all(results)
    assert await _edge_count(services, Bookmark, user_id=alice.id, post_id=post.id) == 1


@pytest.mark.asyncio
async def test_concurrent_follow_toggles_never_duplicate(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")

    results = await asyncio.gather(
        *(services.users.toggle_follow(alice.id, bob.id) for _ in range(ROUNDS))
    )

    assert all(results)
    count = await _edge_count(services, Follow, follower_id=alice.id, followee_id=bob.id)
    assert count in {0, 1}
    assert count == ROUNDS % 2


@pytest.mark.asyncio
async def test_concurrent_likes_over_many_connections(connect, services: ServiceRegistry):
    author = await connect()
    signup = await author.request("SIGNUP", username="alice", password="pw12345")
    alice_id = signup["user"]["id"]
    post = (await author.request("CREATE_POST", userId=alice_id, content="popular"))["post"]

    clients: list[LineClient] = []
    for _ in range(ROUNDS):
        client = await connect()
        login = await client.request("LOGIN", username="alice", password="pw12345")
        assert login["success"] is True
        clients.append(client)

    responses = await asyncio.gather(
        *(client.request("LIKE_POST", postId=post["id"], userId=alice_id) for client in clients)
    )

    assert all(response["success"] for response in responses)
    assert all(response.get("message") != "Internal server error" for response in responses)
    assert await _edge_count(services, Like, user_id=alice_id, post_id=post["id"]) == ROUNDS % 2


@pytest.mark.asyncio
async def test_toggles_across_users_do_not_interfere(services: ServiceRegistry, make_user):
    author = await make_user("author")
    post = await services.posts.create_post(author.id, "shared")
    fans = [await make_user(f"fan_{index}") for index in range(6)]

    await asyncio.gather(*(services.posts.toggle_like(fan.id, post.id) for fan in fans))

    assert await services.posts.get_like_count(post.id) == len(fans)
