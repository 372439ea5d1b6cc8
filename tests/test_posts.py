"""Tests for posts, the feed, likes and bookmarks."""

import pytest

from services import ServiceRegistry, ValidationError
from services.posts import FEED_LIMIT, MAX_POST_LENGTH


@pytest.mark.asyncio
async def test_create_post_returns_full_view(services: ServiceRegistry, make_user):
    alice = await make_user("alice")

    post = await services.posts.create_post(alice.id, "  hello world  ")

    assert post is not None
    assert post.content == "hello world"
    assert post.user_id == alice.id
    assert post.username == "alice"
    assert post.like_count == 0
    assert post.liked is False
    assert post.bookmarked is False
    assert post.image_url is None
    assert post.created_at.tzinfo is not None
    assert set(post.to_wire()) == {
        "id",
        "userId",
        "username",
        "content",
        "imageUrl",
        "likeCount",
        "liked",
        "bookmarked",
        "createdAt",
        "updatedAt",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("", "Post content cannot be empty"),
        ("   \n\t ", "Post content cannot be empty"),
        (None, "Post content cannot be empty"),
        ("x" * (MAX_POST_LENGTH + 1), f"Post content cannot exceed {MAX_POST_LENGTH} characters"),
    ],
)
async def test_create_post_validates_content(services: ServiceRegistry, make_user, content, message):
    alice = await make_user("alice")
    with pytest.raises(ValidationError) as exc_info:
        await services.posts.create_post(alice.id, content)
    assert exc_info.value.detail == message


@pytest.mark.asyncio
async def test_content_limit_applies_after_trim(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    post = await services.posts.create_post(alice.id, "  " + "x" * MAX_POST_LENGTH + "  ")
    assert len(post.content) == MAX_POST_LENGTH


@pytest.mark.asyncio
async def test_feed_contains_own_and_followed_posts_only(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    own = await services.posts.create_post(alice.id, "mine")
    followed = await services.posts.create_post(bob.id, "from bob")
    await services.posts.create_post(carol.id, "from carol")

    assert await services.users.toggle_follow(alice.id, bob.id) is True

    feed = await services.posts.get_feed(alice.id)
    assert [post.id for post in feed] == [followed.id, own.id]
    assert {post.username for post in feed} == {"alice", "bob"}


@pytest.mark.asyncio
async def test_feed_is_newest_first_and_truncated(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    created = [
        await services.posts.create_post(alice.id, f"post {index}")
        for index in range(FEED_LIMIT + 5)
    ]

    feed = await services.posts.get_feed(alice.id)

    assert len(feed) == FEED_LIMIT
    assert [post.id for post in feed] == [post.id for post in reversed(created)][:FEED_LIMIT]
    timestamps = [post.created_at for post in feed]
    assert timestamps == sorted(timestamps, reverse=True)


@pytest.mark.asyncio
async def test_feed_reports_viewer_specific_flags(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    post = await services.posts.create_post(alice.id, "hello")
    await services.users.toggle_follow(bob.id, alice.id)

    await services.posts.toggle_like(bob.id, post.id)
    await services.posts.toggle_bookmark(bob.id, post.id)

    [bob_view] = await services.posts.get_feed(bob.id)
    assert bob_view.liked is True
    assert bob_view.bookmarked is True
    assert bob_view.like_count == 1

    [alice_view] = await services.posts.get_feed(alice.id)
    assert alice_view.liked is False
    assert alice_view.bookmarked is False
    assert alice_view.like_count == 1


@pytest.mark.asyncio
async def test_like_toggle_double_tap_restores_state(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    post = await services.posts.create_post(alice.id, "hello")

    assert await services.posts.toggle_like(alice.id, post.id) is True
    assert await services.posts.get_like_count(post.id) == 1
    assert await services.posts.is_liked(alice.id, post.id) is True

    assert await services.posts.toggle_like(alice.id, post.id) is True
    assert await services.posts.get_like_count(post.id) == 0
    assert await services.posts.is_liked(alice.id, post.id) is False


@pytest.mark.asyncio
async def test_like_on_missing_post_fails(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    assert await services.posts.toggle_like(alice.id, 4242) is False
    assert await services.posts.get_like_count(4242) == 0


@pytest.mark.asyncio
async def test_bookmark_toggle_and_listing(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    first = await services.posts.create_post(bob.id, "first")
    second = await services.posts.create_post(bob.id, "second")

    await services.posts.toggle_bookmark(alice.id, second.id)
    await services.posts.toggle_bookmark(alice.id, first.id)

    bookmarks = await services.posts.get_bookmarked_posts(alice.id)
    assert [post.id for post in bookmarks] == [first.id, second.id]
    assert all(post.bookmarked for post in bookmarks)

    assert await services.posts.toggle_bookmark(alice.id, first.id) is True
    assert await services.posts.is_bookmarked(alice.id, first.id) is False
    assert [post.id for post in await services.posts.get_bookmarked_posts(alice.id)] == [
        second.id
    ]
    assert await services.posts.toggle_bookmark(alice.id, 9999) is False


@pytest.mark.asyncio
async def test_delete_post_enforces_ownership(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    post = await services.posts.create_post(alice.id, "hello")
    await services.posts.toggle_like(bob.id, post.id)
    await services.posts.toggle_bookmark(bob.id, post.id)

    assert await services.posts.delete_post(bob.id, post.id) is False
    assert await services.posts.get_post_by_id(post.id, alice.id) is not None

    assert await services.posts.delete_post(alice.id, post.id) is True
    assert await services.posts.get_post_by_id(post.id, alice.id) is None
    assert await services.posts.get_like_count(post.id) == 0
    assert await services.posts.is_bookmarked(bob.id, post.id) is False
    assert await services.posts.get_feed(alice.id) == []
    assert await services.posts.delete_post(alice.id, post.id) is False


@pytest.mark.asyncio
async def test_update_post(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    post = await services.posts.create_post(alice.id, "draft")

    assert await services.posts.update_post(bob.id, post.id, "hijacked") is False
    assert await services.posts.update_post(alice.id, post.id, "  final  ") is True

    updated = await services.posts.get_post_by_id(post.id, alice.id)
    assert updated.content == "final"
    assert updated.updated_at >= post.updated_at

    with pytest.raises(ValidationError):
        await services.posts.update_post(alice.id, post.id, "   ")
    assert await services.posts.update_post(alice.id, 9999, "nothing") is False


@pytest.mark.asyncio
async def test_get_user_posts_and_single_post(services: ServiceRegistry, make_user):
    alice = await make_user("alice")
    bob = await make_user("bob")
    first = await services.posts.create_post(alice.id, "one")
    second = await services.posts.create_post(alice.id, "two")
    await services.posts.create_post(bob.id, "not alice")
    await services.posts.toggle_like(bob.id, first.id)

    posts = await services.posts.get_user_posts(alice.id, bob.id)
    assert [post.id for post in posts] == [second.id, first.id]
    assert [post.liked for post in posts] == [False, True]

    single = await services.posts.get_post_by_id(first.id, bob.id)
    assert single.liked is True
    assert single.like_count == 1
    assert await services.posts.get_post_by_id(9999, bob.id) is None
