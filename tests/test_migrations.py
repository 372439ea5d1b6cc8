"""The Alembic migrations build the same schema the models describe."""

import asyncio
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from db import Storage
from services import build_services

ROOT_DIR = Path(__file__).resolve().parents[1]


def _alembic_config(database_path: Path) -> Config:
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{database_path}")
    return config


def _inspect(database_path: Path):
    engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        indexes = {
            table: {index["name"] for index in inspector.get_indexes(table)}
            for table in tables
        }
        foreign_keys = {
            table: [fk["options"].get("ondelete") for fk in inspector.get_foreign_keys(table)]
            for table in tables
        }
    finally:
        engine.dispose()
    return tables, indexes, foreign_keys


def test_upgrade_creates_schema_and_downgrade_removes_it(tmp_path):
    database_path = tmp_path / "migrated.db"
    config = _alembic_config(database_path)

    command.upgrade(config, "head")
    tables, indexes, foreign_keys = _inspect(database_path)

    assert {"users", "posts", "likes", "bookmarks", "follows"} <= tables
    assert {"ix_posts_user_id", "ix_posts_created_at"} <= indexes["posts"]
    assert {"ix_likes_user_id", "ix_likes_post_id"} <= indexes["likes"]
    assert {"ix_bookmarks_user_id", "ix_bookmarks_post_id"} <= indexes["bookmarks"]
    assert {"ix_follows_follower_id", "ix_follows_followee_id"} <= indexes["follows"]
    for table in ("posts", "likes", "bookmarks", "follows"):
        assert foreign_keys[table] and set(foreign_keys[table]) == {"CASCADE"}

    command.downgrade(config, "base")
    tables, _, _ = _inspect(database_path)
    assert tables <= {"alembic_version"}


@pytest.mark.asyncio
async def test_services_run_on_a_migrated_database(tmp_path, test_settings):
    database_path = tmp_path / "migrated.db"
    # env.py drives its own event loop.
    await asyncio.to_thread(command.upgrade, _alembic_config(database_path), "head")

    storage = Storage(f"sqlite:///{database_path}")
    try:
        await storage.initialize()
        services = build_services(storage, test_settings)
        alice = await services.auth.create_user("alice", "pw12345")
        post = await services.posts.create_post(alice.id, "migrated")
        assert await services.posts.toggle_like(alice.id, post.id) is True
        assert [item.id for item in await services.posts.get_feed(alice.id)] == [post.id]
    finally:
        await storage.close()
