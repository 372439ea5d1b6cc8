"""Follow relationship model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, func
from sqlmodel import Field, SQLModel

from .timestamps import utcnow


class Follow(SQLModel, table=True):
    """Directed edge: ``follower_id`` follows ``followee_id``."""

    __tablename__ = "follows"
    __table_args__ = (
        CheckConstraint("follower_id != followee_id", name="ck_follows_no_self_follow"),
        Index("ix_follows_follower_id", "follower_id"),
        Index("ix_follows_followee_id", "followee_id"),
    )

    follower_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    followee_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        )
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            default=utcnow,
            server_default=func.now(),
            nullable=False,
        ),
    )
