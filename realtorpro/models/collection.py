"""Read-only mapping for shared property collections."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Collection(SQLModel, table=True):
    """Only ownership is read here; the dashboard owns the rest of the row."""

    __tablename__ = "collections"
    __table_args__ = (sa.Index("ix_collections_user_id", "user_id"),)

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(length=64), nullable=False))
    name: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
