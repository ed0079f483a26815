"""SQLModel mapping for agent accounts and their subscription columns."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel

from realtorpro.config import settings
from realtorpro.models.enums import SubscriptionStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """Agent record; subscription state is owned by the billing services."""

    __tablename__ = "users"
    __table_args__ = (
        sa.Index("ix_users_email", "email"),
        sa.Index("ix_users_subscription_status", "subscription_status"),
        sa.CheckConstraint(
            "subscription_status IN ('trial', 'active', 'expired', 'cancelled')",
            name="ck_users_subscription_status",
        ),
    )

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    email: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    name: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    trial_start_time: datetime | None = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    trial_duration_minutes: int | None = Field(
        default_factory=lambda: settings.default_trial_duration_minutes,
        sa_column=Column(Integer, nullable=True),
    )
    subscription_status: str = Field(
        default=SubscriptionStatus.TRIAL.value,
        sa_column=Column(
            String(length=32),
            nullable=False,
            server_default=SubscriptionStatus.TRIAL.value,
        ),
    )
    subscription_plan: str | None = Field(
        default=None, sa_column=Column(String(length=32), nullable=True)
    )
    subscription_start_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_end_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_payment_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )
