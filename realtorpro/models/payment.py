"""SQLModel mapping for the append-only payment ledger."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, BigInteger, Column, DateTime, Numeric, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(SQLModel, table=True):
    """One row per terminal gateway event; never updated or deleted."""

    __tablename__ = "payments"
    __table_args__ = (
        sa.UniqueConstraint("payment_id", name="uq_payments_payment_id"),
        sa.Index("ix_payments_user_id", "user_id"),
    )

    id: int | None = Field(
        default=None,
        sa_column=Column(
            BigInteger().with_variant(sa.Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
    )
    payment_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    # No foreign key: the user id arrives in gateway metadata and is trusted as-is.
    user_id: str = Field(sa_column=Column(String(length=64), nullable=False))
    amount: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(12, 2), nullable=True)
    )
    currency: str | None = Field(default=None, sa_column=Column(String(length=8), nullable=True))
    plan_type: str = Field(sa_column=Column(String(length=32), nullable=False))
    payment_date: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    payment_method: str = Field(
        default="yookassa", sa_column=Column(String(length=32), nullable=False)
    )
    status: str = Field(sa_column=Column(String(length=32), nullable=False))
    details: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
