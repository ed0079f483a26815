"""Async persistence for user subscription columns and the payment ledger."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from realtorpro.models.collection import Collection
from realtorpro.models.enums import SubscriptionPlan, SubscriptionStatus
from realtorpro.models.payment import Payment
from realtorpro.models.user import User
from realtorpro.services.billing.errors import BillingStorageError, DuplicatePaymentError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Activation:
    """User columns written when a payment succeeds."""

    user_id: str
    plan: SubscriptionPlan
    start_date: datetime
    end_date: datetime
    payment_id: str


@dataclass(frozen=True)
class TrialSnapshot:
    user_id: str
    trial_start_time: datetime | None
    trial_duration_minutes: int | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionRepository:
    """Single-row reads and writes; every failure surfaces as BillingStorageError."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_user(self, user_id: str) -> User | None:
        try:
            result = await self._session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise BillingStorageError(f"Failed to load user {user_id}") from exc

    async def get_collection_owner(self, collection_id: str) -> str | None:
        try:
            result = await self._session.execute(
                select(Collection.user_id).where(Collection.id == collection_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise BillingStorageError(f"Failed to load collection {collection_id}") from exc

    async def collection_belongs_to(self, collection_id: str, user_id: str) -> bool:
        owner = await self.get_collection_owner(collection_id)
        return owner is not None and owner == user_id

    async def expire_trial(self, user_id: str) -> bool:
        """Flip ``trial`` to ``expired``; returns False when another writer got there first."""
        stmt = (
            update(User)
            .where(User.id == user_id)
            .where(User.subscription_status == SubscriptionStatus.TRIAL.value)
            .values(subscription_status=SubscriptionStatus.EXPIRED.value, updated_at=_utcnow())
        )
        rowcount = await self._execute_write(stmt, action="expire_trial")
        return rowcount > 0

    async def find_trials(self) -> list[TrialSnapshot]:
        stmt = select(User.id, User.trial_start_time, User.trial_duration_minutes).where(
            User.subscription_status == SubscriptionStatus.TRIAL.value
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise BillingStorageError("Failed to list trial users") from exc
        return [
            TrialSnapshot(
                user_id=row[0],
                trial_start_time=row[1],
                trial_duration_minutes=row[2],
            )
            for row in result.all()
        ]

    async def expire_trials(self, user_ids: list[str]) -> int:
        if not user_ids:
            return 0
        stmt = (
            update(User)
            .where(User.id.in_(user_ids))
            .where(User.subscription_status == SubscriptionStatus.TRIAL.value)
            .values(subscription_status=SubscriptionStatus.EXPIRED.value, updated_at=_utcnow())
        )
        return await self._execute_write(stmt, action="expire_trials")

    async def cancel_subscription(self, user_id: str) -> bool:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(subscription_status=SubscriptionStatus.CANCELLED.value, updated_at=_utcnow())
        )
        rowcount = await self._execute_write(stmt, action="cancel_subscription")
        return rowcount > 0

    async def payment_exists(self, payment_id: str) -> bool:
        try:
            result = await self._session.execute(
                select(Payment.id).where(Payment.payment_id == payment_id).limit(1)
            )
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as exc:
            raise BillingStorageError(f"Failed to look up payment {payment_id}") from exc

    async def record_succeeded_payment(self, payment: Payment, activation: Activation) -> bool:
        """Insert the ledger row and activate the user in one transaction.

        Returns whether the user row existed. Raises DuplicatePaymentError when
        the payment id is already in the ledger.
        """
        stmt = (
            update(User)
            .where(User.id == activation.user_id)
            .values(
                subscription_status=SubscriptionStatus.ACTIVE.value,
                subscription_plan=activation.plan.value,
                subscription_start_date=activation.start_date,
                subscription_end_date=activation.end_date,
                last_payment_id=activation.payment_id,
                updated_at=_utcnow(),
            )
        )
        try:
            self._session.add(payment)
            result = await self._session.execute(stmt)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicatePaymentError(payment.payment_id) from exc
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "billing.storage.activation_failed",
                extra={"payment_id": payment.payment_id, "user_id": activation.user_id},
            )
            raise BillingStorageError(
                f"Failed to record payment {payment.payment_id}", code="ACTIVATION_FAILED"
            ) from exc
        return (result.rowcount or 0) > 0

    async def record_payment(self, payment: Payment) -> None:
        try:
            self._session.add(payment)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicatePaymentError(payment.payment_id) from exc
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("billing.storage.ledger_failed", extra={"payment_id": payment.payment_id})
            raise BillingStorageError(
                f"Failed to record payment {payment.payment_id}", code="LEDGER_FAILED"
            ) from exc

    async def _execute_write(self, stmt, *, action: str) -> int:
        try:
            result = await self._session.execute(stmt)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("billing.storage.write_failed", extra={"action": action})
            raise BillingStorageError(f"Storage write failed: {action}") from exc
        return result.rowcount or 0
