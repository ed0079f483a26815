"""Apply verified payment gateway events to user records and the ledger."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from dateutil.relativedelta import relativedelta

from realtorpro.core.cache import Cache
from realtorpro.models.enums import (
    PaymentStatus,
    SubscriptionPlan,
    WebhookEventType,
)
from realtorpro.models.payment import Payment
from realtorpro.observability.metrics import metrics
from realtorpro.services.billing.errors import DuplicatePaymentError
from realtorpro.services.billing.events import PaymentObject, WebhookEvent
from realtorpro.services.billing.repository import Activation, SubscriptionRepository
from realtorpro.services.billing.status import StatusResolution

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "yookassa"
UNKNOWN = "unknown"

_PLAN_PERIODS: dict[SubscriptionPlan, relativedelta] = {
    SubscriptionPlan.MONTHLY: relativedelta(months=1),
    SubscriptionPlan.YEARLY: relativedelta(years=1),
}


class ProcessingOutcome(str, Enum):
    ACTIVATED = "activated"
    RECORDED = "recorded"
    LOGGED = "logged"
    IGNORED = "ignored"
    INVALID = "invalid"
    DUPLICATE = "duplicate"


def status_cache_key(user_id: str) -> str:
    return f"subscription-status:{user_id}"


def subscription_end_date(plan: SubscriptionPlan, start: datetime) -> datetime:
    """Calendar arithmetic; month-end days clamp (Jan 31 + 1 month = Feb 28/29)."""
    return start + _PLAN_PERIODS[plan]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentEventProcessor:
    """Dispatch one verified webhook event to its handler."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        *,
        cache: Cache[StatusResolution] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._cache = cache
        self._clock = clock

    async def process(self, event: WebhookEvent) -> ProcessingOutcome:
        try:
            event_type = WebhookEventType(event.event)
        except ValueError:
            logger.info(
                "billing.webhook.unhandled_event",
                extra={"event_type": event.event, "payment_id": event.object.id},
            )
            outcome = ProcessingOutcome.IGNORED
        else:
            handlers = {
                WebhookEventType.PAYMENT_SUCCEEDED: self._handle_succeeded,
                WebhookEventType.PAYMENT_WAITING_FOR_CAPTURE: self._handle_waiting_for_capture,
                WebhookEventType.PAYMENT_CANCELED: self._handle_canceled,
            }
            outcome = await handlers[event_type](event.object)
        metrics.increment(
            "billing.webhook.processed",
            tags={"event_type": event.event, "outcome": outcome.value},
        )
        return outcome

    async def _handle_succeeded(self, payment: PaymentObject) -> ProcessingOutcome:
        user_id = payment.metadata_value("userId")
        plan_value = payment.metadata_value("planType")
        if not user_id or not plan_value:
            logger.error(
                "billing.payment.metadata_missing",
                extra={"payment_id": payment.id, "has_user": bool(user_id), "has_plan": bool(plan_value)},
            )
            return ProcessingOutcome.INVALID
        plan = SubscriptionPlan.parse(plan_value)
        if plan is None:
            logger.error(
                "billing.payment.invalid_plan",
                extra={"payment_id": payment.id, "plan_type": plan_value},
            )
            return ProcessingOutcome.INVALID

        if await self._repository.payment_exists(payment.id):
            return self._duplicate(payment, user_id)

        now = self._clock()
        activation = Activation(
            user_id=user_id,
            plan=plan,
            start_date=now,
            end_date=subscription_end_date(plan, now),
            payment_id=payment.id,
        )
        ledger_row = self._ledger_row(
            payment,
            user_id=user_id,
            plan_type=plan.value,
            status=PaymentStatus.SUCCEEDED,
            now=now,
            details={"ip_address": payment.ip},
        )
        try:
            user_found = await self._repository.record_succeeded_payment(ledger_row, activation)
        except DuplicatePaymentError:
            return self._duplicate(payment, user_id)
        self._invalidate(user_id)

        if not user_found:
            logger.warning(
                "billing.payment.user_missing",
                extra={"payment_id": payment.id, "user_id": user_id},
            )
        logger.info(
            "billing.payment.activated",
            extra={
                "payment_id": payment.id,
                "user_id": user_id,
                "plan_type": plan.value,
                "subscription_end_date": activation.end_date.isoformat(),
            },
        )
        return ProcessingOutcome.ACTIVATED

    async def _handle_waiting_for_capture(self, payment: PaymentObject) -> ProcessingOutcome:
        # capture=true is sent on creation, so nothing is captured here
        logger.info("billing.payment.waiting_for_capture", extra={"payment_id": payment.id})
        return ProcessingOutcome.LOGGED

    async def _handle_canceled(self, payment: PaymentObject) -> ProcessingOutcome:
        user_id = payment.metadata_value("userId")
        if not user_id:
            logger.error("billing.payment.metadata_missing", extra={"payment_id": payment.id, "has_user": False})
            return ProcessingOutcome.INVALID

        if await self._repository.payment_exists(payment.id):
            return self._duplicate(payment, user_id)

        reason = UNKNOWN
        if payment.cancellation_details and payment.cancellation_details.reason:
            reason = payment.cancellation_details.reason
        ledger_row = self._ledger_row(
            payment,
            user_id=user_id,
            plan_type=payment.metadata_value("planType") or UNKNOWN,
            status=PaymentStatus.CANCELED,
            now=self._clock(),
            details={"cancel_reason": reason},
        )
        try:
            await self._repository.record_payment(ledger_row)
        except DuplicatePaymentError:
            return self._duplicate(payment, user_id)
        logger.info(
            "billing.payment.canceled_recorded",
            extra={"payment_id": payment.id, "user_id": user_id, "cancel_reason": reason},
        )
        return ProcessingOutcome.RECORDED

    def _ledger_row(
        self,
        payment: PaymentObject,
        *,
        user_id: str,
        plan_type: str,
        status: PaymentStatus,
        now: datetime,
        details: dict[str, Any],
    ) -> Payment:
        return Payment(
            payment_id=payment.id,
            user_id=user_id,
            amount=payment.amount.value if payment.amount else None,
            currency=payment.amount.currency if payment.amount else None,
            plan_type=plan_type,
            payment_date=payment.created_at or now,
            payment_method=PAYMENT_METHOD,
            status=status.value,
            details={
                "raw_payment": payment.model_dump(mode="json"),
                "timestamp": now.isoformat(),
                **details,
            },
        )

    def _duplicate(self, payment: PaymentObject, user_id: str) -> ProcessingOutcome:
        logger.info(
            "billing.payment.duplicate",
            extra={"payment_id": payment.id, "user_id": user_id},
        )
        return ProcessingOutcome.DUPLICATE

    def _invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(status_cache_key(user_id))
