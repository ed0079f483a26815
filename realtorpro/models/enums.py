"""Closed sets of lifecycle values shared by every billing component."""

from __future__ import annotations

from enum import Enum


class SubscriptionStatus(str, Enum):
    """Authoritative subscription state stored on the user row."""

    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionStatus | None:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class ResolvedStatus(str, Enum):
    """Resolver output; ``unknown`` means the user row could not be read."""

    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class SubscriptionPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: str | None) -> SubscriptionPlan | None:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


class PaymentStatus(str, Enum):
    """Ledger row status; spelled the way the gateway spells it."""

    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


class WebhookEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_WAITING_FOR_CAPTURE = "payment.waiting_for_capture"
    PAYMENT_CANCELED = "payment.canceled"
