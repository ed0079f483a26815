"""Webhook payload models for YooKassa payment notifications."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from realtorpro.services.billing.errors import InvalidWebhookPayloadError


class PaymentAmount(BaseModel):
    value: Decimal
    currency: str = "RUB"


class CancellationDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    party: str | None = None
    reason: str | None = None


class PaymentObject(BaseModel):
    """The ``object`` member of a notification; unknown gateway fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    status: str | None = None
    amount: PaymentAmount | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    cancellation_details: CancellationDetails | None = None
    ip: str | None = None

    def metadata_value(self, key: str) -> str | None:
        value = self.metadata.get(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str | None = None
    event: str = Field(min_length=1)
    object: PaymentObject

    @property
    def payment(self) -> PaymentObject:
        return self.object


def parse_webhook_event(payload: Any) -> WebhookEvent:
    """Validate a decoded JSON body; raises InvalidWebhookPayloadError."""
    if not isinstance(payload, dict):
        raise InvalidWebhookPayloadError("Webhook body must be a JSON object")
    try:
        return WebhookEvent.model_validate(payload)
    except ValidationError as exc:
        raise InvalidWebhookPayloadError(
            f"Webhook body does not match the notification schema: {exc.error_count()} error(s)"
        ) from exc
