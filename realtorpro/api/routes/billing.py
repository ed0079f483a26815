"""Subscription billing endpoints: webhook intake, status checks, payments and cron expiry."""
# ruff: noqa: UP017

from __future__ import annotations

import hmac
import json
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from realtorpro.api.deps import (
    SessionContext,
    get_payment_gateway,
    get_repository,
    get_subscription_service,
    get_webhook_queue,
    require_session,
)
from realtorpro.clients.yookassa import YooKassaClient
from realtorpro.config import settings
from realtorpro.models.enums import ResolvedStatus, SubscriptionPlan, SubscriptionStatus
from realtorpro.observability.metrics import metrics
from realtorpro.services.billing.errors import (
    InvalidWebhookPayloadError,
    PaymentGatewayError,
    WebhookQueueFullError,
)
from realtorpro.services.billing.events import parse_webhook_event
from realtorpro.services.billing.queue import WebhookQueue
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.service import SubscriptionService
from realtorpro.services.billing.signature import verify_webhook_signature
from realtorpro.services.billing.status import StatusResolution, format_remaining_time

logger = logging.getLogger(__name__)
router = APIRouter()

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

PLAN_LABELS = {
    SubscriptionPlan.MONTHLY: "ежемесячная",
    SubscriptionPlan.YEARLY: "годовая",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookAck(BaseModel):
    success: bool = True


class CheckSubscriptionResponse(CamelModel):
    is_active: bool
    subscription_status: str
    timestamp: str


class SubscriptionStatusResponse(CamelModel):
    is_active: bool
    status: str
    trial_end_time: str | None = None
    remaining_minutes: int | None = None
    remaining_label: str | None = None


class CreatePaymentRequest(CamelModel):
    plan_type: str | None = None


class CreatePaymentResponse(CamelModel):
    success: bool
    confirmation_url: str | None
    payment_id: str


class CancelSubscriptionResponse(CamelModel):
    success: bool
    status: str


class ExpireTrialsResponse(CamelModel):
    success: bool
    updated_count: int
    errors: list[str]
    message: str


class ShareAccessResponse(CamelModel):
    is_active: bool
    status: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _client_cache_seconds(resolution: StatusResolution) -> int:
    if resolution.status is ResolvedStatus.ACTIVE:
        return settings.status_cache_ttl_active
    if resolution.status is ResolvedStatus.TRIAL:
        return settings.status_cache_ttl_trial
    return settings.status_cache_ttl_other


async def _resolve_existing(
    user_id: str, service: SubscriptionService, repository: SubscriptionRepository
) -> StatusResolution:
    """Resolve a user's status; 404 when the user does not exist."""
    resolution = await service.get_status(user_id)
    if resolution.status is ResolvedStatus.UNKNOWN and await repository.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return resolution


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/subscription/webhook", response_model=WebhookAck)
async def subscription_webhook(
    request: Request,
    queue: WebhookQueue = Depends(get_webhook_queue),
):
    """Verify a gateway notification and hand it to the processing queue."""
    body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)
    verification = verify_webhook_signature(body, signature, settings.webhook_secret)
    if not verification.verified:
        metrics.increment("billing.webhook.rejected", tags={"reason": verification.reason})
        metrics.alert(
            "billing.webhook.invalid_signature",
            value=1.0,
            threshold=0.0,
            severity="warning",
            tags={"reason": verification.reason},
        )
        return _error(401, "Invalid signature")

    try:
        event = parse_webhook_event(json.loads(body))
    except (ValueError, InvalidWebhookPayloadError) as exc:
        logger.warning("billing.webhook.invalid_payload", extra={"error": str(exc)})
        metrics.increment("billing.webhook.rejected", tags={"reason": "invalid_payload"})
        return _error(400, "Invalid payload")

    try:
        queue.publish(event)
    except WebhookQueueFullError:
        return _error(500, "Webhook processing failed")
    logger.info(
        "billing.webhook.accepted",
        extra={"event_type": event.event, "payment_id": event.object.id},
    )
    metrics.increment("billing.webhook.accepted", tags={"event_type": event.event})
    return WebhookAck(success=True)


@router.get("/check-subscription", response_model=CheckSubscriptionResponse)
async def check_subscription(
    response: Response,
    session: SessionContext = Depends(require_session),
    service: SubscriptionService = Depends(get_subscription_service),
    repository: SubscriptionRepository = Depends(get_repository),
) -> CheckSubscriptionResponse:
    """Lightweight access probe; cacheable by browsers and CDNs for a status-dependent time."""
    resolution = await _resolve_existing(session.user_id, service, repository)
    max_age = _client_cache_seconds(resolution)
    response.headers["Cache-Control"] = f"private, max-age={max_age}"
    return CheckSubscriptionResponse(
        is_active=resolution.is_active,
        subscription_status=resolution.status.value,
        timestamp=_now().isoformat(),
    )


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
async def subscription_status(
    response: Response,
    session: SessionContext = Depends(require_session),
    service: SubscriptionService = Depends(get_subscription_service),
    repository: SubscriptionRepository = Depends(get_repository),
) -> SubscriptionStatusResponse:
    resolution = await _resolve_existing(session.user_id, service, repository)
    response.headers.update(NO_STORE_HEADERS)
    remaining = resolution.remaining_minutes
    return SubscriptionStatusResponse(
        is_active=resolution.is_active,
        status=resolution.status.value,
        trial_end_time=resolution.trial_end_time.isoformat() if resolution.trial_end_time else None,
        remaining_minutes=remaining,
        remaining_label=format_remaining_time(remaining) if remaining is not None else None,
    )


@router.post("/subscription/create-payment", response_model=CreatePaymentResponse)
async def create_payment(
    payload: CreatePaymentRequest,
    request: Request,
    session: SessionContext = Depends(require_session),
    gateway: YooKassaClient | None = Depends(get_payment_gateway),
) -> CreatePaymentResponse:
    """Start a YooKassa checkout for the session user."""
    plan = SubscriptionPlan.parse(payload.plan_type)
    if plan is None:
        raise HTTPException(status_code=400, detail="Invalid plan type")
    if gateway is None:
        logger.error("billing.payment.gateway_not_configured")
        raise HTTPException(status_code=503, detail="Payment service not available")

    amount = (
        settings.subscription_price_monthly
        if plan is SubscriptionPlan.MONTHLY
        else settings.subscription_price_yearly
    )
    origin = (
        request.headers.get("origin")
        or settings.public_base_url
        or str(request.base_url).rstrip("/")
    )
    reference = f"{int(time.time() * 1000)}_{session.user_id}"
    try:
        created = await gateway.create_payment(
            amount=amount,
            currency=settings.subscription_currency,
            return_url=f"{origin.rstrip('/')}/dashboard/subscription",
            description=f"Подписка на РиелторПро - {PLAN_LABELS[plan]}",
            metadata={"userId": session.user_id, "planType": plan.value, "paymentId": reference},
            idempotence_key=reference,
        )
    except PaymentGatewayError as exc:
        logger.error(
            "billing.payment.create_failed",
            extra={"user_id": session.user_id, "plan_type": plan.value, "code": exc.code},
        )
        metrics.increment("billing.payment.create_failed", tags={"code": exc.code})
        raise HTTPException(status_code=502, detail="Failed to create payment") from exc

    logger.info(
        "billing.payment.created",
        extra={"user_id": session.user_id, "plan_type": plan.value, "payment_id": created.id},
    )
    metrics.increment("billing.payment.created", tags={"plan_type": plan.value})
    return CreatePaymentResponse(
        success=True,
        confirmation_url=created.confirmation_url,
        payment_id=created.id,
    )


@router.post("/subscription/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    session: SessionContext = Depends(require_session),
    service: SubscriptionService = Depends(get_subscription_service),
) -> CancelSubscriptionResponse:
    if not await service.cancel(session.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return CancelSubscriptionResponse(success=True, status=SubscriptionStatus.CANCELLED.value)


@router.get("/update-expired-trials", response_model=ExpireTrialsResponse)
async def update_expired_trials(
    authorization: str | None = Header(default=None),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Cron entrypoint that expires every overdue trial in one pass."""
    if settings.cron_secret_key:
        expected = f"Bearer {settings.cron_secret_key}"
        if not authorization or not hmac.compare_digest(
            authorization.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.warning("billing.expiry.unauthorized")
            raise HTTPException(status_code=401, detail="Unauthorized")

    report = await service.expire_trials()
    body = ExpireTrialsResponse(
        success=not report.errors,
        updated_count=report.updated,
        errors=report.errors,
        message=f"Updated {report.updated} expired trial(s)",
    )
    if report.errors:
        return JSONResponse(status_code=500, content=body.model_dump(by_alias=True))
    return body


@router.get("/check-share-access", response_model=ShareAccessResponse)
async def check_share_access(
    response: Response,
    user_id: str | None = Query(default=None, alias="userId"),
    collection_id: str | None = Query(default=None, alias="collectionId"),
    service: SubscriptionService = Depends(get_subscription_service),
    repository: SubscriptionRepository = Depends(get_repository),
) -> ShareAccessResponse:
    """Report whether the owner of a shared collection still has access."""
    if not user_id or not collection_id:
        raise HTTPException(status_code=400, detail="userId and collectionId are required")
    if not await repository.collection_belongs_to(collection_id, user_id):
        raise HTTPException(status_code=404, detail="Collection not found")
    resolution = await _resolve_existing(user_id, service, repository)
    response.headers.update(NO_STORE_HEADERS)
    return ShareAccessResponse(is_active=resolution.is_active, status=resolution.status.value)
