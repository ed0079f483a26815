"""Shared FastAPI dependencies for the billing routes."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from realtorpro.clients.yookassa import YooKassaClient
from realtorpro.config import settings
from realtorpro.core.cache import Cache, InMemoryCache
from realtorpro.core.database import get_database
from realtorpro.services.billing.queue import WebhookQueue
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.service import SubscriptionService
from realtorpro.services.billing.status import StatusResolution

logger = logging.getLogger(__name__)

status_cache: InMemoryCache[StatusResolution] = InMemoryCache(
    max_entries=settings.status_cache_max_entries
)


@dataclass
class SessionContext:
    user_id: str


def optional_session(request: Request) -> SessionContext | None:
    token = request.cookies.get(settings.auth_cookie_name)
    if not token or not token.strip():
        return None
    return SessionContext(user_id=token.strip())


def require_session(request: Request) -> SessionContext:
    session = optional_session(request)
    if session is None:
        logger.warning("auth.session.missing_cookie", extra={"path": request.url.path})
        raise HTTPException(status_code=401, detail="Unauthorized")
    return session


def get_status_cache() -> Cache[StatusResolution]:
    return status_cache


def get_webhook_queue(request: Request) -> WebhookQueue:
    queue = getattr(request.app.state, "webhook_queue", None)
    if queue is None:
        logger.error("billing.queue.not_configured")
        raise HTTPException(status_code=503, detail="Webhook processing not available")
    return queue


def get_repository(db: AsyncSession | None = Depends(get_database)) -> SubscriptionRepository:
    if db is None:
        logger.warning("billing.db_missing")
        raise HTTPException(status_code=503, detail="Database not configured")
    return SubscriptionRepository(db)


def get_subscription_service(
    repository: SubscriptionRepository = Depends(get_repository),
    cache: Cache[StatusResolution] = Depends(get_status_cache),
) -> SubscriptionService:
    return SubscriptionService(repository, cache=cache)


async def get_payment_gateway() -> AsyncIterator[YooKassaClient | None]:
    """Yield a gateway client, or None when credentials are not configured."""
    if not settings.gateway_configured:
        yield None
        return
    client = YooKassaClient.from_settings()
    try:
        yield client
    finally:
        await client.aclose()
