"""Access decisions for dashboard and shared-collection pages."""
# ruff: noqa: UP017

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from realtorpro.config import settings
from realtorpro.core.cache import Cache
from realtorpro.core.database import session_scope
from realtorpro.observability.metrics import metrics
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.service import SubscriptionService
from realtorpro.services.billing.status import StatusResolution

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
SUBSCRIPTION_PAGE = "/dashboard/subscription"
SHARE_EXPIRED_PAGE = "/share/expired"

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class StatusProvider(Protocol):
    async def for_user(self, user_id: str) -> StatusResolution: ...

    async def for_collection(self, collection_id: str) -> StatusResolution | None:
        """Resolve the collection owner's status; None when the collection is unknown."""
        ...


class DatabaseStatusProvider:
    """Resolve statuses in-process with a short-lived session per check."""

    def __init__(
        self,
        *,
        cache: Cache[StatusResolution] | None = None,
        session_factory: SessionFactory = session_scope,
    ) -> None:
        self._cache = cache
        self._session_factory = session_factory

    async def for_user(self, user_id: str) -> StatusResolution:
        async with self._session_factory() as session:
            service = SubscriptionService(SubscriptionRepository(session), cache=self._cache)
            return await service.get_status(user_id, raise_on_storage_error=True)

    async def for_collection(self, collection_id: str) -> StatusResolution | None:
        async with self._session_factory() as session:
            repository = SubscriptionRepository(session)
            owner_id = await repository.get_collection_owner(collection_id)
            if owner_id is None:
                return None
            service = SubscriptionService(repository, cache=self._cache)
            return await service.get_status(owner_id, raise_on_storage_error=True)


@dataclass(frozen=True)
class CachedAccess:
    """Cookie pair carrying a signed, expiring access decision."""

    status_value: str
    expires_value: str


@dataclass(frozen=True)
class GateDecision:
    allow: bool
    redirect_to: str | None = None
    cache: CachedAccess | None = None
    reason: str = "checked"

    @classmethod
    def redirect(cls, location: str, *, reason: str) -> GateDecision:
        return cls(allow=False, redirect_to=location, reason=reason)


def _cookie_signature(user_id: str, flag: str, expires: int) -> str:
    message = f"{user_id}:{flag}:{expires}".encode()
    digest = hmac.new(settings.secret_key.encode(), message, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def sign_access_cookie(
    user_id: str, is_active: bool, *, ttl_seconds: int, now: float | None = None
) -> CachedAccess:
    expires = int((time.time() if now is None else now) + ttl_seconds)
    flag = "1" if is_active else "0"
    return CachedAccess(
        status_value=f"{flag}.{_cookie_signature(user_id, flag, expires)}",
        expires_value=str(expires),
    )


def read_access_cookie(
    user_id: str,
    status_value: str | None,
    expires_value: str | None,
    *,
    now: float | None = None,
) -> bool | None:
    """Return the cached decision, or None when the pair is absent, forged or stale."""
    if not status_value or not expires_value:
        return None
    flag, _, signature = status_value.partition(".")
    if flag not in {"0", "1"} or not signature:
        return None
    try:
        expires = int(expires_value)
    except ValueError:
        return None
    if expires <= (time.time() if now is None else now):
        return None
    expected = _cookie_signature(user_id, flag, expires)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        logger.warning("access.cookie.invalid_signature", extra={"user_id": user_id})
        return None
    return flag == "1"


class AccessGate:
    """Bounded, fail-policy-aware status checks for page routes."""

    def __init__(
        self,
        provider: StatusProvider,
        *,
        timeout_seconds: float | None = None,
        cache_ttl_seconds: int | None = None,
        dashboard_fail_open: bool | None = None,
        share_fail_open: bool | None = None,
    ) -> None:
        self._provider = provider
        self._timeout = (
            settings.access_gate_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._cache_ttl = (
            settings.access_gate_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._dashboard_fail_open = (
            settings.access_gate_fail_open if dashboard_fail_open is None else dashboard_fail_open
        )
        self._share_fail_open = (
            settings.share_gate_fail_open if share_fail_open is None else share_fail_open
        )

    async def check_dashboard(
        self,
        user_id: str | None,
        status_cookie: str | None = None,
        expires_cookie: str | None = None,
    ) -> GateDecision:
        if not user_id:
            return self._record("dashboard", GateDecision.redirect(LOGIN_PATH, reason="no_session"))

        # only grants are cached; a denial is rechecked on every request
        if read_access_cookie(user_id, status_cookie, expires_cookie):
            return self._record("dashboard", GateDecision(allow=True, reason="cookie"))

        try:
            resolution = await asyncio.wait_for(self._provider.for_user(user_id), self._timeout)
        except Exception as exc:
            return self._record("dashboard", self._failed("dashboard", exc, user_id=user_id))

        if resolution.is_active:
            cookie = sign_access_cookie(user_id, True, ttl_seconds=self._cache_ttl)
            return self._record("dashboard", GateDecision(allow=True, cache=cookie))
        return self._record(
            "dashboard",
            GateDecision.redirect(SUBSCRIPTION_PAGE, reason=resolution.status.value),
        )

    async def check_share(self, collection_id: str) -> GateDecision:
        try:
            resolution = await asyncio.wait_for(
                self._provider.for_collection(collection_id), self._timeout
            )
        except Exception as exc:
            return self._record("share", self._failed("share", exc, collection_id=collection_id))

        if resolution is None:
            return self._record(
                "share", GateDecision.redirect(SHARE_EXPIRED_PAGE, reason="collection_missing")
            )
        if not resolution.is_active:
            return self._record(
                "share", GateDecision.redirect(SHARE_EXPIRED_PAGE, reason=resolution.status.value)
            )
        return self._record("share", GateDecision(allow=True))

    def _failed(self, route_class: str, exc: Exception, **context: str) -> GateDecision:
        fail_open = self._dashboard_fail_open if route_class == "dashboard" else self._share_fail_open
        error = "timeout" if isinstance(exc, asyncio.TimeoutError) else type(exc).__name__
        logger.error(
            "access.check.failed",
            extra={"route_class": route_class, "error": error, "fail_open": fail_open, **context},
        )
        if fail_open:
            return GateDecision(allow=True, reason="fail_open")
        target = SUBSCRIPTION_PAGE if route_class == "dashboard" else SHARE_EXPIRED_PAGE
        return GateDecision.redirect(target, reason="fail_closed")

    def _record(self, route_class: str, decision: GateDecision) -> GateDecision:
        metrics.increment(
            "access.gate.decision",
            tags={"route_class": route_class, "allow": decision.allow, "reason": decision.reason},
        )
        return decision
