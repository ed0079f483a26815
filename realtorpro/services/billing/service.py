"""Subscription status service: resolution, lazy expiry and cache upkeep."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from realtorpro.config import settings
from realtorpro.core.cache import Cache
from realtorpro.models.enums import ResolvedStatus
from realtorpro.observability.metrics import metrics
from realtorpro.services.billing.errors import BillingStorageError
from realtorpro.services.billing.processor import status_cache_key
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.status import StatusResolution, resolve_status, trial_end_time

logger = logging.getLogger(__name__)


@dataclass
class ExpiryReport:
    updated: int = 0
    user_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_ttl_for(resolution: StatusResolution, now: datetime) -> float:
    """Active rows change rarely; trials count down, so never outlive the trial."""
    if resolution.status is ResolvedStatus.UNKNOWN:
        return 0
    if resolution.status is ResolvedStatus.ACTIVE:
        return settings.status_cache_ttl_active
    if resolution.status is ResolvedStatus.TRIAL:
        ttl = float(settings.status_cache_ttl_trial)
        if resolution.trial_end_time is not None:
            ttl = min(ttl, (resolution.trial_end_time - now).total_seconds())
        return max(ttl, 0)
    return settings.status_cache_ttl_other


class SubscriptionService:
    """Single entry point for status checks and subscription state changes."""

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

    async def get_status(
        self,
        user_id: str,
        *,
        now: datetime | None = None,
        raise_on_storage_error: bool = False,
    ) -> StatusResolution:
        """Resolve a user's access.

        A storage failure resolves to ``unknown`` unless ``raise_on_storage_error``
        is set, in which case the ``BillingStorageError`` propagates so callers with
        their own failure policy can apply it.
        """
        key = status_cache_key(user_id)
        now = now or self._clock()
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                current = cached.as_of(now)
                if current is not None:
                    metrics.increment("billing.status.cache_hit")
                    return current
                self._cache.invalidate(key)

        try:
            user = await self._repository.get_user(user_id)
        except BillingStorageError:
            logger.exception("billing.status.lookup_failed", extra={"user_id": user_id})
            metrics.increment("billing.status.resolved", tags={"status": ResolvedStatus.UNKNOWN.value})
            if raise_on_storage_error:
                raise
            return StatusResolution.unknown()
        if user is None:
            logger.warning("billing.status.user_missing", extra={"user_id": user_id})
            return StatusResolution.unknown()

        resolution = resolve_status(
            user.subscription_status,
            user.trial_start_time,
            user.trial_duration_minutes,
            now,
        )
        if resolution.write_back is not None:
            await self._write_back(user_id, resolution)

        metrics.increment("billing.status.resolved", tags={"status": resolution.status.value})
        if self._cache is not None:
            ttl = cache_ttl_for(resolution, now)
            if ttl > 0:
                self._cache.set(key, resolution.cached(), ttl_seconds=ttl)
        return resolution

    async def expire_trials(self, *, now: datetime | None = None) -> ExpiryReport:
        """Batch-expire every trial whose window has closed."""
        now = now or self._clock()
        report = ExpiryReport()
        try:
            trials = await self._repository.find_trials()
        except BillingStorageError as exc:
            logger.exception("billing.expiry.lookup_failed")
            report.errors.append(str(exc))
            return report

        overdue = [
            trial.user_id
            for trial in trials
            if trial.trial_start_time is not None
            and trial.trial_duration_minutes is not None
            and trial_end_time(trial.trial_start_time, trial.trial_duration_minutes) <= now
        ]
        if not overdue:
            return report
        try:
            report.updated = await self._repository.expire_trials(overdue)
        except BillingStorageError as exc:
            report.errors.append(str(exc))
            return report
        report.user_ids = overdue
        for user_id in overdue:
            self.invalidate(user_id)
        logger.info(
            "billing.expiry.completed",
            extra={"candidates": len(overdue), "updated": report.updated},
        )
        metrics.increment("billing.expiry.updated", value=float(report.updated))
        return report

    async def count_overdue_trials(self, *, now: datetime | None = None) -> int:
        now = now or self._clock()
        trials = await self._repository.find_trials()
        return sum(
            1
            for trial in trials
            if trial.trial_start_time is not None
            and trial.trial_duration_minutes is not None
            and trial_end_time(trial.trial_start_time, trial.trial_duration_minutes) <= now
        )

    async def cancel(self, user_id: str) -> bool:
        """Move the user to ``cancelled``; time never moves them out of it."""
        cancelled = await self._repository.cancel_subscription(user_id)
        self.invalidate(user_id)
        if cancelled:
            logger.info("billing.subscription.cancelled", extra={"user_id": user_id})
            metrics.increment("billing.subscription.cancelled")
        return cancelled

    def invalidate(self, user_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(status_cache_key(user_id))

    async def _write_back(self, user_id: str, resolution: StatusResolution) -> None:
        try:
            changed = await self._repository.expire_trial(user_id)
        except BillingStorageError:
            # the resolved answer is still correct; the next read retries the write
            logger.exception("billing.status.write_back_failed", extra={"user_id": user_id})
            return
        if changed:
            logger.info(
                "billing.status.trial_expired",
                extra={
                    "user_id": user_id,
                    "trial_end_time": resolution.trial_end_time.isoformat()
                    if resolution.trial_end_time
                    else None,
                },
            )
            metrics.increment("billing.status.trial_expired")
