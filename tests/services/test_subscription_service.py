import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from realtorpro.config import settings
from realtorpro.core.cache import InMemoryCache
from realtorpro.models.enums import ResolvedStatus
from realtorpro.models.user import User
from realtorpro.services.billing.errors import BillingStorageError
from realtorpro.services.billing.processor import status_cache_key
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.service import SubscriptionService, cache_ttl_for
from realtorpro.services.billing.status import StatusResolution, resolve_status

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
WEEK = 7 * 24 * 60


def _run(session_factory, action, *, cache=None):
    async def run():
        async with session_factory() as session:
            service = SubscriptionService(
                SubscriptionRepository(session), cache=cache, clock=lambda: NOW
            )
            return await action(service)

    return asyncio.run(run())


def test_overdue_trial_is_written_back_once(session_factory, add_user, load_user, caplog):
    add_user("user-1", trial_start_time=NOW - timedelta(days=8), trial_duration_minutes=WEEK)

    with caplog.at_level(logging.INFO):
        first = _run(session_factory, lambda s: s.get_status("user-1"))
        second = _run(session_factory, lambda s: s.get_status("user-1"))

    assert first.status is ResolvedStatus.EXPIRED
    assert second.status is ResolvedStatus.EXPIRED
    assert load_user("user-1").subscription_status == "expired"
    writes = [r for r in caplog.records if r.message == "billing.status.trial_expired"]
    assert len(writes) == 1


def test_trial_in_window_is_active(session_factory, add_user, load_user):
    add_user("user-1", trial_start_time=NOW - timedelta(days=1), trial_duration_minutes=WEEK)

    result = _run(session_factory, lambda s: s.get_status("user-1"))

    assert result.status is ResolvedStatus.TRIAL
    assert result.remaining_minutes == 6 * 24 * 60
    assert load_user("user-1").subscription_status == "trial"


def test_missing_user_is_unknown(session_factory):
    result = _run(session_factory, lambda s: s.get_status("nobody"))

    assert result == StatusResolution.unknown()


def test_storage_error_resolves_unknown_and_is_not_cached():
    class BrokenRepository:
        async def get_user(self, user_id):
            raise BillingStorageError("down")

    cache: InMemoryCache[StatusResolution] = InMemoryCache()
    service = SubscriptionService(BrokenRepository(), cache=cache, clock=lambda: NOW)

    result = asyncio.run(service.get_status("user-1"))

    assert result.status is ResolvedStatus.UNKNOWN
    assert result.is_active is False
    assert len(cache) == 0


def test_failed_write_back_still_returns_expired(caplog):
    class ReadOnlyRepository:
        async def get_user(self, user_id):
            return type(
                "Row",
                (),
                {
                    "subscription_status": "trial",
                    "trial_start_time": NOW - timedelta(days=30),
                    "trial_duration_minutes": WEEK,
                },
            )()

        async def expire_trial(self, user_id):
            raise BillingStorageError("read-only")

    service = SubscriptionService(ReadOnlyRepository(), clock=lambda: NOW)

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(service.get_status("user-1"))

    assert result.status is ResolvedStatus.EXPIRED
    assert any(r.message == "billing.status.write_back_failed" for r in caplog.records)


def test_resolution_is_served_from_cache(session_factory, add_user, sync_factory):
    add_user("user-1", subscription_status="active")
    cache: InMemoryCache[StatusResolution] = InMemoryCache()

    first = _run(session_factory, lambda s: s.get_status("user-1"), cache=cache)
    with sync_factory() as session:
        user = session.get(User, "user-1")
        user.subscription_status = "expired"
        session.add(user)
        session.commit()
    second = _run(session_factory, lambda s: s.get_status("user-1"), cache=cache)

    assert first.status is ResolvedStatus.ACTIVE
    assert second.status is ResolvedStatus.ACTIVE


def test_cancel_invalidates_cache(session_factory, add_user, load_user):
    add_user("user-1", subscription_status="active")
    cache: InMemoryCache[StatusResolution] = InMemoryCache()

    _run(session_factory, lambda s: s.get_status("user-1"), cache=cache)
    cancelled = _run(session_factory, lambda s: s.cancel("user-1"), cache=cache)
    after = _run(session_factory, lambda s: s.get_status("user-1"), cache=cache)

    assert cancelled is True
    assert after.status is ResolvedStatus.CANCELLED
    assert load_user("user-1").subscription_status == "cancelled"


def test_cancel_unknown_user_returns_false(session_factory):
    assert _run(session_factory, lambda s: s.cancel("nobody")) is False


def test_batch_expiry_updates_only_overdue_trials(session_factory, add_user, load_user):
    add_user("overdue", trial_start_time=NOW - timedelta(days=8), trial_duration_minutes=WEEK)
    add_user("fresh", trial_start_time=NOW - timedelta(days=1), trial_duration_minutes=WEEK)
    add_user("paid", subscription_status="active", trial_start_time=NOW - timedelta(days=30))
    cache: InMemoryCache[StatusResolution] = InMemoryCache()
    cache.set(status_cache_key("overdue"), StatusResolution.unknown(), ttl_seconds=60)

    report = _run(session_factory, lambda s: s.expire_trials(), cache=cache)

    assert report.updated == 1
    assert report.user_ids == ["overdue"]
    assert report.errors == []
    assert load_user("overdue").subscription_status == "expired"
    assert load_user("fresh").subscription_status == "trial"
    assert load_user("paid").subscription_status == "active"
    assert cache.get(status_cache_key("overdue")) is None


def test_count_overdue_trials_does_not_write(session_factory, add_user, load_user):
    add_user("overdue", trial_start_time=NOW - timedelta(days=8), trial_duration_minutes=WEEK)

    count = _run(session_factory, lambda s: s.count_overdue_trials())

    assert count == 1
    assert load_user("overdue").subscription_status == "trial"


def test_cache_ttl_depends_on_status():
    active = resolve_status("active", None, None, NOW)
    expired = resolve_status("expired", None, None, NOW)
    long_trial = resolve_status("trial", NOW - timedelta(days=1), WEEK, NOW)
    ending_trial = resolve_status("trial", NOW - timedelta(minutes=59, seconds=40), 60, NOW)

    assert cache_ttl_for(active, NOW) == 1800
    assert cache_ttl_for(expired, NOW) == 5
    assert cache_ttl_for(long_trial, NOW) == 60
    assert cache_ttl_for(ending_trial, NOW) == 20
    assert cache_ttl_for(StatusResolution.unknown(), NOW) == 0


def test_storage_error_propagates_when_caller_applies_its_own_policy():
    class BrokenRepository:
        async def get_user(self, user_id):
            raise BillingStorageError("down")

    service = SubscriptionService(BrokenRepository(), clock=lambda: NOW)

    with pytest.raises(BillingStorageError):
        asyncio.run(service.get_status("user-1", raise_on_storage_error=True))


def test_cached_trial_recounts_remaining_minutes(session_factory, add_user):
    add_user("user-1", trial_start_time=NOW, trial_duration_minutes=120)
    cache: InMemoryCache[StatusResolution] = InMemoryCache()

    first = _run(session_factory, lambda s: s.get_status("user-1", now=NOW), cache=cache)
    later = _run(
        session_factory,
        lambda s: s.get_status("user-1", now=NOW + timedelta(seconds=59)),
        cache=cache,
    )

    assert first.remaining_minutes == 120
    assert later.remaining_minutes == 119
    assert later.trial_end_time == first.trial_end_time


def test_cached_trial_past_its_end_is_resolved_again(session_factory, add_user, load_user):
    add_user("user-1", trial_start_time=NOW, trial_duration_minutes=120)
    cache: InMemoryCache[StatusResolution] = InMemoryCache()

    _run(session_factory, lambda s: s.get_status("user-1", now=NOW), cache=cache)
    after = _run(
        session_factory,
        lambda s: s.get_status("user-1", now=NOW + timedelta(minutes=121)),
        cache=cache,
    )

    assert after.status is ResolvedStatus.EXPIRED
    assert load_user("user-1").subscription_status == "expired"


def test_new_users_get_the_configured_trial_length(monkeypatch):
    monkeypatch.setattr(settings, "default_trial_duration_minutes", 3 * 24 * 60)

    assert User(id="user-1").trial_duration_minutes == 3 * 24 * 60
