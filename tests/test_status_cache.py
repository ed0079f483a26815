import pytest

from realtorpro.core.backoff import BackoffPolicy
from realtorpro.core.cache import InMemoryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl():
    clock = FakeClock()
    cache: InMemoryCache[str] = InMemoryCache(clock=clock)
    cache.set("k", "v", ttl_seconds=5)

    assert cache.get("k") == "v"
    clock.now += 5
    assert cache.get("k") is None
    assert len(cache) == 0


def test_invalidate_and_non_positive_ttl_remove_entries():
    cache: InMemoryCache[str] = InMemoryCache()
    cache.set("a", "1", ttl_seconds=60)
    cache.set("b", "2", ttl_seconds=60)

    cache.invalidate("a")
    cache.set("b", "3", ttl_seconds=0)

    assert cache.get("a") is None
    assert cache.get("b") is None


def test_eviction_prefers_expired_then_soonest_expiring():
    clock = FakeClock()
    cache: InMemoryCache[str] = InMemoryCache(max_entries=2, clock=clock)
    cache.set("short", "s", ttl_seconds=10)
    cache.set("long", "l", ttl_seconds=100)

    cache.set("new", "n", ttl_seconds=50)

    assert cache.get("short") is None
    assert cache.get("long") == "l"
    assert cache.get("new") == "n"


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        InMemoryCache(max_entries=0)


def test_backoff_schedule_doubles_up_to_cap():
    policy = BackoffPolicy(max_attempts=5, base_delay=1.0, factor=2.0, max_delay=5.0, jitter=0.0)

    assert list(policy.attempts()) == [(1, 1.0), (2, 2.0), (3, 4.0), (4, 5.0), (5, 5.0)]


def test_backoff_jitter_stays_within_bounds():
    policy = BackoffPolicy(max_attempts=3, base_delay=2.0, jitter=0.5, max_delay=100.0)

    for attempt, delay in policy.attempts():
        base = 2.0 * 2 ** (attempt - 1)
        assert base <= delay <= base * 1.5


@pytest.mark.parametrize("field", ["max_attempts", "factor"])
def test_backoff_rejects_invalid_configuration(field):
    with pytest.raises(ValueError):
        BackoffPolicy(**{field: 0})
