import asyncio

import pytest

from realtorpro.core.backoff import BackoffPolicy
from realtorpro.services.billing.errors import BillingStorageError, WebhookQueueFullError
from realtorpro.services.billing.events import parse_webhook_event
from realtorpro.services.billing.processor import ProcessingOutcome
from realtorpro.services.billing.queue import WebhookQueue


def _event(payment_id: str = "pay_1"):
    return parse_webhook_event(
        {
            "type": "notification",
            "event": "payment.succeeded",
            "object": {"id": payment_id, "metadata": {"userId": "u", "planType": "monthly"}},
        }
    )


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyHandler:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self, event):
        self.calls += 1
        if self.calls <= self.failures:
            raise BillingStorageError("database unavailable")
        return ProcessingOutcome.ACTIVATED


def _policy(max_attempts: int = 3) -> BackoffPolicy:
    return BackoffPolicy(max_attempts=max_attempts, base_delay=1.0, factor=2.0, jitter=0.0)


def test_drain_processes_published_events_in_order():
    seen: list[str] = []

    async def handler(event):
        seen.append(event.object.id)
        return ProcessingOutcome.RECORDED

    queue = WebhookQueue(handler, sleep=RecordingSleep())
    queue.publish(_event("pay_1"))
    queue.publish(_event("pay_2"))

    handled = asyncio.run(queue.drain())

    assert handled == 2
    assert seen == ["pay_1", "pay_2"]
    assert queue.pending == 0
    assert queue.stats.published == 2
    assert queue.stats.processed == 2
    assert queue.stats.outcomes == {"recorded": 2}


def test_transient_failure_is_retried_with_backoff():
    handler = FlakyHandler(failures=2)
    sleep = RecordingSleep()
    queue = WebhookQueue(handler, backoff=_policy(), sleep=sleep)
    queue.publish(_event())

    asyncio.run(queue.drain())

    assert handler.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert queue.stats.retried == 2
    assert queue.stats.processed == 1
    assert queue.dead_letters == []


def test_exhausted_event_goes_to_dead_letters(caplog):
    handler = FlakyHandler(failures=10)
    sleep = RecordingSleep()
    queue = WebhookQueue(handler, backoff=_policy(max_attempts=3), sleep=sleep)
    queue.publish(_event("pay_dead"))

    asyncio.run(queue.drain())

    assert handler.calls == 3
    assert sleep.delays == [1.0, 2.0]
    [letter] = queue.dead_letters
    assert letter.event.object.id == "pay_dead"
    assert letter.attempts == 3
    assert "database unavailable" in letter.error
    assert queue.stats.dead_lettered == 1
    assert any(r.message == "billing.queue.dead_letter" for r in caplog.records)


def test_full_queue_rejects_publish():
    async def handler(event):
        return ProcessingOutcome.LOGGED

    queue = WebhookQueue(handler, max_size=1)
    queue.publish(_event("pay_1"))

    with pytest.raises(WebhookQueueFullError):
        queue.publish(_event("pay_2"))
    assert queue.pending == 1


def test_worker_processes_events_and_stop_drains():
    seen: list[str] = []

    async def handler(event):
        seen.append(event.object.id)
        return ProcessingOutcome.LOGGED

    async def scenario():
        queue = WebhookQueue(handler)
        await queue.start()
        assert queue.running
        queue.publish(_event("pay_1"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        queue.publish(_event("pay_2"))
        await queue.stop()
        return queue

    queue = asyncio.run(scenario())

    assert seen == ["pay_1", "pay_2"]
    assert queue.running is False
