"""In-process handoff between the webhook endpoint and event processing."""
# ruff: noqa: UP017

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from realtorpro.core.backoff import BackoffPolicy
from realtorpro.observability.metrics import metrics
from realtorpro.services.billing.errors import WebhookQueueFullError
from realtorpro.services.billing.events import WebhookEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[WebhookEvent], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class DeadLetter:
    event: WebhookEvent
    attempts: int
    error: str
    failed_at: datetime


@dataclass
class QueueStats:
    published: int = 0
    processed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)


class WebhookQueue:
    """Bounded FIFO of verified events with retry and a dead-letter list.

    The HTTP handler only publishes; a single worker task (or ``drain``)
    consumes.
    """

    def __init__(
        self,
        handler: EventHandler,
        *,
        max_size: int = 1000,
        backoff: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[WebhookEvent] = asyncio.Queue(maxsize=max_size)
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._worker: asyncio.Task[None] | None = None
        self.dead_letters: list[DeadLetter] = []
        self.stats = QueueStats()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def publish(self, event: WebhookEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as exc:
            logger.error(
                "billing.queue.full",
                extra={"payment_id": event.object.id, "event_type": event.event},
            )
            metrics.alert("billing.queue.full", value=1.0, threshold=0.0, severity="critical")
            raise WebhookQueueFullError() from exc
        self.stats.published += 1
        metrics.gauge("billing.queue.depth", float(self._queue.qsize()))

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="webhook-queue-worker")
        logger.info("billing.queue.started")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        remaining = await self.drain()
        logger.info("billing.queue.stopped", extra={"drained": remaining})

    async def drain(self) -> int:
        """Process everything already queued in the calling task."""
        handled = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()
            handled += 1

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: WebhookEvent) -> None:
        attempts = 0
        last_error = ""
        for attempt, delay in self._backoff.attempts():
            attempts = attempt
            started = time.perf_counter()
            try:
                outcome = await self._handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "billing.queue.attempt_failed",
                    extra={
                        "payment_id": event.object.id,
                        "event_type": event.event,
                        "attempt": attempt,
                        "error": last_error,
                    },
                )
                if attempt < self._backoff.max_attempts:
                    self.stats.retried += 1
                    metrics.increment("billing.queue.retried", tags={"event_type": event.event})
                    await self._sleep(delay)
                continue
            metrics.timing(
                "billing.queue.handle_ms",
                (time.perf_counter() - started) * 1000,
                tags={"event_type": event.event},
            )
            self.stats.processed += 1
            label = getattr(outcome, "value", str(outcome))
            self.stats.outcomes[label] = self.stats.outcomes.get(label, 0) + 1
            return

        self.stats.dead_lettered += 1
        self.dead_letters.append(
            DeadLetter(
                event=event,
                attempts=attempts,
                error=last_error,
                failed_at=datetime.now(timezone.utc),
            )
        )
        logger.error(
            "billing.queue.dead_letter",
            extra={
                "payment_id": event.object.id,
                "event_type": event.event,
                "attempts": attempts,
                "error": last_error,
            },
        )
        metrics.alert(
            "billing.queue.dead_letter",
            value=1.0,
            threshold=0.0,
            severity="critical",
            tags={"event_type": event.event},
        )
