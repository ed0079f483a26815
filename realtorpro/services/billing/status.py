"""Pure trial/subscription status resolution."""
# ruff: noqa: UP017

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from realtorpro.models.enums import ResolvedStatus, SubscriptionStatus


@dataclass(frozen=True)
class StatusResolution:
    """Outcome of resolving a user's access at a point in time.

    ``write_back`` is set when the stored status lags behind the clock and the
    caller should persist the new value.
    """

    status: ResolvedStatus
    is_active: bool
    remaining_minutes: int | None = None
    trial_end_time: datetime | None = None
    write_back: SubscriptionStatus | None = None

    @classmethod
    def unknown(cls) -> StatusResolution:
        return cls(status=ResolvedStatus.UNKNOWN, is_active=False)

    def cached(self) -> StatusResolution:
        """Copy without the write-back instruction, safe to serve from cache."""
        if self.write_back is None:
            return self
        return StatusResolution(
            status=self.status,
            is_active=self.is_active,
            remaining_minutes=self.remaining_minutes,
            trial_end_time=self.trial_end_time,
        )

    def as_of(self, now: datetime) -> StatusResolution | None:
        """Recount a cached trial's remaining minutes; None once the trial has ended."""
        if self.status is not ResolvedStatus.TRIAL or self.trial_end_time is None:
            return self
        delta = self.trial_end_time - _as_utc(now)
        if delta <= timedelta(0):
            return None
        return StatusResolution(
            status=self.status,
            is_active=self.is_active,
            remaining_minutes=delta // timedelta(minutes=1),
            trial_end_time=self.trial_end_time,
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def trial_end_time(trial_start_time: datetime, trial_duration_minutes: int) -> datetime:
    return _as_utc(trial_start_time) + timedelta(minutes=trial_duration_minutes)


def resolve_status(
    status: SubscriptionStatus | str | None,
    trial_start_time: datetime | None,
    trial_duration_minutes: int | None,
    now: datetime,
) -> StatusResolution:
    """Derive access from the stored status and the trial window."""
    parsed = SubscriptionStatus.parse(status) if isinstance(status, str) else status
    if parsed is None:
        return StatusResolution.unknown()

    if parsed is SubscriptionStatus.ACTIVE:
        return StatusResolution(status=ResolvedStatus.ACTIVE, is_active=True)
    if parsed is SubscriptionStatus.EXPIRED:
        return StatusResolution(status=ResolvedStatus.EXPIRED, is_active=False)
    if parsed is SubscriptionStatus.CANCELLED:
        return StatusResolution(status=ResolvedStatus.CANCELLED, is_active=False)
    if parsed is not SubscriptionStatus.TRIAL:
        raise ValueError(f"Unhandled subscription status: {parsed!r}")

    if trial_start_time is None or trial_duration_minutes is None:
        return StatusResolution.unknown()

    ends_at = trial_end_time(trial_start_time, trial_duration_minutes)
    delta = ends_at - _as_utc(now)
    if delta <= timedelta(0):
        return StatusResolution(
            status=ResolvedStatus.EXPIRED,
            is_active=False,
            remaining_minutes=0,
            trial_end_time=ends_at,
            write_back=SubscriptionStatus.EXPIRED,
        )
    return StatusResolution(
        status=ResolvedStatus.TRIAL,
        is_active=True,
        remaining_minutes=delta // timedelta(minutes=1),
        trial_end_time=ends_at,
    )


def format_remaining_time(remaining_minutes: int) -> str:
    """Render remaining trial time the way the dashboard banner shows it."""
    remaining = max(int(remaining_minutes), 0)
    days = remaining // (60 * 24)
    hours = (remaining % (60 * 24)) // 60
    minutes = remaining % 60
    return f"{days}д {hours}ч {minutes}м"
