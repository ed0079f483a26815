import argparse
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from realtorpro.services.billing.errors import BillingStorageError
from realtorpro.services.billing.repository import SubscriptionRepository
from scripts import expire_trials

WEEK = 7 * 24 * 60
NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_now_argument_defaults_to_utc():
    args = expire_trials._parse_args(["--now", "2024-05-01T00:00:00", "--dry-run"])

    assert args.now == NOW
    assert args.dry_run is True


def test_now_argument_rejects_garbage():
    with pytest.raises(argparse.ArgumentTypeError):
        expire_trials._parse_now("yesterday")


def test_run_expires_overdue_trials(session_factory, add_user, load_user):
    add_user("old", trial_start_time=NOW - timedelta(days=9), trial_duration_minutes=WEEK)
    add_user("new", trial_start_time=NOW - timedelta(days=2), trial_duration_minutes=WEEK)
    args = expire_trials._parse_args(["--now", NOW.isoformat()])

    exit_code = asyncio.run(expire_trials.run(args, session_factory))

    assert exit_code == 0
    assert load_user("old").subscription_status == "expired"
    assert load_user("new").subscription_status == "trial"


def test_dry_run_leaves_rows_untouched(session_factory, add_user, load_user, caplog):
    add_user("old", trial_start_time=NOW - timedelta(days=9), trial_duration_minutes=WEEK)
    args = expire_trials._parse_args(["--now", NOW.isoformat(), "--dry-run"])

    with caplog.at_level("INFO", logger="scripts.expire_trials"):
        exit_code = asyncio.run(expire_trials.run(args, session_factory))

    assert exit_code == 0
    assert load_user("old").subscription_status == "trial"
    [record] = [r for r in caplog.records if r.message == "expire_trials.dry_run"]
    assert record.overdue == 1


def test_storage_errors_exit_non_zero(monkeypatch, session_factory):
    async def broken(self):
        raise BillingStorageError("database unavailable")

    monkeypatch.setattr(SubscriptionRepository, "find_trials", broken)
    args = expire_trials._parse_args([])

    assert asyncio.run(expire_trials.run(args, session_factory)) == 1


def test_dry_run_storage_errors_exit_non_zero(monkeypatch, session_factory, caplog):
    async def broken(self):
        raise BillingStorageError("database unavailable")

    monkeypatch.setattr(SubscriptionRepository, "find_trials", broken)
    args = expire_trials._parse_args(["--dry-run"])

    with caplog.at_level("ERROR", logger="scripts.expire_trials"):
        exit_code = asyncio.run(expire_trials.run(args, session_factory))

    assert exit_code == 1
    assert [r.message for r in caplog.records] == ["expire_trials.error"]
