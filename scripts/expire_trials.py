"""Expire every overdue trial; meant to run from cron."""
# ruff: noqa: UP017

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone

from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from realtorpro.config import Settings
from realtorpro.services.billing.errors import BillingStorageError
from realtorpro.services.billing.repository import SubscriptionRepository
from realtorpro.services.billing.service import ExpiryReport, SubscriptionService

logger = logging.getLogger("scripts.expire_trials")

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def _render_database_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return "<invalid DATABASE_URL>"


def _parse_now(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"--now must be an ISO-8601 timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire РиелторПро trials whose window has closed.")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Evaluate trials as of this ISO-8601 timestamp (UTC if no offset). Defaults to now.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count overdue trials; do not update any rows.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL (falls back to .env).",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, session_factory: SessionFactory) -> int:
    now = args.now or datetime.now(timezone.utc)
    async with session_factory() as session:
        service = SubscriptionService(SubscriptionRepository(session))
        if args.dry_run:
            try:
                overdue = await service.count_overdue_trials(now=now)
            except BillingStorageError as exc:
                logger.error("expire_trials.error", extra={"error": str(exc)})
                return 1
            logger.info("expire_trials.dry_run", extra={"overdue": overdue, "now": now.isoformat()})
            return 0
        report: ExpiryReport = await service.expire_trials(now=now)

    logger.info(
        "expire_trials.complete",
        extra={"updated": report.updated, "errors": len(report.errors), "now": now.isoformat()},
    )
    for error in report.errors:
        logger.error("expire_trials.error", extra={"error": error})
    return 1 if report.errors else 0


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    database_url = args.database_url or Settings().database_url
    if not database_url:
        raise RuntimeError("DATABASE_URL is required to expire trials.")
    logger.info("Using DATABASE_URL=%s", _render_database_url(database_url))

    engine = create_async_engine(database_url, echo=False, pool_pre_ping=True)
    try:
        return await run(args, async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main()))
