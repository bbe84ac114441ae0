"""Background task scheduler — runs the conservation audit once a day.

Uses FastAPI's lifespan context to start/stop an asyncio background loop;
a plain asyncio.sleep loop that fires at ``settings.audit_hour`` UTC.
Findings are logged (warning level); nothing is written.

Configuration (.env):
    AUDIT_SCHEDULER_ENABLED=true
    AUDIT_HOUR=2
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI

from abacatrack.config import settings
from abacatrack.database import async_session
from abacatrack.utils.cache import close_redis

logger = logging.getLogger("abacatrack.scheduler")


async def run_daily_audit() -> int:
    """Run the conservation audit once; returns the number of findings."""
    from abacatrack.services.audit import run_conservation_audit

    async with async_session() as db:
        findings = await run_conservation_audit(db)

    for finding in findings:
        logger.warning("Audit %s on %s: %s", finding.kind, finding.record_id, finding.message)
    logger.info("Daily conservation audit complete: %d finding(s)", len(findings))
    return len(findings)


def seconds_until(hour: int, now: datetime | None = None) -> float:
    """Seconds from ``now`` to the next ``hour``:00 UTC."""
    now = now or datetime.now(timezone.utc)
    next_run = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def _scheduler_loop() -> None:
    while True:
        wait_seconds = seconds_until(settings.audit_hour)
        logger.info("Next conservation audit in %.0f seconds", wait_seconds)

        await asyncio.sleep(wait_seconds)

        try:
            await run_daily_audit()
        except Exception:
            logger.exception("Unhandled error in daily conservation audit")

        # Small buffer to avoid running twice in the same minute
        await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: start the audit loop on startup, cancel on shutdown."""
    task = None
    if settings.audit_scheduler_enabled:
        task = asyncio.create_task(_scheduler_loop())
        logger.info("Conservation audit scheduler started")
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Conservation audit scheduler stopped")
        await close_redis()
