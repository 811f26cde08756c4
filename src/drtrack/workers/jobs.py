"""arq worker for scheduled refreshes and notification digests.

Runs as a separate process. Every job opens its own database session; the
metrics and email providers live in the worker context.

Usage: arq drtrack.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from drtrack.config import get_settings
from drtrack.database import close_db, init_db, session_scope
from drtrack.db.repository import SqlRepository
from drtrack.dependencies import (
    build_digest_service,
    build_refresh_service,
    get_email_provider,
    get_metrics_provider,
    get_usage_counters,
    reset_singletons,
)
from drtrack.middleware.logging import setup_logging
from drtrack.redis_client import close_redis, init_redis
from drtrack.usage.ledger import UsageLedger

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize logging, the database and the shared providers."""
    settings = get_settings()
    setup_logging(settings, component="worker")
    await init_db(settings)
    await init_redis(settings)

    ctx["settings"] = settings
    ctx["metrics_provider"] = get_metrics_provider()
    ctx["email_provider"] = get_email_provider()
    ctx["counters"] = get_usage_counters()
    logger.info("DR worker started (environment=%s)", settings.environment)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    reset_singletons()
    await close_db()
    await close_redis()
    logger.info("DR worker shut down")


async def refresh_due_domains(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Sweep every active domain and refresh the ones that are due."""
    async with session_scope() as session:
        service = build_refresh_service(
            SqlRepository(session),
            ctx["settings"],
            ctx["metrics_provider"],
            ctx["email_provider"],
            ctx["counters"],
        )
        stats = await service.run_sweep()
    logger.info(
        "Sweep finished: %d refreshed, %d skipped, %d errors of %d",
        stats.refreshed,
        stats.skipped,
        stats.errors,
        stats.total,
    )
    return stats.to_dict()


async def send_daily_batch(ctx: dict) -> int:  # type: ignore[type-arg]
    async with session_scope() as session:
        digests = build_digest_service(SqlRepository(session), ctx["settings"], ctx["email_provider"])
        stats = await digests.send_daily_batches()
    logger.info("Daily batch: %d sent, %d skipped", stats.emails_sent, stats.emails_skipped)
    return stats.emails_sent


async def send_weekly_recap(ctx: dict) -> int:  # type: ignore[type-arg]
    async with session_scope() as session:
        digests = build_digest_service(SqlRepository(session), ctx["settings"], ctx["email_provider"])
        stats = await digests.send_weekly_recaps()
    logger.info("Weekly recap %s..%s: %d sent", stats.week_start, stats.week_end, stats.emails_sent)
    return stats.emails_sent


async def send_inactivity_warnings(ctx: dict) -> int:  # type: ignore[type-arg]
    async with session_scope() as session:
        digests = build_digest_service(SqlRepository(session), ctx["settings"], ctx["email_provider"])
        stats = await digests.send_inactivity_warnings()
    sent = sum(stats.warnings_sent.values())
    logger.info("Inactivity warnings: %d sent, %d skipped", sent, stats.warnings_skipped)
    return sent


async def monitor_budget(ctx: dict) -> dict[str, object]:  # type: ignore[type-arg]
    """Log month-to-date provider spend against the budget."""
    async with session_scope() as session:
        ledger = UsageLedger.from_settings(SqlRepository(session), ctx["settings"])
        status = await ledger.budget_status()
    if status.is_over_budget:
        logger.error("Metrics budget exceeded: %.2f of %.2f", status.total_spent, status.budget)
    elif status.is_near_limit:
        logger.warning("Metrics budget at %.1f%% (%.2f of %.2f)", status.percent_used, status.total_spent, status.budget)
    return status.to_dict()


class WorkerSettings:
    """arq worker settings for scheduled DR jobs."""

    functions = [refresh_due_domains, send_daily_batch, send_weekly_recap, send_inactivity_warnings, monitor_budget]
    cron_jobs = [
        cron(refresh_due_domains, hour={0, 6, 12, 18}, minute=0),
        cron(send_daily_batch, hour=9, minute=0),
        cron(send_weekly_recap, weekday=0, hour=10, minute=0),  # Monday
        cron(send_inactivity_warnings, hour=11, minute=0),
        cron(monitor_budget, minute=0),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 2
    job_timeout = 3600
