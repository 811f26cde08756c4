"""Shared FastAPI dependencies and service wiring.

Usage counters, the metrics provider and the email provider are process-wide;
everything holding a database session is built per request (or per job).
"""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from drtrack.config import Settings, get_settings
from drtrack.database import get_session
from drtrack.db.repository import SqlRepository
from drtrack.email.service import BaseEmailProvider, EmailDispatcher, create_provider
from drtrack.metrics.provider import MetricsProvider, SeoIntelligenceProvider
from drtrack.notifications.digests import DigestService
from drtrack.notifications.milestones import MilestoneTracker
from drtrack.notifications.preferences import PreferenceResolver
from drtrack.redis_client import get_redis, redis_enabled
from drtrack.refresh.policy import RefreshPolicy
from drtrack.refresh.service import RefreshService
from drtrack.repository import Repository
from drtrack.usage.counter import UsageCounter, create_usage_counters
from drtrack.usage.ledger import UsageLedger

get_db = get_session

_counters: tuple[UsageCounter, UsageCounter] | None = None
_metrics_provider: MetricsProvider | None = None
_email_provider: BaseEmailProvider | None = None


def get_usage_counters() -> tuple[UsageCounter, UsageCounter]:
    """(single refresh, bulk refresh) counters shared by every request."""
    global _counters  # noqa: PLW0603
    if _counters is None:
        settings = get_settings()
        redis = get_redis() if redis_enabled(settings) else None
        _counters = create_usage_counters(settings, redis)
    return _counters


def get_metrics_provider() -> MetricsProvider:
    global _metrics_provider  # noqa: PLW0603
    if _metrics_provider is None:
        _metrics_provider = SeoIntelligenceProvider.from_settings(get_settings())
    return _metrics_provider


def get_email_provider() -> BaseEmailProvider:
    global _email_provider  # noqa: PLW0603
    if _email_provider is None:
        _email_provider = create_provider(get_settings())
    return _email_provider


def reset_singletons() -> None:
    """Drop the process-wide collaborators (for testing)."""
    global _counters, _metrics_provider, _email_provider  # noqa: PLW0603
    _counters = None
    _metrics_provider = None
    _email_provider = None


def build_refresh_service(
    repo: Repository,
    settings: Settings,
    provider: MetricsProvider,
    email_provider: BaseEmailProvider,
    counters: tuple[UsageCounter, UsageCounter],
) -> RefreshService:
    dispatcher = EmailDispatcher(email_provider, repo)
    resolver = PreferenceResolver(repo)
    single_counter, bulk_counter = counters
    return RefreshService(
        repo=repo,
        provider=provider,
        resolver=resolver,
        milestones=MilestoneTracker(repo, resolver, dispatcher, settings.milestone_thresholds),
        dispatcher=dispatcher,
        ledger=UsageLedger.from_settings(repo, settings),
        single_counter=single_counter,
        bulk_counter=bulk_counter,
        policy=RefreshPolicy.from_hours(settings.paid_refresh_interval_hours, settings.free_refresh_interval_hours),
    )


def build_digest_service(repo: Repository, settings: Settings, email_provider: BaseEmailProvider) -> DigestService:
    return DigestService(
        repo,
        PreferenceResolver(repo),
        EmailDispatcher(email_provider, repo),
        batch_size=settings.digest_batch_size,
        batch_delay=settings.digest_batch_delay_seconds,
        inactivity_days=settings.inactivity_warning_days,
    )


async def get_repository(db: AsyncSession = Depends(get_db)) -> Repository:  # noqa: B008
    return SqlRepository(db)


async def get_preference_resolver(repo: Repository = Depends(get_repository)) -> PreferenceResolver:  # noqa: B008
    return PreferenceResolver(repo)


async def get_refresh_service(
    repo: Repository = Depends(get_repository),  # noqa: B008
    provider: MetricsProvider = Depends(get_metrics_provider),  # noqa: B008
    email_provider: BaseEmailProvider = Depends(get_email_provider),  # noqa: B008
    counters: tuple[UsageCounter, UsageCounter] = Depends(get_usage_counters),  # noqa: B008
) -> RefreshService:
    return build_refresh_service(repo, get_settings(), provider, email_provider, counters)
