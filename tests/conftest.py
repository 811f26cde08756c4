"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from drtrack.dependencies import (
    get_email_provider,
    get_metrics_provider,
    get_repository,
    get_usage_counters,
    reset_singletons,
)
from drtrack.email.service import EmailDispatcher
from drtrack.main import create_app
from drtrack.notifications.milestones import MilestoneTracker
from drtrack.notifications.preferences import PreferenceResolver
from drtrack.refresh.policy import RefreshPolicy
from drtrack.refresh.service import RefreshService
from drtrack.usage.counter import InMemoryUsageCounter
from drtrack.usage.ledger import UsageLedger
from tests.fakes import FakeMetricsProvider, InMemoryRepository, RecordingEmailProvider

# Monday, so weekly recap tests can reuse it.
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def email_provider() -> RecordingEmailProvider:
    return RecordingEmailProvider()


@pytest.fixture
def metrics() -> FakeMetricsProvider:
    return FakeMetricsProvider()


@pytest.fixture
def dispatcher(repo: InMemoryRepository, email_provider: RecordingEmailProvider) -> EmailDispatcher:
    return EmailDispatcher(email_provider, repo)


@pytest.fixture
def resolver(repo: InMemoryRepository) -> PreferenceResolver:
    return PreferenceResolver(repo)


@pytest.fixture
def tracker(repo, resolver, dispatcher) -> MilestoneTracker:
    return MilestoneTracker(repo, resolver, dispatcher, thresholds=[10, 20, 30])


@pytest.fixture
def single_counter() -> InMemoryUsageCounter:
    return InMemoryUsageCounter("refresh", 10, timedelta(hours=1))


@pytest.fixture
def bulk_counter() -> InMemoryUsageCounter:
    return InMemoryUsageCounter("bulk_refresh", 50, timedelta(minutes=30))


@pytest.fixture
def service(repo, metrics, resolver, tracker, dispatcher, single_counter, bulk_counter) -> RefreshService:
    return RefreshService(
        repo=repo,
        provider=metrics,
        resolver=resolver,
        milestones=tracker,
        dispatcher=dispatcher,
        ledger=UsageLedger(repo),
        single_counter=single_counter,
        bulk_counter=bulk_counter,
        policy=RefreshPolicy(),
    )


@pytest.fixture
def app(
    repo: InMemoryRepository,
    metrics: FakeMetricsProvider,
    email_provider: RecordingEmailProvider,
    single_counter: InMemoryUsageCounter,
    bulk_counter: InMemoryUsageCounter,
) -> Generator[FastAPI, None, None]:
    """Application wired to in-memory collaborators (lifespan is not run)."""
    application = create_app()
    application.dependency_overrides[get_repository] = lambda: repo
    application.dependency_overrides[get_metrics_provider] = lambda: metrics
    application.dependency_overrides[get_email_provider] = lambda: email_provider
    application.dependency_overrides[get_usage_counters] = lambda: (single_counter, bulk_counter)
    yield application
    application.dependency_overrides.clear()
    reset_singletons()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
