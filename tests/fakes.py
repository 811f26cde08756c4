"""In-memory collaborators for service-level tests."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from drtrack.db.models import (
    ApiUsage,
    Domain,
    DomainMilestone,
    DRSnapshot,
    EmailLog,
    NotificationPreferences,
    User,
)
from drtrack.email.service import BaseEmailProvider, EmailDeliveryError
from drtrack.errors import UpstreamError
from drtrack.metrics.provider import DomainMetrics, MetricsProvider
from drtrack.repository import CreateOutcome, Repository


class InMemoryRepository(Repository):
    """Dict-backed repository. Uniqueness rules mirror the database constraints."""

    def __init__(self) -> None:
        self.users: dict[int, User] = {}
        self.domains: dict[int, Domain] = {}
        self.snapshots: list[DRSnapshot] = []
        self.preferences: dict[int, NotificationPreferences] = {}
        self.milestones: dict[tuple[int, int], DomainMilestone] = {}
        self.api_usage: list[ApiUsage] = []
        self.email_logs: list[EmailLog] = []
        self.fail_apply_for: set[int] = set()
        self.fail_usage_writes = False
        self._next_id = 1

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    # --- Seeding helpers ---

    def add_user(self, email: str = "owner@example.com", subscription_status: str = "paid") -> User:
        user = User(id=self._id(), email=email, subscription_status=subscription_status)
        self.users[user.id] = user
        return user

    def add_domain(
        self,
        user: User,
        url: str = "example.com",
        current_da: int = 0,
        previous_da: int = 0,
        last_checked: datetime | None = None,
        deleted_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> Domain:
        domain = Domain(
            id=self._id(),
            user_id=user.id,
            url=url,
            normalized_url=url.lower(),
            current_da=current_da,
            previous_da=previous_da,
            da_change=current_da - previous_da,
            last_checked=last_checked,
            deleted_at=deleted_at,
            created_at=created_at,
        )
        domain.owner = user
        self.domains[domain.id] = domain
        return domain

    def add_snapshot(self, domain: Domain, value: int, recorded_at: datetime) -> DRSnapshot:
        snapshot = DRSnapshot(id=self._id(), domain_id=domain.id, da_value=value, recorded_at=recorded_at)
        self.snapshots.append(snapshot)
        return snapshot

    def snapshots_for(self, domain_id: int) -> list[DRSnapshot]:
        return [s for s in self.snapshots if s.domain_id == domain_id]

    # --- Users and domains ---

    async def get_user(self, user_id: int) -> User | None:
        return self.users.get(user_id)

    async def get_domain(self, domain_id: int) -> Domain | None:
        return self.domains.get(domain_id)

    def _active(self) -> Iterable[Domain]:
        return (d for d in sorted(self.domains.values(), key=lambda d: d.id) if d.deleted_at is None)

    async def list_active_domain_ids(self) -> list[int]:
        return [d.id for d in self._active()]

    async def list_user_domains(self, user_id: int) -> list[Domain]:
        return [d for d in self._active() if d.user_id == user_id]

    async def list_domains_checked_since(self, since: datetime) -> list[Domain]:
        return [d for d in self._active() if d.last_checked is not None and d.last_checked >= since]

    async def list_users_with_domains(self) -> list[tuple[User, list[Domain]]]:
        owned = []
        for user in sorted(self.users.values(), key=lambda u: u.id):
            domains = [d for d in self._active() if d.user_id == user.id]
            if domains:
                owned.append((user, domains))
        return owned

    async def apply_refresh(
        self,
        domain_id: int,
        *,
        previous: int,
        current: int,
        checked_at: datetime,
        backlinks: int | None = None,
        referring_domains: int | None = None,
    ) -> DRSnapshot:
        if domain_id in self.fail_apply_for:
            msg = "write failed"
            raise RuntimeError(msg)
        domain = self.domains[domain_id]
        domain.previous_da = previous
        domain.current_da = current
        domain.da_change = current - previous
        domain.last_checked = checked_at
        snapshot = DRSnapshot(
            id=self._id(),
            domain_id=domain_id,
            da_value=current,
            backlinks=backlinks,
            referring_domains=referring_domains,
            recorded_at=checked_at,
        )
        self.snapshots.append(snapshot)
        return snapshot

    async def snapshots_between(self, domain_ids: list[int], start: datetime, end: datetime) -> list[DRSnapshot]:
        wanted = set(domain_ids)
        return [s for s in self.snapshots if s.domain_id in wanted and start <= s.recorded_at < end]

    # --- Notification preferences ---

    async def get_preferences(self, domain_id: int) -> NotificationPreferences | None:
        return self.preferences.get(domain_id)

    async def create_preferences(self, preferences: NotificationPreferences) -> CreateOutcome:
        if preferences.domain_id in self.preferences:
            return CreateOutcome.ALREADY_EXISTS
        self.preferences[preferences.domain_id] = preferences
        return CreateOutcome.CREATED

    async def save_preferences(self, preferences: NotificationPreferences) -> None:
        self.preferences[preferences.domain_id] = preferences

    # --- Milestones ---

    async def celebrated_thresholds(self, domain_id: int) -> set[int]:
        return {t for (d, t), m in self.milestones.items() if d == domain_id and m.celebrated}

    async def get_milestone(self, domain_id: int, threshold: int) -> DomainMilestone | None:
        return self.milestones.get((domain_id, threshold))

    async def create_milestone(self, milestone: DomainMilestone) -> CreateOutcome:
        key = (milestone.domain_id, milestone.threshold)
        if key in self.milestones:
            return CreateOutcome.ALREADY_EXISTS
        milestone.id = self._id()
        self.milestones[key] = milestone
        return CreateOutcome.CREATED

    async def mark_celebrated(self, domain_id: int, threshold: int, when: datetime) -> bool:
        record = self.milestones.get((domain_id, threshold))
        if record is None or record.celebrated:
            return False
        record.celebrated = True
        record.celebrated_at = when
        return True

    # --- Ledger and audit ---

    async def add_api_usage(self, usage: ApiUsage) -> None:
        if self.fail_usage_writes:
            msg = "ledger unavailable"
            raise RuntimeError(msg)
        self.api_usage.append(usage)

    async def sum_api_usage_since(self, since: datetime) -> Decimal:
        return sum((u.cost for u in self.api_usage if u.created_at >= since), Decimal(0))

    async def add_email_log(self, log: EmailLog) -> None:
        self.email_logs.append(log)


class FakeMetricsProvider(MetricsProvider):
    """Returns scripted values per normalized domain; missing domains fail upstream."""

    name = "fake"

    def __init__(self, values: dict[str, int] | None = None) -> None:
        self.values = dict(values or {})
        self.calls: list[str] = []

    async def fetch(self, normalized: str) -> DomainMetrics:
        self.calls.append(normalized)
        if normalized not in self.values:
            msg = f"no metrics for {normalized}"
            raise UpstreamError(msg)
        return DomainMetrics(domain=normalized, metric_value=self.values[normalized], backlinks=100, referring_domains=10)


class RecordingEmailProvider(BaseEmailProvider):
    """Collects delivered messages instead of sending them."""

    name = "recording"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict[str, str]] = []

    async def deliver(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if self.fail:
            msg = "provider rejected the message"
            raise EmailDeliveryError(msg)
        self.sent.append({"to": to_email, "subject": subject, "html": html_body, "text": text_body})

    def subjects(self) -> list[str]:
        return [m["subject"] for m in self.sent]
