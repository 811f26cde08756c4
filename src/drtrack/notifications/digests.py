"""Scheduled notification digests: daily batch, weekly recap, inactivity warnings.

Each owner's opt-in is read from the preferences of their first (oldest)
domain. Rows are copied into plain views before any email goes out, so a
failed audit write cannot expire objects still being iterated.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from drtrack.db.models import Domain, User
from drtrack.email.service import EmailDispatcher
from drtrack.notifications.preferences import PreferenceResolver
from drtrack.refresh.policy import Tier, tier_for
from drtrack.repository import Repository

logger = structlog.get_logger()


@dataclass(frozen=True)
class DomainView:
    id: int
    url: str
    previous_da: int
    current_da: int
    da_change: int
    last_checked: datetime | None

    @classmethod
    def of(cls, domain: Domain) -> DomainView:
        return cls(
            id=domain.id,
            url=domain.url,
            previous_da=domain.previous_da,
            current_da=domain.current_da,
            da_change=domain.da_change,
            last_checked=domain.last_checked,
        )


@dataclass
class OwnerView:
    user_id: int
    email: str
    tier: Tier
    domains: list[DomainView] = field(default_factory=list)

    @classmethod
    def of(cls, user: User, domains: Iterable[Domain]) -> OwnerView:
        return cls(
            user_id=user.id,
            email=user.email,
            tier=tier_for(user.subscription_status),
            domains=[DomainView.of(d) for d in domains],
        )


@dataclass
class DailyBatchStats:
    domains_updated: int = 0
    users_processed: int = 0
    emails_sent: int = 0
    emails_skipped: int = 0
    emails_failed: int = 0


@dataclass
class WeeklyRecapStats:
    week_start: str = ""
    week_end: str = ""
    ran: bool = True
    users_processed: int = 0
    emails_sent: int = 0
    emails_skipped: int = 0
    emails_failed: int = 0


@dataclass
class InactivityStats:
    users_processed: int = 0
    warnings_sent: dict[int, int] = field(default_factory=dict)
    warnings_skipped: int = 0
    errors: int = 0


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Previous Monday 00:00 UTC and this week's Monday 00:00 UTC."""
    this_monday = (now - timedelta(days=now.weekday())).replace(hour=0, minute=0, second=0, microsecond=0)
    return this_monday - timedelta(days=7), this_monday


def days_since(last: datetime, now: datetime) -> int:
    return int((now - last).total_seconds() // 86400)


def _batched(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class DigestService:
    def __init__(
        self,
        repo: Repository,
        resolver: PreferenceResolver,
        dispatcher: EmailDispatcher,
        batch_size: int = 10,
        batch_delay: float = 1.0,
        inactivity_days: Iterable[int] = (7, 9),
    ) -> None:
        self.repo = repo
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.inactivity_days = frozenset(inactivity_days)

    async def _owners(self) -> list[OwnerView]:
        return [OwnerView.of(user, domains) for user, domains in await self.repo.list_users_with_domains()]

    # --- Daily batch ---

    async def send_daily_batches(self, now: datetime | None = None) -> DailyBatchStats:
        """One summary email per free-tier owner whose domains changed in the last 24 hours."""
        now = now or datetime.now(timezone.utc)
        domains = await self.repo.list_domains_checked_since(now - timedelta(hours=24))
        stats = DailyBatchStats(domains_updated=len(domains))

        owners: dict[int, OwnerView] = {}
        for domain in domains:
            owner = domain.owner
            if owner is None or tier_for(owner.subscription_status) is Tier.PAID:
                continue
            view = owners.get(owner.id)
            if view is None:
                view = owners[owner.id] = OwnerView.of(owner, [])
            view.domains.append(DomainView.of(domain))

        stats.users_processed = len(owners)
        for owner in owners.values():
            try:
                if not await self.resolver.should_send_daily_batch(owner.domains[0].id):
                    stats.emails_skipped += 1
                    continue
                changed = [d for d in owner.domains if d.da_change != 0]
                if not changed:
                    stats.emails_skipped += 1
                    continue

                result = await self.dispatcher.send(
                    owner.email,
                    "daily_batch",
                    {
                        "domains": [
                            {"domain": d.url, "old_da": d.previous_da, "new_da": d.current_da, "change": d.da_change}
                            for d in changed
                        ]
                    },
                )
            except Exception:
                logger.exception("daily_batch_user_failed", user_id=owner.user_id)
                stats.emails_failed += 1
                continue
            if result.success:
                stats.emails_sent += 1
            else:
                stats.emails_failed += 1

        logger.info("daily_batch_complete", **stats.__dict__)
        return stats

    # --- Weekly recap ---

    async def send_weekly_recaps(self, now: datetime | None = None) -> WeeklyRecapStats:
        """Monday recap of last week's snapshots. Does nothing on other days."""
        now = now or datetime.now(timezone.utc)
        if now.weekday() != 0:
            logger.info("weekly_recap_not_monday", weekday=now.weekday())
            return WeeklyRecapStats(ran=False)

        start, end = week_bounds(now)
        stats = WeeklyRecapStats(week_start=start.date().isoformat(), week_end=end.date().isoformat())
        owners = await self._owners()
        stats.users_processed = len(owners)

        for index, batch in enumerate(_batched(owners, self.batch_size)):
            if index and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            for owner in batch:
                try:
                    outcome = await self._send_recap(owner, start, end, stats)
                except Exception:
                    logger.exception("weekly_recap_user_failed", user_id=owner.user_id)
                    outcome = "failed"
                if outcome == "sent":
                    stats.emails_sent += 1
                elif outcome == "skipped":
                    stats.emails_skipped += 1
                else:
                    stats.emails_failed += 1

        logger.info("weekly_recap_complete", **stats.__dict__)
        return stats

    async def _send_recap(self, owner: OwnerView, start: datetime, end: datetime, stats: WeeklyRecapStats) -> str:
        if not owner.domains or not await self.resolver.should_send_weekly_recap(owner.domains[0].id):
            return "skipped"

        snapshots = await self.repo.snapshots_between([d.id for d in owner.domains], start, end)
        week_start_value: dict[int, int] = {}
        for snapshot in sorted(snapshots, key=lambda s: s.recorded_at):
            week_start_value.setdefault(snapshot.domain_id, snapshot.da_value)

        tracked = [d for d in owner.domains if d.id in week_start_value]
        if not tracked:
            return "skipped"

        by_change = sorted(tracked, key=lambda d: d.da_change, reverse=True)
        top, bottom = by_change[0], by_change[-1]
        result = await self.dispatcher.send(
            owner.email,
            "weekly_recap",
            {
                "total_domains": len(tracked),
                "average_da": sum(d.current_da for d in tracked) / len(tracked),
                "top_performer": {"domain": top.url, "da": top.current_da, "change": top.da_change},
                "biggest_loser": {"domain": bottom.url, "da": bottom.current_da, "change": bottom.da_change},
                "week_start": stats.week_start,
                "week_end": stats.week_end,
            },
        )
        return "sent" if result.success else "failed"

    # --- Inactivity ---

    async def send_inactivity_warnings(self, now: datetime | None = None) -> InactivityStats:
        """Warn owners whose most recent domain check was exactly 7 or 9 whole days ago."""
        now = now or datetime.now(timezone.utc)
        owners = await self._owners()
        stats = InactivityStats(users_processed=len(owners), warnings_sent={d: 0 for d in sorted(self.inactivity_days)})

        for owner in owners:
            checked = [d.last_checked for d in owner.domains if d.last_checked is not None]
            if not checked:
                continue
            days = days_since(max(checked), now)
            if days not in self.inactivity_days:
                continue
            try:
                if not await self.resolver.should_send_inactivity_warning(owner.domains[0].id):
                    stats.warnings_skipped += 1
                    continue
                result = await self.dispatcher.send(
                    owner.email,
                    "inactivity_warning",
                    {"days_inactive": days, "domain_count": len(owner.domains)},
                )
            except Exception:
                logger.exception("inactivity_warning_user_failed", user_id=owner.user_id)
                stats.errors += 1
                continue
            if result.success:
                stats.warnings_sent[days] += 1
            else:
                stats.errors += 1

        logger.info(
            "inactivity_warnings_complete",
            users_processed=stats.users_processed,
            warnings_sent=stats.warnings_sent,
            warnings_skipped=stats.warnings_skipped,
        )
        return stats
