"""Refresh orchestration for manual, bulk and scheduled DR updates.

One domain's cycle is strictly sequential: fetch, record usage, persist the
domain and its snapshot together, instant alert, milestones. Interactive
paths are admitted (paid plan, quota) before anything else happens and count
against the usage counter only for domains that were actually refreshed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from drtrack.db.models import Domain
from drtrack.email.service import EmailDispatcher
from drtrack.errors import DrtrackError, Forbidden, NotFound, RateLimited, UpstreamError
from drtrack.metrics.provider import MetricsProvider
from drtrack.notifications.milestones import MilestoneTracker
from drtrack.notifications.preferences import PreferenceResolver
from drtrack.refresh.policy import RefreshPolicy, Tier, tier_for
from drtrack.repository import Repository
from drtrack.usage.counter import UsageCounter, UsageWindow
from drtrack.usage.ledger import UsageLedger

logger = structlog.get_logger()


@dataclass
class RefreshResult:
    domain_id: int
    url: str
    previous_metric: int
    current_metric: int
    change: int
    last_checked: datetime
    backlinks: int | None = None
    referring_domains: int | None = None
    milestones: list[int] = field(default_factory=list)
    rate_limit: UsageWindow | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "domain_id": self.domain_id,
            "url": self.url,
            "previous_da": self.previous_metric,
            "current_da": self.current_metric,
            "da_change": self.change,
            "backlinks": self.backlinks,
            "referring_domains": self.referring_domains,
            "last_checked": self.last_checked.isoformat(),
            "milestones": self.milestones,
        }
        if self.rate_limit is not None:
            data["rate_limit"] = rate_limit_dict(self.rate_limit)
        return data


@dataclass
class BulkFailure:
    domain_id: int
    url: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"domain_id": self.domain_id, "url": self.url, "error": self.error}


@dataclass
class BulkRefreshResult:
    successful: list[RefreshResult]
    failed: list[BulkFailure]
    rate_limit: UsageWindow | None = None

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.successful) + len(self.failed),
            "successful": len(self.successful),
            "failed": len(self.failed),
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "summary": self.summary,
            "successful": [r.to_dict() for r in self.successful],
            "failed": [f.to_dict() for f in self.failed],
        }
        if self.rate_limit is not None:
            data["rate_limit"] = rate_limit_dict(self.rate_limit)
        return data


@dataclass
class SweepStats:
    total: int = 0
    processed: int = 0
    refreshed: int = 0
    skipped: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "refreshed": self.refreshed,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def rate_limit_dict(window: UsageWindow) -> dict[str, Any]:
    return {"limit": window.limit, "remaining": window.remaining, "reset_at": window.reset_at.isoformat()}


class RefreshService:
    def __init__(
        self,
        repo: Repository,
        provider: MetricsProvider,
        resolver: PreferenceResolver,
        milestones: MilestoneTracker,
        dispatcher: EmailDispatcher,
        ledger: UsageLedger,
        single_counter: UsageCounter,
        bulk_counter: UsageCounter,
        policy: RefreshPolicy | None = None,
    ) -> None:
        self.repo = repo
        self.provider = provider
        self.resolver = resolver
        self.milestones = milestones
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.single_counter = single_counter
        self.bulk_counter = bulk_counter
        self.policy = policy or RefreshPolicy()

    # --- Interactive ---

    async def refresh_one(self, domain_id: int, user_id: int, now: datetime | None = None) -> RefreshResult:
        """Manual refresh of one domain for its paid owner.

        Raises:
            NotFound: unknown, deleted or foreign domain.
            Forbidden: owner is not on the paid plan.
            RateLimited: the single-refresh quota is used up.
            UpstreamError: the provider or the write failed.
        """
        now = now or datetime.now(timezone.utc)
        domain = await self.repo.get_domain(domain_id)
        if domain is None or domain.is_deleted or domain.user_id != user_id:
            msg = f"Domain {domain_id} not found"
            raise NotFound(msg)
        owner = domain.owner
        if tier_for(owner.subscription_status) is not Tier.PAID:
            msg = "Manual refresh is only available for paid users"
            raise Forbidden(msg)
        contact = owner.email

        subject = str(user_id)
        async with self.single_counter.hold(subject):
            window = await self.single_counter.check(subject, now=now)
            if not window.allowed:
                logger.info("refresh_rate_limited", user_id=user_id, reset_at=window.reset_at.isoformat())
                raise RateLimited(reset_at=window.reset_at, limit=window.limit, remaining=window.remaining)

            result = await self._refresh(domain, contact, now)
            result.rate_limit = await self.single_counter.increment(subject, 1, now=now)

        return result

    async def bulk_refresh(self, user_id: int, now: datetime | None = None) -> BulkRefreshResult:
        """Refresh every active domain of a paid user, admitted as one batch."""
        now = now or datetime.now(timezone.utc)
        user = await self.repo.get_user(user_id)
        if user is None:
            msg = f"User {user_id} not found"
            raise NotFound(msg)
        if tier_for(user.subscription_status) is not Tier.PAID:
            msg = "Bulk refresh is only available for paid users"
            raise Forbidden(msg)
        contact = user.email

        domains = await self.repo.list_user_domains(user_id)
        if not domains:
            msg = "No domains found to refresh"
            raise NotFound(msg)

        subject = str(user_id)
        async with self.bulk_counter.hold(subject):
            window = await self.bulk_counter.check(subject, now=now)
            if not window.fits(len(domains)):
                logger.info(
                    "bulk_refresh_rate_limited",
                    user_id=user_id,
                    requested=len(domains),
                    remaining=window.remaining,
                )
                raise RateLimited(
                    reset_at=window.reset_at,
                    limit=window.limit,
                    requested=len(domains),
                    remaining=window.remaining,
                )

            # A failed write rolls the session back, so each domain is re-read by id.
            targets = [(d.id, d.url) for d in domains]
            successful: list[RefreshResult] = []
            failed: list[BulkFailure] = []
            for domain_id, url in targets:
                try:
                    domain = await self.repo.get_domain(domain_id)
                    if domain is None or domain.is_deleted:
                        msg = f"Domain {domain_id} not found"
                        raise NotFound(msg)
                    successful.append(await self._refresh(domain, contact, now))
                except Exception as exc:
                    logger.exception("bulk_refresh_domain_failed", domain_id=domain_id, user_id=user_id)
                    message = exc.message if isinstance(exc, DrtrackError) else str(exc)
                    failed.append(BulkFailure(domain_id=domain_id, url=url, error=message))

            window = await self.bulk_counter.increment(subject, len(successful), now=now)

        logger.info(
            "bulk_refresh_complete",
            user_id=user_id,
            successful=len(successful),
            failed=len(failed),
        )
        return BulkRefreshResult(successful=successful, failed=failed, rate_limit=window)

    # --- Scheduled ---

    async def run_sweep(self, now: datetime | None = None) -> SweepStats:
        """Refresh every due, active domain. Per-domain errors are counted, not raised."""
        now = now or datetime.now(timezone.utc)
        domain_ids = await self.repo.list_active_domain_ids()
        stats = SweepStats(total=len(domain_ids))
        logger.info("sweep_started", total=stats.total)

        for domain_id in domain_ids:
            stats.processed += 1
            try:
                domain = await self.repo.get_domain(domain_id)
                if domain is None or domain.is_deleted:
                    stats.skipped += 1
                    continue
                owner = domain.owner
                if owner is None:
                    logger.warning("sweep_domain_without_owner", domain_id=domain_id)
                    stats.skipped += 1
                    continue
                tier = tier_for(owner.subscription_status)
                if not self.policy.is_due(domain, tier, now):
                    next_due = self.policy.next_due_at(domain, tier)
                    logger.debug(
                        "sweep_domain_not_due",
                        domain_id=domain_id,
                        tier=tier.value,
                        next_due_at=next_due.isoformat() if next_due else None,
                    )
                    stats.skipped += 1
                    continue

                await self._refresh(domain, owner.email, now)
                stats.refreshed += 1
            except Exception:
                stats.errors += 1
                logger.exception("sweep_domain_failed", domain_id=domain_id)

        logger.info("sweep_complete", **stats.to_dict())
        return stats

    # --- One domain ---

    async def _refresh(self, domain: Domain, contact: str, now: datetime) -> RefreshResult:
        domain_id = domain.id
        url = domain.url
        normalized = domain.normalized_url
        previous = domain.current_da or 0

        metrics = await self.provider.fetch(normalized)
        await self.ledger.record(normalized, now=now)

        current = metrics.metric_value
        change = current - previous

        try:
            await self.repo.apply_refresh(
                domain_id,
                previous=previous,
                current=current,
                checked_at=now,
                backlinks=metrics.backlinks,
                referring_domains=metrics.referring_domains,
            )
        except Exception as exc:
            logger.exception("refresh_persist_failed", domain_id=domain_id)
            msg = f"Failed to save refreshed metrics for {normalized}"
            raise UpstreamError(msg) from exc

        logger.info("domain_refreshed", domain_id=domain_id, previous=previous, current=current, change=change)

        if change != 0:
            await self._instant_alert(domain_id, url, contact, previous, current, change)

        celebrated: list[int] = []
        try:
            celebrated = await self.milestones.check_and_celebrate(
                domain_id, url, previous, current, contact, now=now
            )
        except Exception:
            logger.exception("milestone_check_failed", domain_id=domain_id)

        return RefreshResult(
            domain_id=domain_id,
            url=url,
            previous_metric=previous,
            current_metric=current,
            change=change,
            last_checked=now,
            backlinks=metrics.backlinks,
            referring_domains=metrics.referring_domains,
            milestones=celebrated,
        )

    async def _instant_alert(
        self, domain_id: int, url: str, contact: str, previous: int, current: int, change: int
    ) -> None:
        try:
            if not await self.resolver.should_send_instant_alert(domain_id):
                return
            threshold = await self.resolver.get_change_threshold(domain_id)
            if abs(change) < threshold:
                logger.debug("instant_alert_below_threshold", domain_id=domain_id, change=change, threshold=threshold)
                return
            result = await self.dispatcher.send(
                contact,
                "dr_change_alert",
                {"domain": url, "old_da": previous, "new_da": current, "change": change},
                domain_id=domain_id,
            )
        except Exception:
            logger.exception("instant_alert_failed", domain_id=domain_id)
            return
        if not result.success:
            logger.warning("instant_alert_not_delivered", domain_id=domain_id, error=result.error)
