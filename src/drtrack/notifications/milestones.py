"""Milestone tracking: celebrate each DR threshold crossing at most once per domain.

The ``(domain_id, threshold)`` unique constraint is the real safeguard. The
``celebrated_thresholds`` pre-read only saves a round trip per threshold.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog

from drtrack.db.models import DomainMilestone
from drtrack.email.service import EmailDispatcher
from drtrack.errors import ConflictIgnored
from drtrack.notifications.preferences import PreferenceResolver
from drtrack.repository import CreateOutcome, Repository

logger = structlog.get_logger()

DEFAULT_THRESHOLDS = (10, 20, 30, 40, 50, 60, 70, 80, 90, 100)


def crossed_thresholds(thresholds: Iterable[int], old_value: int, new_value: int) -> list[int]:
    """Thresholds ``t`` with ``old_value < t <= new_value``, ascending."""
    return [t for t in sorted(thresholds) if old_value < t <= new_value]


class MilestoneTracker:
    def __init__(
        self,
        repo: Repository,
        resolver: PreferenceResolver,
        dispatcher: EmailDispatcher,
        thresholds: Iterable[int] = DEFAULT_THRESHOLDS,
    ) -> None:
        self.repo = repo
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.thresholds = tuple(sorted(set(thresholds)))

    async def check_and_celebrate(
        self,
        domain_id: int,
        domain_label: str,
        old_value: int,
        new_value: int,
        contact: str,
        now: datetime | None = None,
    ) -> list[int]:
        """Record and email every newly crossed threshold. Returns those celebrated here.

        Takes plain values rather than the ORM row so that a rolled-back session
        earlier in the refresh cannot expire what this needs to read.
        """
        achieved = crossed_thresholds(self.thresholds, old_value, new_value)
        if not achieved:
            return []

        if not await self.resolver.should_send_milestone_celebration(domain_id):
            logger.debug("milestones_disabled", domain_id=domain_id, achieved=achieved)
            return []

        already = await self.repo.celebrated_thresholds(domain_id)
        new_ones = [t for t in achieved if t not in already]

        celebrated: list[int] = []
        for threshold in new_ones:
            try:
                claimed = await self._claim(domain_id, threshold, now or datetime.now(timezone.utc))
            except ConflictIgnored:
                logger.debug("milestone_already_celebrated", domain_id=domain_id, threshold=threshold)
                continue
            except Exception:
                logger.exception("milestone_record_failed", domain_id=domain_id, threshold=threshold)
                continue
            if not claimed:
                continue

            celebrated.append(threshold)
            result = await self.dispatcher.send(
                contact,
                "milestone_celebration",
                {"domain": domain_label, "milestone": threshold},
                domain_id=domain_id,
            )
            if result.success:
                logger.info("milestone_celebrated", domain_id=domain_id, threshold=threshold)
            else:
                logger.warning(
                    "milestone_email_failed", domain_id=domain_id, threshold=threshold, error=result.error
                )

        return celebrated

    async def _claim(self, domain_id: int, threshold: int, now: datetime) -> bool:
        """Persist the celebrated record. True if this call owns the celebration.

        Raises ConflictIgnored when another writer already celebrated it.
        """
        record = DomainMilestone(
            domain_id=domain_id,
            threshold=threshold,
            celebrated=True,
            created_at=now,
            celebrated_at=now,
        )
        outcome = await self.repo.create_milestone(record)
        if outcome is CreateOutcome.CREATED:
            return True

        existing = await self.repo.get_milestone(domain_id, threshold)
        if existing is None or existing.celebrated:
            msg = f"Milestone {threshold} already recorded for domain {domain_id}"
            raise ConflictIgnored(msg)
        return await self.repo.mark_celebrated(domain_id, threshold, now)
