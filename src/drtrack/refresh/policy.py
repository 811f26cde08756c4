"""Tiered refresh interval policy.

Paid domains refresh every 6 hours, free domains every 24 hours. A domain
that has never been checked is always due. Soft-deleted domains are
filtered out by the caller before the policy is consulted.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta

from drtrack.db.models import Domain


class Tier(str, enum.Enum):
    FREE = "free"
    PAID = "paid"


REFRESH_INTERVALS: dict[Tier, timedelta] = {
    Tier.PAID: timedelta(hours=6),
    Tier.FREE: timedelta(hours=24),
}


def tier_for(subscription_status: str | None) -> Tier:
    """Only an active paid subscription counts as paid. Cancelled is free."""
    return Tier.PAID if subscription_status == Tier.PAID.value else Tier.FREE


class RefreshPolicy:
    """Decides whether a domain is due for an automatic refresh."""

    def __init__(self, intervals: dict[Tier, timedelta] | None = None) -> None:
        self.intervals = dict(intervals or REFRESH_INTERVALS)

    @classmethod
    def from_hours(cls, paid_hours: int, free_hours: int) -> RefreshPolicy:
        return cls({Tier.PAID: timedelta(hours=paid_hours), Tier.FREE: timedelta(hours=free_hours)})

    def interval(self, tier: Tier) -> timedelta:
        return self.intervals[tier]

    def is_due(self, domain: Domain, tier: Tier, now: datetime) -> bool:
        if domain.last_checked is None:
            return True
        return now - domain.last_checked >= self.interval(tier)

    def next_due_at(self, domain: Domain, tier: Tier) -> datetime | None:
        """When the domain next becomes due, or None if it already is (never checked)."""
        if domain.last_checked is None:
            return None
        return domain.last_checked + self.interval(tier)
