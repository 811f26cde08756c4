"""Refresh interval policy: paid every 6h, free every 24h, never-checked always due."""

from datetime import datetime, timedelta, timezone

import pytest

from drtrack.db.models import Domain
from drtrack.refresh.policy import RefreshPolicy, Tier, tier_for

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _domain(last_checked):
    return Domain(id=1, user_id=1, url="example.com", normalized_url="example.com", last_checked=last_checked)


class TestTierFor:
    def test_paid(self):
        assert tier_for("paid") is Tier.PAID

    @pytest.mark.parametrize("status", ["free", "cancelled", None, ""])
    def test_everything_else_is_free(self, status):
        assert tier_for(status) is Tier.FREE


class TestIsDue:
    def test_never_checked_is_always_due(self):
        policy = RefreshPolicy()
        assert policy.is_due(_domain(None), Tier.PAID, NOW) is True
        assert policy.is_due(_domain(None), Tier.FREE, NOW) is True

    @pytest.mark.parametrize(
        ("tier", "age", "due"),
        [
            (Tier.PAID, timedelta(hours=5, minutes=59), False),
            (Tier.PAID, timedelta(hours=6), True),
            (Tier.PAID, timedelta(hours=7), True),
            (Tier.FREE, timedelta(hours=6), False),
            (Tier.FREE, timedelta(hours=23, minutes=59, seconds=59), False),
            (Tier.FREE, timedelta(hours=24), True),
        ],
    )
    def test_interval_boundaries(self, tier, age, due):
        assert RefreshPolicy().is_due(_domain(NOW - age), tier, NOW) is due

    def test_custom_intervals(self):
        policy = RefreshPolicy.from_hours(paid_hours=1, free_hours=2)
        assert policy.interval(Tier.PAID) == timedelta(hours=1)
        assert policy.is_due(_domain(NOW - timedelta(hours=1)), Tier.PAID, NOW) is True
        assert policy.is_due(_domain(NOW - timedelta(hours=1)), Tier.FREE, NOW) is False

    def test_next_due_at(self):
        policy = RefreshPolicy()
        checked = NOW - timedelta(hours=2)
        assert policy.next_due_at(_domain(checked), Tier.PAID) == checked + timedelta(hours=6)
        assert policy.next_due_at(_domain(None), Tier.FREE) is None
