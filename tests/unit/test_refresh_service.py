"""Refresh orchestration: manual, bulk and scheduled sweep."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import ANY, patch

import pytest

from drtrack.errors import Forbidden, NotFound, RateLimited, UpstreamError


@pytest.fixture
def paid_user(repo):
    return repo.add_user("paid@example.com", "paid")


@pytest.fixture
def free_user(repo):
    return repo.add_user("free@example.com", "free")


class TestRefreshOne:
    async def test_updates_domain_and_snapshot(self, repo, service, metrics, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com", current_da=15, previous_da=12)
        metrics.values["example.com"] = 18

        result = await service.refresh_one(domain.id, paid_user.id, now=now)

        assert (result.previous_metric, result.current_metric, result.change) == (15, 18, 3)
        assert domain.previous_da == 15
        assert domain.current_da == 18
        assert domain.da_change == domain.current_da - domain.previous_da
        assert domain.last_checked == now
        [snapshot] = repo.snapshots_for(domain.id)
        assert (snapshot.da_value, snapshot.backlinks, snapshot.referring_domains) == (18, 100, 10)
        assert [u.subject for u in repo.api_usage] == ["example.com"]

    async def test_counts_against_single_quota(self, repo, service, metrics, single_counter, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com")
        metrics.values["example.com"] = 5
        result = await service.refresh_one(domain.id, paid_user.id, now=now)
        assert result.rate_limit.count == 1
        assert result.rate_limit.remaining == 9
        assert (await single_counter.check(str(paid_user.id), now=now)).count == 1

    async def test_free_user_forbidden_before_any_side_effect(self, repo, service, metrics, free_user, now):
        domain = repo.add_domain(free_user, "example.com")
        metrics.values["example.com"] = 5
        with pytest.raises(Forbidden):
            await service.refresh_one(domain.id, free_user.id, now=now)
        assert metrics.calls == []
        assert repo.snapshots == []

    async def test_rate_limited_carries_reset_at(self, repo, service, metrics, single_counter, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com")
        metrics.values["example.com"] = 5
        await single_counter.increment(str(paid_user.id), amount=10, now=now)

        with pytest.raises(RateLimited) as exc_info:
            await service.refresh_one(domain.id, paid_user.id, now=now + timedelta(minutes=5))
        assert exc_info.value.reset_at == now + timedelta(hours=1)
        assert metrics.calls == []

    async def test_quota_available_again_at_reset(self, repo, service, metrics, single_counter, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com")
        metrics.values["example.com"] = 5
        await single_counter.increment(str(paid_user.id), amount=10, now=now)
        result = await service.refresh_one(domain.id, paid_user.id, now=now + timedelta(hours=1))
        assert result.rate_limit.count == 1

    async def test_upstream_failure_leaves_domain_untouched(self, repo, service, single_counter, paid_user, now):
        domain = repo.add_domain(paid_user, "down.example", current_da=40)
        with pytest.raises(UpstreamError):
            await service.refresh_one(domain.id, paid_user.id, now=now)
        assert domain.current_da == 40
        assert domain.last_checked is None
        assert repo.snapshots == []
        assert (await single_counter.check(str(paid_user.id), now=now)).count == 0

    async def test_write_failure_surfaces_as_upstream(self, repo, service, metrics, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com", current_da=10)
        metrics.values["example.com"] = 11
        repo.fail_apply_for.add(domain.id)
        with pytest.raises(UpstreamError):
            await service.refresh_one(domain.id, paid_user.id, now=now)

    async def test_ledger_failure_does_not_block(self, repo, service, metrics, paid_user, now):
        domain = repo.add_domain(paid_user, "example.com")
        metrics.values["example.com"] = 7
        repo.fail_usage_writes = True
        result = await service.refresh_one(domain.id, paid_user.id, now=now)
        assert result.current_metric == 7

    @pytest.mark.parametrize("scenario", ["missing", "deleted", "foreign"])
    async def test_not_found(self, repo, service, paid_user, now, scenario):
        other = repo.add_user("other@example.com", "paid")
        if scenario == "missing":
            domain_id = 999
        elif scenario == "deleted":
            domain_id = repo.add_domain(paid_user, "gone.example", deleted_at=now).id
        else:
            domain_id = repo.add_domain(other, "theirs.example").id
        with pytest.raises(NotFound):
            await service.refresh_one(domain_id, paid_user.id, now=now)


class TestInstantAlert:
    async def _refresh(self, repo, service, metrics, resolver, user, now, old, new, **prefs):
        domain = repo.add_domain(user, "alert.example", current_da=old)
        await resolver.update_preferences(domain.id, prefs, now=now)
        metrics.values["alert.example"] = new
        await service.refresh_one(domain.id, user.id, now=now)

    def _alerts(self, email_provider):
        return [s for s in email_provider.subjects() if s.startswith("DR Change Alert")]

    async def test_below_threshold_not_sent(self, repo, service, metrics, resolver, email_provider, paid_user, now):
        await self._refresh(repo, service, metrics, resolver, paid_user, now, 41, 44,
                            instant_alerts=True, change_threshold=5)
        assert self._alerts(email_provider) == []

    async def test_at_threshold_sent(self, repo, service, metrics, resolver, email_provider, paid_user, now):
        await self._refresh(repo, service, metrics, resolver, paid_user, now, 41, 46,
                            instant_alerts=True, change_threshold=5)
        assert self._alerts(email_provider) == ["DR Change Alert: alert.example +5"]

    async def test_negative_change_uses_magnitude(self, repo, service, metrics, resolver, email_provider,
                                                  paid_user, now):
        await self._refresh(repo, service, metrics, resolver, paid_user, now, 46, 39,
                            instant_alerts=True, change_threshold=5)
        assert self._alerts(email_provider) == ["DR Change Alert: alert.example -7"]

    async def test_disabled_never_sent(self, repo, service, metrics, resolver, email_provider, paid_user, now):
        await self._refresh(repo, service, metrics, resolver, paid_user, now, 41, 90,
                            instant_alerts=False, change_threshold=1)
        assert self._alerts(email_provider) == []

    async def test_no_change_no_alert(self, repo, service, metrics, resolver, email_provider, paid_user, now):
        await self._refresh(repo, service, metrics, resolver, paid_user, now, 41, 41,
                            instant_alerts=True, change_threshold=1)
        assert self._alerts(email_provider) == []


class TestBulkRefresh:
    async def test_refreshes_all_and_collects_failures(self, repo, service, metrics, bulk_counter, paid_user, now):
        ok = repo.add_domain(paid_user, "ok.example", current_da=10)
        bad = repo.add_domain(paid_user, "bad.example", current_da=20)
        metrics.values["ok.example"] = 12

        result = await service.bulk_refresh(paid_user.id, now=now)

        assert [r.domain_id for r in result.successful] == [ok.id]
        assert [f.domain_id for f in result.failed] == [bad.id]
        assert result.summary == {"total": 2, "successful": 1, "failed": 1}
        assert bad.current_da == 20
        assert (await bulk_counter.check(str(paid_user.id), now=now)).count == 1

    async def test_batch_larger_than_remaining_quota_is_rejected_whole(
        self, repo, service, metrics, bulk_counter, paid_user, now
    ):
        for n in range(10):
            repo.add_domain(paid_user, f"site{n}.example")
            metrics.values[f"site{n}.example"] = 30
        await bulk_counter.increment(str(paid_user.id), amount=45, now=now)

        with pytest.raises(RateLimited) as exc_info:
            await service.bulk_refresh(paid_user.id, now=now)

        assert exc_info.value.requested == 10
        assert exc_info.value.remaining == 5
        assert metrics.calls == []
        assert repo.snapshots == []
        assert (await bulk_counter.check(str(paid_user.id), now=now)).count == 45

    async def test_exact_fit_admitted(self, repo, service, metrics, bulk_counter, paid_user, now):
        for n in range(5):
            repo.add_domain(paid_user, f"site{n}.example")
            metrics.values[f"site{n}.example"] = 30
        await bulk_counter.increment(str(paid_user.id), amount=45, now=now)
        result = await service.bulk_refresh(paid_user.id, now=now)
        assert len(result.successful) == 5
        assert result.rate_limit.remaining == 0

    async def test_free_user_forbidden(self, repo, service, free_user, now):
        repo.add_domain(free_user, "free.example")
        with pytest.raises(Forbidden):
            await service.bulk_refresh(free_user.id, now=now)

    async def test_no_domains(self, service, paid_user, now):
        with pytest.raises(NotFound):
            await service.bulk_refresh(paid_user.id, now=now)

    async def test_unknown_user(self, service, now):
        with pytest.raises(NotFound):
            await service.bulk_refresh(12345, now=now)

    async def test_single_and_bulk_quotas_are_independent(
        self, repo, service, metrics, single_counter, paid_user, now
    ):
        repo.add_domain(paid_user, "ok.example")
        metrics.values["ok.example"] = 3
        await single_counter.increment(str(paid_user.id), amount=10, now=now)
        result = await service.bulk_refresh(paid_user.id, now=now)
        assert len(result.successful) == 1


class TestSweep:
    async def test_scenario_never_checked_free_domain(self, repo, service, metrics, email_provider, free_user, now):
        domain = repo.add_domain(free_user, "example.com", current_da=15)
        metrics.values["example.com"] = 18

        stats = await service.run_sweep(now=now)

        assert stats.refreshed == 1
        assert (domain.previous_da, domain.current_da, domain.da_change) == (15, 18, 3)
        assert repo.milestones == {}
        assert email_provider.sent == []

    async def test_scenario_crossing_twenty(self, repo, service, metrics, email_provider, free_user, now):
        domain = repo.add_domain(free_user, "example.com", current_da=18, previous_da=15,
                                 last_checked=now - timedelta(days=1))
        metrics.values["example.com"] = 24

        await service.run_sweep(now=now)

        assert domain.da_change == 6
        assert [t for (_, t), m in repo.milestones.items() if m.celebrated] == [20]
        assert email_provider.subjects() == ["Milestone reached: example.com hit DR 20"]

    async def test_skips_not_due_and_deleted(self, repo, service, metrics, paid_user, free_user, now):
        repo.add_domain(paid_user, "paid-recent.example", last_checked=now - timedelta(hours=5))
        due_paid = repo.add_domain(paid_user, "paid-due.example", last_checked=now - timedelta(hours=6))
        repo.add_domain(free_user, "free-recent.example", last_checked=now - timedelta(hours=23))
        repo.add_domain(free_user, "deleted.example", deleted_at=now)
        for name in ("paid-recent", "paid-due", "free-recent", "deleted"):
            metrics.values[f"{name}.example"] = 1

        stats = await service.run_sweep(now=now)

        assert metrics.calls == [due_paid.normalized_url]
        assert stats.to_dict() == {"total": 3, "processed": 3, "refreshed": 1, "skipped": 2, "errors": 0}

    async def test_continues_past_errors(self, repo, service, metrics, free_user, now):
        repo.add_domain(free_user, "broken.example")
        good = repo.add_domain(free_user, "good.example")
        metrics.values["good.example"] = 33

        stats = await service.run_sweep(now=now)

        assert stats.errors == 1
        assert stats.refreshed == 1
        assert good.current_da == 33

    async def test_sweep_does_not_touch_usage_counters(self, repo, service, metrics, single_counter, paid_user, now):
        repo.add_domain(paid_user, "example.com")
        metrics.values["example.com"] = 5
        await service.run_sweep(now=now)
        assert (await single_counter.check(str(paid_user.id), now=now)).count == 0

    async def test_not_due_log_reports_next_due_time(self, repo, service, metrics, paid_user, now):
        repo.add_domain(paid_user, "recent.example", last_checked=now - timedelta(hours=2))

        with patch("drtrack.refresh.service.logger") as logger:
            await service.run_sweep(now=now)

        logger.debug.assert_any_call(
            "sweep_domain_not_due",
            domain_id=ANY,
            tier="paid",
            next_due_at=(now + timedelta(hours=4)).isoformat(),
        )
        assert metrics.calls == []
