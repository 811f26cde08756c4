"""Usage ledger: one row per billable provider call, plus the monthly budget check."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import structlog

from drtrack.config import Settings
from drtrack.db.models import ApiUsage
from drtrack.repository import Repository

logger = structlog.get_logger()


@dataclass(frozen=True)
class BudgetStatus:
    total_spent: Decimal
    budget: Decimal
    warning_ratio: Decimal

    @property
    def percent_used(self) -> float:
        if self.budget <= 0:
            return 100.0
        return float(self.total_spent / self.budget * 100)

    @property
    def remaining(self) -> Decimal:
        return max(Decimal(0), self.budget - self.total_spent)

    @property
    def is_over_budget(self) -> bool:
        return self.total_spent >= self.budget

    @property
    def is_near_limit(self) -> bool:
        return self.total_spent >= self.budget * self.warning_ratio

    def to_dict(self) -> dict[str, object]:
        return {
            "total_spent": float(self.total_spent),
            "budget": float(self.budget),
            "percent_used": round(self.percent_used, 2),
            "remaining": float(self.remaining),
            "is_over_budget": self.is_over_budget,
            "is_near_limit": self.is_near_limit,
        }


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageLedger:
    def __init__(
        self,
        repo: Repository,
        provider: str = "karmalabs",
        cost_per_call: Decimal | float = Decimal("0.01"),
        monthly_budget: Decimal | float = Decimal(50),
        warning_ratio: Decimal | float = Decimal("0.8"),
    ) -> None:
        self.repo = repo
        self.provider = provider
        self.cost_per_call = Decimal(str(cost_per_call))
        self.monthly_budget = Decimal(str(monthly_budget))
        self.warning_ratio = Decimal(str(warning_ratio))

    @classmethod
    def from_settings(cls, repo: Repository, settings: Settings) -> UsageLedger:
        return cls(
            repo,
            provider=settings.metrics_provider_name,
            cost_per_call=settings.metrics_call_cost,
            monthly_budget=settings.monthly_budget,
            warning_ratio=settings.budget_warning_ratio,
        )

    async def record(self, subject: str, cost: Decimal | float | None = None, now: datetime | None = None) -> None:
        """Append a usage row. Failures are logged and never propagate."""
        entry = ApiUsage(
            provider=self.provider,
            subject=subject,
            cost=self.cost_per_call if cost is None else Decimal(str(cost)),
            created_at=now or datetime.now(timezone.utc),
        )
        try:
            await self.repo.add_api_usage(entry)
        except Exception:
            logger.exception("api_usage_record_failed", subject=subject, provider=self.provider)

    async def budget_status(self, now: datetime | None = None) -> BudgetStatus:
        now = now or datetime.now(timezone.utc)
        spent = await self.repo.sum_api_usage_since(month_start(now))
        return BudgetStatus(total_spent=Decimal(spent), budget=self.monthly_budget, warning_ratio=self.warning_ratio)

    async def can_make_api_call(self, now: datetime | None = None) -> bool:
        return not (await self.budget_status(now)).is_over_budget
