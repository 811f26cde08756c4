"""SQLAlchemy-backed repository."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from drtrack.db.models import (
    ApiUsage,
    Domain,
    DomainMilestone,
    DRSnapshot,
    EmailLog,
    NotificationPreferences,
    User,
)
from drtrack.repository import CreateOutcome, Repository

logger = structlog.get_logger()


class SqlRepository(Repository):
    """Repository over one ``AsyncSession``. Every write commits."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    # --- Users and domains ---

    async def get_user(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def get_domain(self, domain_id: int) -> Domain | None:
        result = await self.db.execute(
            select(Domain)
            .where(Domain.id == domain_id)
            .options(selectinload(Domain.owner))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_active_domain_ids(self) -> list[int]:
        result = await self.db.execute(
            select(Domain.id).where(Domain.deleted_at.is_(None)).order_by(Domain.id)
        )
        return list(result.scalars().all())

    async def list_user_domains(self, user_id: int) -> list[Domain]:
        result = await self.db.execute(
            select(Domain)
            .where(Domain.user_id == user_id, Domain.deleted_at.is_(None))
            .options(selectinload(Domain.owner))
            .order_by(Domain.created_at, Domain.id)
        )
        return list(result.scalars().all())

    async def list_domains_checked_since(self, since: datetime) -> list[Domain]:
        result = await self.db.execute(
            select(Domain)
            .where(Domain.deleted_at.is_(None), Domain.last_checked >= since)
            .options(selectinload(Domain.owner))
            .order_by(Domain.user_id, Domain.id)
        )
        return list(result.scalars().all())

    async def list_users_with_domains(self) -> list[tuple[User, list[Domain]]]:
        result = await self.db.execute(
            select(User)
            .where(User.domains.any(Domain.deleted_at.is_(None)))
            .options(selectinload(User.domains.and_(Domain.deleted_at.is_(None))))
            .order_by(User.id)
        )
        return [(user, sorted(user.domains, key=lambda d: d.id)) for user in result.scalars().all()]

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
        snapshot = DRSnapshot(
            domain_id=domain_id,
            da_value=current,
            backlinks=backlinks,
            referring_domains=referring_domains,
            recorded_at=checked_at,
        )
        await self.db.execute(
            update(Domain)
            .where(Domain.id == domain_id)
            .values(
                previous_da=previous,
                current_da=current,
                da_change=current - previous,
                last_checked=checked_at,
            )
        )
        self.db.add(snapshot)
        await self._commit()
        return snapshot

    async def snapshots_between(
        self, domain_ids: list[int], start: datetime, end: datetime
    ) -> list[DRSnapshot]:
        if not domain_ids:
            return []
        result = await self.db.execute(
            select(DRSnapshot)
            .where(
                DRSnapshot.domain_id.in_(domain_ids),
                DRSnapshot.recorded_at >= start,
                DRSnapshot.recorded_at < end,
            )
            .order_by(DRSnapshot.recorded_at)
        )
        return list(result.scalars().all())

    # --- Notification preferences ---

    async def get_preferences(self, domain_id: int) -> NotificationPreferences | None:
        return await self.db.get(NotificationPreferences, domain_id)

    async def create_preferences(self, preferences: NotificationPreferences) -> CreateOutcome:
        try:
            async with self.db.begin_nested():
                self.db.add(preferences)
        except IntegrityError:
            logger.debug("preferences_create_conflict", domain_id=preferences.domain_id)
            return CreateOutcome.ALREADY_EXISTS
        await self._commit()
        return CreateOutcome.CREATED

    async def save_preferences(self, preferences: NotificationPreferences) -> None:
        self.db.add(preferences)
        await self._commit()

    # --- Milestones ---

    async def celebrated_thresholds(self, domain_id: int) -> set[int]:
        result = await self.db.execute(
            select(DomainMilestone.threshold).where(
                DomainMilestone.domain_id == domain_id,
                DomainMilestone.celebrated.is_(True),
            )
        )
        return set(result.scalars().all())

    async def get_milestone(self, domain_id: int, threshold: int) -> DomainMilestone | None:
        result = await self.db.execute(
            select(DomainMilestone)
            .where(DomainMilestone.domain_id == domain_id, DomainMilestone.threshold == threshold)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_milestone(self, milestone: DomainMilestone) -> CreateOutcome:
        try:
            async with self.db.begin_nested():
                self.db.add(milestone)
        except IntegrityError:
            return CreateOutcome.ALREADY_EXISTS
        await self._commit()
        return CreateOutcome.CREATED

    async def mark_celebrated(self, domain_id: int, threshold: int, when: datetime) -> bool:
        result = await self.db.execute(
            update(DomainMilestone)
            .where(
                DomainMilestone.domain_id == domain_id,
                DomainMilestone.threshold == threshold,
                DomainMilestone.celebrated.is_(False),
            )
            .values(celebrated=True, celebrated_at=when)
        )
        await self._commit()
        return result.rowcount > 0

    # --- Ledger and audit ---

    async def add_api_usage(self, usage: ApiUsage) -> None:
        self.db.add(usage)
        await self._commit()

    async def sum_api_usage_since(self, since: datetime) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(ApiUsage.cost), 0)).where(ApiUsage.created_at >= since)
        )
        return Decimal(result.scalar_one())

    async def add_email_log(self, log: EmailLog) -> None:
        self.db.add(log)
        await self._commit()
