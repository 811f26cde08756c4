"""Persistence contract used by the refresh and notification services.

The SQLAlchemy implementation lives in ``drtrack.db.repository``. Creation
methods report ``CreateOutcome.ALREADY_EXISTS`` on a uniqueness conflict
instead of raising, so callers can treat a lost race as success.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
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


class CreateOutcome(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class Repository(ABC):
    """Abstract store for users, domains, snapshots, preferences and milestones."""

    # --- Users and domains ---

    @abstractmethod
    async def get_user(self, user_id: int) -> User | None: ...

    @abstractmethod
    async def get_domain(self, domain_id: int) -> Domain | None:
        """Fetch a domain with its owner loaded (soft-deleted domains included)."""

    @abstractmethod
    async def list_active_domain_ids(self) -> list[int]:
        """IDs of all domains without ``deleted_at``."""

    @abstractmethod
    async def list_user_domains(self, user_id: int) -> list[Domain]:
        """Active domains owned by ``user_id``, oldest first."""

    @abstractmethod
    async def list_domains_checked_since(self, since: datetime) -> list[Domain]:
        """Active domains with ``last_checked >= since``, owners loaded."""

    @abstractmethod
    async def list_users_with_domains(self) -> list[tuple[User, list[Domain]]]:
        """Every user that owns at least one active domain."""

    @abstractmethod
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
        """Update the domain metric fields and append a snapshot in one transaction."""

    @abstractmethod
    async def snapshots_between(
        self, domain_ids: list[int], start: datetime, end: datetime
    ) -> list[DRSnapshot]:
        """Snapshots for ``domain_ids`` with ``start <= recorded_at < end``."""

    # --- Notification preferences ---

    @abstractmethod
    async def get_preferences(self, domain_id: int) -> NotificationPreferences | None: ...

    @abstractmethod
    async def create_preferences(self, preferences: NotificationPreferences) -> CreateOutcome: ...

    @abstractmethod
    async def save_preferences(self, preferences: NotificationPreferences) -> None: ...

    # --- Milestones ---

    @abstractmethod
    async def celebrated_thresholds(self, domain_id: int) -> set[int]: ...

    @abstractmethod
    async def get_milestone(self, domain_id: int, threshold: int) -> DomainMilestone | None: ...

    @abstractmethod
    async def create_milestone(self, milestone: DomainMilestone) -> CreateOutcome: ...

    @abstractmethod
    async def mark_celebrated(self, domain_id: int, threshold: int, when: datetime) -> bool:
        """Flip an uncelebrated record to celebrated. True only for the caller that flipped it."""

    # --- Ledger and audit ---

    @abstractmethod
    async def add_api_usage(self, usage: ApiUsage) -> None: ...

    @abstractmethod
    async def sum_api_usage_since(self, since: datetime) -> Decimal: ...

    @abstractmethod
    async def add_email_log(self, log: EmailLog) -> None: ...
