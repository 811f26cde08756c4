"""Per-domain notification preferences.

Preferences are keyed by domain, not by user. A record is created with the
defaults below the first time anything asks for it. Two callers racing to
create it both end up reading the single stored row.

Types: instant alert, daily batch, weekly recap, milestone celebration,
inactivity warning.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from drtrack.db.models import NotificationPreferences
from drtrack.errors import NotFound, ValidationError
from drtrack.repository import CreateOutcome, Repository

logger = structlog.get_logger()

# Every default lives here; a missing (None) field resolves to these values.
DEFAULT_PREFERENCES: dict[str, Any] = {
    "instant_alerts": False,
    "daily_batch": True,
    "weekly_recaps": True,
    "milestone_celebrations": True,
    "inactivity_warnings": True,
    "change_threshold": 1,
}

BOOLEAN_FIELDS = (
    "instant_alerts",
    "daily_batch",
    "weekly_recaps",
    "milestone_celebrations",
    "inactivity_warnings",
)

THRESHOLD_MIN = 1
THRESHOLD_MAX = 100


def resolve(preferences: NotificationPreferences | None, field: str) -> Any:
    """Read ``field`` from a record, falling back to the documented default."""
    value = getattr(preferences, field, None) if preferences is not None else None
    return DEFAULT_PREFERENCES[field] if value is None else value


def validate_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a partial update. Raises ValidationError naming the bad field."""
    clean: dict[str, Any] = {}
    for field, value in patch.items():
        if field in BOOLEAN_FIELDS:
            if not isinstance(value, bool):
                raise ValidationError(field, f"{field} must be a boolean")
            clean[field] = value
        elif field == "change_threshold":
            # bool is an int subclass; True is not a threshold
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(field, "change_threshold must be an integer between 1 and 100")
            if not THRESHOLD_MIN <= value <= THRESHOLD_MAX:
                raise ValidationError(field, "change_threshold must be an integer between 1 and 100")
            clean[field] = value
        else:
            raise ValidationError(field, f"Unknown preference field: {field}")
    return clean


def default_preferences(domain_id: int, now: datetime) -> NotificationPreferences:
    return NotificationPreferences(domain_id=domain_id, created_at=now, updated_at=now, **DEFAULT_PREFERENCES)


class PreferenceResolver:
    """Single source of truth for whether a notification type fires for a domain."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    async def get_preferences(self, domain_id: int, now: datetime | None = None) -> NotificationPreferences:
        """Return the stored record, creating the defaults if there is none."""
        existing = await self.repo.get_preferences(domain_id)
        if existing is not None:
            return existing

        now = now or datetime.now(timezone.utc)
        outcome = await self.repo.create_preferences(default_preferences(domain_id, now))
        if outcome is CreateOutcome.ALREADY_EXISTS:
            logger.info("preferences_created_concurrently", domain_id=domain_id)
        else:
            logger.info("preferences_initialized", domain_id=domain_id)

        stored = await self.repo.get_preferences(domain_id)
        if stored is None:
            msg = f"Notification preferences for domain {domain_id} not found after creation"
            raise NotFound(msg)
        return stored

    async def _flag(self, domain_id: int, field: str) -> bool:
        return bool(resolve(await self.get_preferences(domain_id), field))

    async def should_send_instant_alert(self, domain_id: int) -> bool:
        return await self._flag(domain_id, "instant_alerts")

    async def should_send_daily_batch(self, domain_id: int) -> bool:
        return await self._flag(domain_id, "daily_batch")

    async def should_send_weekly_recap(self, domain_id: int) -> bool:
        return await self._flag(domain_id, "weekly_recaps")

    async def should_send_milestone_celebration(self, domain_id: int) -> bool:
        return await self._flag(domain_id, "milestone_celebrations")

    async def should_send_inactivity_warning(self, domain_id: int) -> bool:
        return await self._flag(domain_id, "inactivity_warnings")

    async def get_change_threshold(self, domain_id: int) -> int:
        return int(resolve(await self.get_preferences(domain_id), "change_threshold"))

    async def update_preferences(
        self,
        domain_id: int,
        patch: Mapping[str, Any],
        now: datetime | None = None,
    ) -> NotificationPreferences:
        """Apply a validated partial update and stamp ``updated_at``."""
        clean = validate_patch(patch)
        now = now or datetime.now(timezone.utc)
        preferences = await self.get_preferences(domain_id, now=now)
        for field, value in clean.items():
            setattr(preferences, field, value)
        preferences.updated_at = now
        await self.repo.save_preferences(preferences)
        logger.info("preferences_updated", domain_id=domain_id, fields=sorted(clean))
        return preferences
