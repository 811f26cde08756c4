"""Notification preference endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from drtrack.db.models import NotificationPreferences
from drtrack.dependencies import get_preference_resolver, get_repository
from drtrack.domains.schemas import PreferencesResponse
from drtrack.errors import NotFound
from drtrack.notifications.preferences import BOOLEAN_FIELDS, PreferenceResolver, resolve
from drtrack.repository import Repository

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


async def _require_domain(repo: Repository, domain_id: int) -> None:
    domain = await repo.get_domain(domain_id)
    if domain is None or domain.is_deleted:
        msg = f"Domain {domain_id} not found"
        raise NotFound(msg)


def _response(preferences: NotificationPreferences) -> PreferencesResponse:
    resolved = {name: resolve(preferences, name) for name in (*BOOLEAN_FIELDS, "change_threshold")}
    return PreferencesResponse(domain_id=preferences.domain_id, updated_at=preferences.updated_at, **resolved)


@router.get("/domains/{domain_id}/notification-preferences", response_model=PreferencesResponse)
async def get_preferences(
    domain_id: int,
    repo: Repository = Depends(get_repository),
    resolver: PreferenceResolver = Depends(get_preference_resolver),
):
    """Current preferences; the defaults are stored on first access."""
    await _require_domain(repo, domain_id)
    return _response(await resolver.get_preferences(domain_id))


@router.patch("/domains/{domain_id}/notification-preferences", response_model=PreferencesResponse)
async def update_preferences(
    domain_id: int,
    patch: dict[str, Any] = Body(...),
    repo: Repository = Depends(get_repository),
    resolver: PreferenceResolver = Depends(get_preference_resolver),
):
    """Partial update. Unknown fields and out-of-range values are rejected with 422."""
    await _require_domain(repo, domain_id)
    return _response(await resolver.update_preferences(domain_id, patch))
