"""Manual and bulk refresh endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from drtrack.dependencies import get_refresh_service
from drtrack.domains.schemas import BulkRefreshResponse, RefreshRequest, RefreshResponse
from drtrack.refresh.service import RefreshService

router = APIRouter(prefix="/api/v1", tags=["Domains"])


@router.post("/domains/bulk-refresh", response_model=BulkRefreshResponse)
async def bulk_refresh(
    body: RefreshRequest,
    service: RefreshService = Depends(get_refresh_service),
):
    """Refresh every active domain of a paid user. The whole batch must fit the quota."""
    result = await service.bulk_refresh(body.user_id)
    return result.to_dict()


@router.post("/domains/{domain_id}/refresh", response_model=RefreshResponse)
async def refresh_domain(
    domain_id: int,
    body: RefreshRequest,
    service: RefreshService = Depends(get_refresh_service),
):
    """Fetch a fresh DR value for one domain (paid plans only)."""
    result = await service.refresh_one(domain_id, body.user_id)
    return result.to_dict()
