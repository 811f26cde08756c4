"""Pydantic schemas for domain refresh and notification preference endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# --- Refresh ---


class RefreshRequest(BaseModel):
    user_id: int = Field(..., gt=0)


class RateLimitResponse(BaseModel):
    limit: int
    remaining: int
    reset_at: datetime


class RefreshResponse(BaseModel):
    domain_id: int
    url: str
    previous_da: int
    current_da: int
    da_change: int
    backlinks: int | None = None
    referring_domains: int | None = None
    last_checked: datetime
    milestones: list[int] = []
    rate_limit: RateLimitResponse | None = None


class BulkFailureResponse(BaseModel):
    domain_id: int
    url: str
    error: str


class BulkSummaryResponse(BaseModel):
    total: int
    successful: int
    failed: int


class BulkRefreshResponse(BaseModel):
    summary: BulkSummaryResponse
    successful: list[RefreshResponse]
    failed: list[BulkFailureResponse]
    rate_limit: RateLimitResponse | None = None


# --- Notification preferences ---


class PreferencesResponse(BaseModel):
    domain_id: int
    instant_alerts: bool
    daily_batch: bool
    weekly_recaps: bool
    milestone_celebrations: bool
    inactivity_warnings: bool
    change_threshold: int
    updated_at: datetime
