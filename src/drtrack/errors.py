"""Error taxonomy shared by the refresh and notification services.

Admission errors (``Forbidden``, ``RateLimited``, ``ValidationError``) are
raised before any side effect. ``ConflictIgnored`` never leaves the module
that raised it: it marks a uniqueness race that was absorbed as success.
"""

from __future__ import annotations

from datetime import datetime


class DrtrackError(Exception):
    """Base class for all service-level errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"detail": self.message}


class ValidationError(DrtrackError):
    """Bad caller input. ``field`` names the offending field."""

    status_code = 422

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, object]:
        return {"detail": self.message, "field": self.field}


class Forbidden(DrtrackError):
    """Plan or entitlement check failed."""

    status_code = 403

    def to_dict(self) -> dict[str, object]:
        return {"detail": self.message, "upgrade_required": True}


class RateLimited(DrtrackError):
    """Quota exceeded until ``reset_at``."""

    status_code = 429

    def __init__(
        self,
        reset_at: datetime,
        limit: int,
        requested: int = 1,
        remaining: int = 0,
        message: str = "Rate limit exceeded",
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at
        self.limit = limit
        self.requested = requested
        self.remaining = remaining

    def to_dict(self) -> dict[str, object]:
        return {
            "detail": self.message,
            "limit": self.limit,
            "requested": self.requested,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
        }


class UpstreamError(DrtrackError):
    """Metrics provider (or a post-fetch write) failed for one domain."""

    status_code = 502


class NotFound(DrtrackError):
    """Referenced domain, user or preferences record does not exist."""

    status_code = 404


class ConflictIgnored(DrtrackError):
    """A uniqueness-constraint race absorbed as idempotent success."""

    status_code = 200
