"""ORM models for tracked domains, snapshots, preferences and milestones."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from drtrack.db.base import Base

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Account owning tracked domains. Managed by the auth/billing layer."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    subscription_status: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    domains: Mapped[list[Domain]] = relationship("Domain", back_populates="owner")


# ---------------------------------------------------------------------------
# Domains and snapshots
# ---------------------------------------------------------------------------


class Domain(Base):
    """A tracked website. ``da_change`` always equals ``current_da - previous_da``."""

    __tablename__ = "domains"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_url: Mapped[str] = mapped_column(String(253), nullable=False, index=True)
    current_da: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_da: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    da_change: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    owner: Mapped[User] = relationship("User", back_populates="domains")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class DRSnapshot(Base):
    """Immutable historical DR value. Append-only."""

    __tablename__ = "dr_snapshots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    domain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("domains.id", ondelete="CASCADE"), nullable=False, index=True
    )
    da_value: Mapped[int] = mapped_column(Integer, nullable=False)
    backlinks: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    referring_domains: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationPreferences(Base):
    """Per-domain notification switches. One row per domain, lazily created."""

    __tablename__ = "notification_preferences"
    __table_args__ = (
        CheckConstraint("change_threshold BETWEEN 1 AND 100", name="ck_notification_preferences_threshold"),
    )

    domain_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("domains.id", ondelete="CASCADE"), primary_key=True
    )
    instant_alerts: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    daily_batch: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    weekly_recaps: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    milestone_celebrations: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    inactivity_warnings: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    change_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict[str, object]:
        return {
            "domain_id": self.domain_id,
            "instant_alerts": self.instant_alerts,
            "daily_batch": self.daily_batch,
            "weekly_recaps": self.weekly_recaps,
            "milestone_celebrations": self.milestone_celebrations,
            "inactivity_warnings": self.inactivity_warnings,
            "change_threshold": self.change_threshold,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class DomainMilestone(Base):
    """Tracks whether a DR threshold crossing was celebrated for a domain."""

    __tablename__ = "domain_milestones"
    __table_args__ = (
        UniqueConstraint("domain_id", "threshold", name="uq_domain_milestones_domain_threshold"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    domain_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("domains.id", ondelete="CASCADE"), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    celebrated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    celebrated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EmailLog(Base):
    """Audit trail of every notification email attempt."""

    __tablename__ = "email_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    domain_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    email_to: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    email_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Usage ledger
# ---------------------------------------------------------------------------


class ApiUsage(Base):
    """One billable metrics-provider call."""

    __tablename__ = "api_usage"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str] = mapped_column(String(253), nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
