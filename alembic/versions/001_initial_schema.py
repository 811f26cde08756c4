"""Initial DR tracking schema.

Users, tracked domains and their append-only DR snapshots, per-domain
notification preferences, one-time milestone records, the email audit log
and the metrics provider usage ledger.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa  # noqa: F401
from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id                  BIGSERIAL PRIMARY KEY,
            email               VARCHAR(320) NOT NULL,
            subscription_status VARCHAR(16) NOT NULL DEFAULT 'free',
            created_at          TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS domains (
            id             BIGSERIAL PRIMARY KEY,
            user_id        BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            url            TEXT NOT NULL,
            normalized_url VARCHAR(253) NOT NULL,
            current_da     INT NOT NULL DEFAULT 0,
            previous_da    INT NOT NULL DEFAULT 0,
            da_change      INT NOT NULL DEFAULT 0,
            last_checked   TIMESTAMPTZ,
            created_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
            deleted_at     TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_domains_normalized_url ON domains (normalized_url)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_domains_user_active
        ON domains (user_id)
        WHERE deleted_at IS NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS dr_snapshots (
            id                BIGSERIAL PRIMARY KEY,
            domain_id         BIGINT NOT NULL REFERENCES domains(id) ON DELETE CASCADE,
            da_value          INT NOT NULL,
            backlinks         BIGINT,
            referring_domains BIGINT,
            recorded_at       TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_dr_snapshots_domain_id ON dr_snapshots (domain_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_dr_snapshots_recorded_at ON dr_snapshots (recorded_at)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS notification_preferences (
            domain_id              BIGINT PRIMARY KEY REFERENCES domains(id) ON DELETE CASCADE,
            instant_alerts         BOOLEAN,
            daily_batch            BOOLEAN,
            weekly_recaps          BOOLEAN,
            milestone_celebrations BOOLEAN,
            inactivity_warnings    BOOLEAN,
            change_threshold       INT,
            created_at             TIMESTAMPTZ NOT NULL,
            updated_at             TIMESTAMPTZ NOT NULL,
            CONSTRAINT ck_notification_preferences_threshold CHECK (change_threshold BETWEEN 1 AND 100)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS domain_milestones (
            id            BIGSERIAL PRIMARY KEY,
            domain_id     BIGINT NOT NULL REFERENCES domains(id) ON DELETE CASCADE,
            threshold     INT NOT NULL,
            celebrated    BOOLEAN NOT NULL DEFAULT FALSE,
            created_at    TIMESTAMPTZ NOT NULL,
            celebrated_at TIMESTAMPTZ,
            CONSTRAINT uq_domain_milestones_domain_threshold UNIQUE (domain_id, threshold)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS email_logs (
            id            BIGSERIAL PRIMARY KEY,
            domain_id     BIGINT,
            email_to      VARCHAR(320) NOT NULL,
            email_type    VARCHAR(32) NOT NULL,
            status        VARCHAR(16) NOT NULL,
            error_message TEXT,
            sent_at       TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_email_logs_domain_id ON email_logs (domain_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_email_logs_email_to ON email_logs (email_to)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS api_usage (
            id         BIGSERIAL PRIMARY KEY,
            provider   VARCHAR(32) NOT NULL,
            subject    VARCHAR(253) NOT NULL,
            cost       NUMERIC(10, 4) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_api_usage_created_at ON api_usage (created_at)")


def downgrade() -> None:
    for table in (
        "api_usage",
        "email_logs",
        "domain_milestones",
        "notification_preferences",
        "dr_snapshots",
        "domains",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
