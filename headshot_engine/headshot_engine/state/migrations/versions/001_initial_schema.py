"""Initial generation store schema.

Creates ``generations``, ``usage_periods``, ``credit_balances``,
``credits_ledger``, ``profiles`` and ``processed_webhook_events``.

Revision ID: 001
Revises:
Create Date: 2026-09-28 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "generations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("upload_id", sa.String(128), nullable=False),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("style", sa.String(128), nullable=False, server_default=""),
        sa.Column("personal_info", _JSON, nullable=False),
        sa.Column("provider", sa.String(32), nullable=True),
        sa.Column("provider_job_id", sa.String(256), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="queued"),
        sa.Column("result_url", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed')",
            name="ck_generations_status",
        ),
        sa.CheckConstraint(
            "(status = 'completed') = (completed_at IS NOT NULL)",
            name="ck_generations_completed_at",
        ),
    )
    op.create_index(
        "uq_generations_provider_job",
        "generations",
        ["provider", "provider_job_id"],
        unique=True,
    )
    op.create_index("ix_generations_user", "generations", ["user_id", "created_at"])
    op.create_index("ix_generations_status_updated", "generations", ["status", "updated_at"])

    op.create_table(
        "usage_periods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("generations_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "period_start", "period_end", name="uq_usage_periods_user_window"),
        sa.CheckConstraint("generations_used >= 0", name="ck_usage_periods_used_non_negative"),
    )

    op.create_table(
        "credit_balances",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_credit_balances_non_negative"),
    )

    op.create_table(
        "credits_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("entry_type", sa.String(16), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("metadata_json", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "entry_type IN ('purchase', 'usage', 'refund', 'bonus')",
            name="ck_credits_ledger_entry_type",
        ),
        sa.CheckConstraint("balance_after >= 0", name="ck_credits_ledger_balance_non_negative"),
    )
    op.create_index("ix_credits_ledger_user_created", "credits_ledger", ["user_id", "created_at"])

    op.create_table(
        "profiles",
        sa.Column("user_id", sa.String(128), primary_key=True),
        sa.Column("tier", sa.String(16), nullable=False, server_default="free"),
        sa.Column("subscription_id", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "tier IN ('free', 'one_time', 'pro', 'enterprise')",
            name="ck_profiles_tier",
        ),
    )

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("event_key", sa.String(256), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("provider", "event_key", name="uq_processed_webhook_events_key"),
    )


def downgrade() -> None:
    op.drop_table("processed_webhook_events")
    op.drop_table("profiles")
    op.drop_index("ix_credits_ledger_user_created", table_name="credits_ledger")
    op.drop_table("credits_ledger")
    op.drop_table("credit_balances")
    op.drop_table("usage_periods")
    op.drop_index("ix_generations_status_updated", table_name="generations")
    op.drop_index("ix_generations_user", table_name="generations")
    op.drop_index("uq_generations_provider_job", table_name="generations")
    op.drop_table("generations")
