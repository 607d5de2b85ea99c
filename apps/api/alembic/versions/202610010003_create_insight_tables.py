"""create insight and notification tables

Revision ID: 202610010003
Revises: 202610010002
Create Date: 2026-10-01 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610010003"
down_revision: str | None = "202610010002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ai_insight",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="LOW"),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=True),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("is_actionable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_ai_insight_confidence_range"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_insight_tenant_created", "ai_insight", ["tenant_id", "created_at"], unique=False)

    op.create_table(
        "concept_drift",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("model_name", sa.String(length=128), nullable=False),
        sa.Column("drift_type", sa.String(length=32), nullable=False),
        sa.Column("drift_score", sa.Float(), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="LOW"),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("drift_score >= 0 AND drift_score <= 1", name="ck_concept_drift_score_range"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_concept_drift_tenant_detected", "concept_drift", ["tenant_id", "detected_at"], unique=False)

    op.create_table(
        "realtime_notification",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="INFO"),
        sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_persistent", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_realtime_notification_tenant_created",
        "realtime_notification",
        ["tenant_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_realtime_notification_tenant_created", table_name="realtime_notification")
    op.drop_table("realtime_notification")
    op.drop_index("ix_concept_drift_tenant_detected", table_name="concept_drift")
    op.drop_table("concept_drift")
    op.drop_index("ix_ai_insight_tenant_created", table_name="ai_insight")
    op.drop_table("ai_insight")
