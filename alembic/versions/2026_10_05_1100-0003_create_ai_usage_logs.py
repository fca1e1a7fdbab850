"""create ai_usage_logs table

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-05

Append-only usage log, initially doubling as the entitlement record
(split out in 0004). The unique (user_id, question_id, model_id)
constraint makes a second settlement for the same triple a no-op
instead of a second charge.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0003"
down_revision: Union[str, None] = "0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ai_usage_logs",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("question_id", sa.String(255), nullable=False),
        sa.Column("model_id", sa.String(100), nullable=False),
        sa.Column("result_source", sa.String(32), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("thinking_tokens", sa.Integer(), nullable=False),
        sa.Column("real_cost", sa.Numeric(12, 8), nullable=False),
        sa.Column("charged_amount", sa.Numeric(12, 8), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_ai_usage_logs"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["profiles.id"],
            name="fk_ai_usage_logs_user_id_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "user_id", "question_id", "model_id",
            name="uq_ai_usage_logs_user_id_question_id_model_id",
        ),
        sa.CheckConstraint("input_tokens >= 0", name="ck_ai_usage_logs_input_tokens_non_neg"),
        sa.CheckConstraint("output_tokens >= 0", name="ck_ai_usage_logs_output_tokens_non_neg"),
        sa.CheckConstraint("thinking_tokens >= 0", name="ck_ai_usage_logs_thinking_tokens_non_neg"),
        sa.CheckConstraint("charged_amount >= 0", name="ck_ai_usage_logs_charged_amount_non_neg"),
    )
    op.create_index("ix_ai_usage_logs_user_id", "ai_usage_logs", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_ai_usage_logs_user_id", table_name="ai_usage_logs")
    op.drop_table("ai_usage_logs")
