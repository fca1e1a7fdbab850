"""create ai_analysis_cache table

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-05

Shared (question, model) analysis cache. Token columns are nullable so
rows imported from the pre-metering cache can be backfilled later.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ai_analysis_cache",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("question_id", sa.String(255), nullable=False),
        sa.Column("model_id", sa.String(100), nullable=False),
        sa.Column("analysis_text", sa.Text(), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("thinking_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tokens_estimated", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_ai_analysis_cache"),
        # Upsert target: at most one row per (question, model)
        sa.UniqueConstraint(
            "question_id", "model_id",
            name="uq_ai_analysis_cache_question_id_model_id",
        ),
    )


def downgrade() -> None:
    op.drop_table("ai_analysis_cache")
