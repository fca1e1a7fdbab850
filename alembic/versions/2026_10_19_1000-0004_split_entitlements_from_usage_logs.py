"""split entitlements out of ai_usage_logs

Revision ID: 0004
Revises: 0003
Create Date: 2026-10-19

Ownership moves to ai_entitlements (unique per user, question, model) so
ai_usage_logs can record every generation the service pays for, including
free regenerations of analyses a user already owns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0004"
down_revision: Union[str, None] = "0003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ai_entitlements",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("question_id", sa.String(255), nullable=False),
        sa.Column("model_id", sa.String(100), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_ai_entitlements"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["profiles.id"],
            name="fk_ai_entitlements_user_id_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "user_id", "question_id", "model_id",
            name="uq_ai_entitlements_user_id_question_id_model_id",
        ),
    )

    # Every existing log row is exactly one unlocked analysis
    op.execute(
        """
        INSERT INTO ai_entitlements (user_id, question_id, model_id, created_at)
        SELECT user_id, question_id, model_id, created_at
        FROM ai_usage_logs
        """
    )

    op.drop_constraint(
        "uq_ai_usage_logs_user_id_question_id_model_id",
        "ai_usage_logs",
        type_="unique",
    )


def downgrade() -> None:
    # Regeneration rows have no place under the one-row-per-triple rule
    op.execute("DELETE FROM ai_usage_logs WHERE result_source = 'purchased_regenerated'")
    op.create_unique_constraint(
        "uq_ai_usage_logs_user_id_question_id_model_id",
        "ai_usage_logs",
        ["user_id", "question_id", "model_id"],
    )
    op.drop_table("ai_entitlements")
