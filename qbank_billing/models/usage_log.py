"""
SQLAlchemy model for the `ai_usage_logs` table.

Append-only cost ledger: one row per analysis the service produced or
sold, including house-paid regenerations of analyses a user already owns
(result_source = purchased_regenerated, charged_amount = 0). Ownership is
tracked separately in `ai_entitlements`; this table may hold several rows
for the same (user, question, model).

Design notes:
  • real_cost is what the backend call cost us; charged_amount is what
    the wallet was debited. Both NUMERIC(12,8).
  • Rows are never updated or deleted by the service.
"""

import uuid
import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from qbank_billing.core.database import Base


class AIUsageLog(Base):
    """One produced or sold analysis, with its cost."""

    __tablename__ = "ai_usage_logs"

    # ── Primary key ─────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    # ── Who and what ──────────────────────────────────────
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id: Mapped[str] = mapped_column(String(255), nullable=False)
    model_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Provenance ─────────────────────────────────────────
    result_source: Mapped[str] = mapped_column(String(32), nullable=False)

    # ── Token counts ────────────────────────────────────────
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False)
    thinking_tokens: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Money (exact decimal) ───────────────────────────────
    real_cost: Mapped[Decimal] = mapped_column(Numeric(12, 8), nullable=False)
    charged_amount: Mapped[Decimal] = mapped_column(Numeric(12, 8), nullable=False)

    created_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Table-level constraints ─────────────────────────────
    __table_args__ = (
        CheckConstraint("input_tokens >= 0", name="input_tokens_non_neg"),
        CheckConstraint("output_tokens >= 0", name="output_tokens_non_neg"),
        CheckConstraint("thinking_tokens >= 0", name="thinking_tokens_non_neg"),
        CheckConstraint("charged_amount >= 0", name="charged_amount_non_neg"),
        Index("ix_ai_usage_logs_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<AIUsageLog user={self.user_id!s:.8} question={self.question_id} "
            f"model={self.model_id} source={self.result_source} "
            f"charged=${self.charged_amount}>"
        )
