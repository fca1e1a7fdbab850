"""
Shared AI analysis cache — one generated analysis per (question, model).

Every user reads from the same row, so a question analysed once by anyone
is never sent to the generation backend again for that model.

Design notes:
  • UNIQUE (question_id, model_id) — writes are INSERT … ON CONFLICT DO
    UPDATE, so concurrent generators collapse into one row (last write wins).
  • input_tokens / output_tokens are nullable: rows written before token
    metering existed have none and are backfilled with estimates later.
  • tokens_estimated marks rows whose counts came from the length
    heuristic rather than the backend's usage metadata.
"""

import uuid
import datetime

from sqlalchemy import Boolean, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from qbank_billing.core.database import Base


class AnalysisCacheEntry(Base):
    """Globally shared generation result for a (question, model) pair."""

    __tablename__ = "ai_analysis_cache"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    question_id: Mapped[str] = mapped_column(String(255), nullable=False)
    model_id: Mapped[str] = mapped_column(String(100), nullable=False)
    analysis_text: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Token counts (NULL on pre-metering rows) ───────────
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    thinking_tokens: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    tokens_estimated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    created_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("question_id", "model_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<AnalysisCacheEntry question={self.question_id} "
            f"model={self.model_id} estimated={self.tokens_estimated}>"
        )
