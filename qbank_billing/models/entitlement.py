"""
SQLAlchemy model for the `ai_entitlements` table.

One row per (user, question, model) the user has unlocked, by paying or
under the free trial. The row's existence is the ownership witness: an
owner is never billed for that analysis again.

The UNIQUE triple is what makes settlement idempotent. A concurrent
duplicate insert conflicts (ON CONFLICT DO NOTHING returns no id) and the
settlement turns into a no-op instead of a second charge.
"""

import uuid
import datetime

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from qbank_billing.core.database import Base


class AIEntitlement(Base):
    __tablename__ = "ai_entitlements"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
    )
    question_id: Mapped[str] = mapped_column(String(255))
    model_id: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
    )

    # The leading user_id column also serves per-user counts
    __table_args__ = (UniqueConstraint("user_id", "question_id", "model_id"),)

    def __repr__(self) -> str:
        return (
            f"<AIEntitlement user={self.user_id!s:.8} "
            f"question={self.question_id} model={self.model_id}>"
        )
