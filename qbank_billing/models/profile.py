"""
Profile model — the billing view of one user account.

Owned by the account subsystem; the billing core only reads tier, trial
status and balance, and decrements credit_balance as part of settlement.

Design notes:
  • credit_balance uses NUMERIC(12,8) — wallet deductions are fractions
    of a cent for cheap models, so float rounding is not acceptable.
  • No CHECK on credit_balance >= 0: legacy-tier accounts are billed at
    cost and may run negative (settled out of band).
"""

import uuid
import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Numeric, String
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from qbank_billing.core.database import Base


class Profile(Base):
    """One user's subscription and wallet state."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="standard",
        server_default="standard",
    )
    subscription_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="trial",
        server_default="trial",
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(12, 8),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('standard', 'legacy')",
            name="tier_valid",
        ),
        CheckConstraint(
            "subscription_status IN ('trial', 'active')",
            name="status_valid",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Profile id={self.id!s:.8} tier={self.subscription_tier} "
            f"status={self.subscription_status} balance={self.credit_balance}>"
        )
