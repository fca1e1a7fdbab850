"""
Bearer credentials for the analysis API.

One profile may hold several keys (one per device or integration, named by
`label`). Only the SHA-256 digest of a key is stored; `prefix` keeps its
first characters so a key can be recognised in logs and revoked by
flipping `is_active` without losing the row.
"""

import uuid
import datetime

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID, TIMESTAMP
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from qbank_billing.auth.hashing import DISPLAY_PREFIX_LEN
from qbank_billing.core.database import Base

# Hex SHA-256 digest
_HASH_LEN = 64


class APIKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    # Keys die with the profile they bill
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        index=True,
    )
    label: Mapped[str | None] = mapped_column(String(100))
    key_hash: Mapped[str] = mapped_column(String(_HASH_LEN), unique=True)
    prefix: Mapped[str] = mapped_column(String(DISPLAY_PREFIX_LEN))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")
    created_at: Mapped[datetime.datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        state = "active" if self.is_active else "revoked"
        return f"<APIKey {self.prefix}… user={self.user_id!s:.8} {state}>"
