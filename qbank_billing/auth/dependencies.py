"""
FastAPI dependency resolving the bearer credential to a user.

Flow:
  1. Extract Bearer token from the Authorization header
  2. Hash the token (SHA-256)
  3. Look up api_keys by hash
  4. Verify is_active = true
  5. Return AuthContext (user_id + api_key_id)

Security:
  • Every failure raises AuthenticationError; the app turns it into the
    same generic 401 so callers cannot tell which step failed.
  • Raw keys are NEVER logged.
  • Profile existence is NOT checked here — the billing core reports a
    missing profile as its own error.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from qbank_billing.auth.errors import AuthenticationError
from qbank_billing.auth.hashing import hash_api_key
from qbank_billing.core.database import get_db_session
from qbank_billing.models.api_key import APIKey
from qbank_billing.services.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Authenticated caller injected into every protected route.

    Attributes:
        user_id:    Profile id of the caller — the wallet that gets billed.
        api_key_id: The specific key used for this request.
    """

    user_id: uuid.UUID
    api_key_id: uuid.UUID


def parse_bearer(authorization: str | None) -> str:
    """Return the raw token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        raise AuthenticationError("Missing Authorization header")

    parts = authorization.split(" ", maxsplit=1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthenticationError("Malformed Authorization header")

    return parts[1].strip()


async def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    session: AsyncSession = Depends(get_db_session),
) -> AuthContext:
    """
    FastAPI dependency — resolves the Bearer token to an AuthContext.

    Usage in routers:
        Auth = Annotated[AuthContext, Depends(get_current_user)]
    """
    raw_token = parse_bearer(authorization)

    stmt = select(APIKey).where(APIKey.key_hash == hash_api_key(raw_token))
    try:
        api_key = (await session.execute(stmt)).scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.exception("Failed to look up API key")
        raise PersistenceError() from exc

    if api_key is None:
        raise AuthenticationError("Unknown API key")

    if not api_key.is_active:
        logger.info("Rejected inactive API key %s", api_key.prefix)
        raise AuthenticationError("Inactive API key")

    return AuthContext(user_id=api_key.user_id, api_key_id=api_key.id)
