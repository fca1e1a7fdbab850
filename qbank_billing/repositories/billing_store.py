"""
PostgreSQL-backed BillingStore.

All writes use Postgres-native atomic statements:
  • Cache upsert — INSERT … ON CONFLICT (question_id, model_id) DO UPDATE.
  • Settlement   — INSERT … ON CONFLICT DO NOTHING RETURNING id on the
                   entitlement, a plain INSERT on the usage log, then a
                   conditional UPDATE on the wallet, in a single transaction.
                   Trial settlements first lock the profile row and re-count
                   the user's entitlements under that lock.

Every unit of work commits or rolls back before returning. SQLAlchemy
errors, reads included, are logged and re-raised as PersistenceError.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import Insert, Select, Update, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from qbank_billing.models.analysis_cache import AnalysisCacheEntry
from qbank_billing.models.entitlement import AIEntitlement
from qbank_billing.models.profile import Profile
from qbank_billing.models.usage_log import AIUsageLog
from qbank_billing.services.errors import PersistenceError
from qbank_billing.services.stores import (
    CacheEntry,
    SettlementStatus,
    SubscriptionStatus,
    SubscriptionTier,
    TokenCounts,
    UsageRecord,
    UsageSummary,
    UserAccount,
)

logger = logging.getLogger(__name__)


def _to_cache_entry(row: AnalysisCacheEntry) -> CacheEntry:
    return CacheEntry(
        id=row.id,
        question_id=row.question_id,
        model_id=row.model_id,
        analysis_text=row.analysis_text,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        thinking_tokens=row.thinking_tokens,
        tokens_estimated=row.tokens_estimated,
    )


# ── Statements ──────────────────────────────────────────────
def cache_upsert_stmt(
    question_id: str, model_id: str, analysis_text: str, tokens: TokenCounts,
) -> Insert:
    values = {
        "analysis_text": analysis_text,
        "input_tokens": tokens.input,
        "output_tokens": tokens.output,
        "thinking_tokens": tokens.thinking,
        "tokens_estimated": False,
    }
    return (
        pg_insert(AnalysisCacheEntry)
        .values(question_id=question_id, model_id=model_id, **values)
        .on_conflict_do_update(
            index_elements=["question_id", "model_id"],
            set_={**values, "updated_at": func.now()},
        )
        .returning(AnalysisCacheEntry)
        .execution_options(populate_existing=True)
    )


def backfill_tokens_stmt(entry_id: uuid.UUID, input_tokens: int, output_tokens: int) -> Update:
    # Only fills gaps; a concurrent upsert with measured counts wins
    return (
        update(AnalysisCacheEntry)
        .where(
            AnalysisCacheEntry.id == entry_id,
            AnalysisCacheEntry.input_tokens.is_(None)
            | AnalysisCacheEntry.output_tokens.is_(None),
        )
        .values(
            input_tokens=func.coalesce(AnalysisCacheEntry.input_tokens, input_tokens),
            output_tokens=func.coalesce(AnalysisCacheEntry.output_tokens, output_tokens),
            tokens_estimated=True,
            updated_at=func.now(),
        )
    )


def lock_profile_stmt(user_id: uuid.UUID) -> Select:
    return select(Profile.id).where(Profile.id == user_id).with_for_update()


def count_entitlements_stmt(user_id: uuid.UUID) -> Select:
    return (
        select(func.count())
        .select_from(AIEntitlement)
        .where(AIEntitlement.user_id == user_id)
    )


def grant_entitlement_stmt(record: UsageRecord) -> Insert:
    return (
        pg_insert(AIEntitlement)
        .values(
            user_id=record.user_id,
            question_id=record.question_id,
            model_id=record.model_id,
        )
        .on_conflict_do_nothing(
            index_elements=["user_id", "question_id", "model_id"],
        )
        .returning(AIEntitlement.id)
    )


def usage_log_stmt(record: UsageRecord) -> Insert:
    return pg_insert(AIUsageLog).values(
        user_id=record.user_id,
        question_id=record.question_id,
        model_id=record.model_id,
        result_source=record.result_source.value,
        input_tokens=record.tokens.input,
        output_tokens=record.tokens.output,
        thinking_tokens=record.tokens.thinking,
        real_cost=record.real_cost,
        charged_amount=record.charged_amount,
    )


def debit_stmt(user_id: uuid.UUID, amount: Decimal, require_funds: bool) -> Update:
    stmt = (
        update(Profile)
        .where(Profile.id == user_id)
        .values(credit_balance=Profile.credit_balance - amount)
        .returning(Profile.credit_balance)
    )
    if require_funds:
        stmt = stmt.where(Profile.credit_balance >= amount)
    return stmt


class SqlBillingStore:
    """BillingStore over one request-scoped AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _read(self, stmt: Select, what: str):
        try:
            return await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read %s", what)
            raise PersistenceError() from exc

    # ── Profiles ────────────────────────────────────────────
    async def get_profile(self, user_id: uuid.UUID) -> UserAccount | None:
        stmt = select(Profile).where(Profile.id == user_id)
        profile = (await self._read(stmt, f"profile {user_id}")).scalar_one_or_none()
        if profile is None:
            return None
        return UserAccount(
            id=profile.id,
            tier=SubscriptionTier(profile.subscription_tier),
            status=SubscriptionStatus(profile.subscription_status),
            balance=Decimal(profile.credit_balance),
        )

    # ── Shared analysis cache ───────────────────────────────
    async def get_cache_entry(self, question_id: str, model_id: str) -> CacheEntry | None:
        stmt = select(AnalysisCacheEntry).where(
            AnalysisCacheEntry.question_id == question_id,
            AnalysisCacheEntry.model_id == model_id,
        )
        result = await self._read(stmt, f"cache entry {question_id}/{model_id}")
        row = result.scalar_one_or_none()
        return _to_cache_entry(row) if row is not None else None

    async def upsert_cache_entry(
        self,
        question_id: str,
        model_id: str,
        analysis_text: str,
        tokens: TokenCounts,
    ) -> CacheEntry:
        """Last write wins for concurrent generators of the same pair."""
        stmt = cache_upsert_stmt(question_id, model_id, analysis_text, tokens)
        try:
            row = (await self._session.execute(stmt)).scalar_one()
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("Failed to upsert cache entry %s/%s", question_id, model_id)
            raise PersistenceError() from exc
        return _to_cache_entry(row)

    async def backfill_cache_tokens(
        self,
        entry_id: uuid.UUID,
        input_tokens: int,
        output_tokens: int,
    ) -> None:
        stmt = backfill_tokens_stmt(entry_id, input_tokens, output_tokens)
        try:
            await self._session.execute(stmt)
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("Failed to backfill tokens for cache entry %s", entry_id)
            raise PersistenceError() from exc

    # ── Entitlements / usage logs ───────────────────────────
    async def count_entitlements(self, user_id: uuid.UUID) -> int:
        result = await self._read(count_entitlements_stmt(user_id), f"entitlements of {user_id}")
        return result.scalar_one()

    async def has_entitlement(self, user_id: uuid.UUID, question_id: str, model_id: str) -> bool:
        stmt = select(
            select(AIEntitlement.id)
            .where(
                AIEntitlement.user_id == user_id,
                AIEntitlement.question_id == question_id,
                AIEntitlement.model_id == model_id,
            )
            .exists()
        )
        result = await self._read(stmt, f"entitlement {user_id}/{question_id}/{model_id}")
        return bool(result.scalar())

    async def record_settlement(
        self,
        record: UsageRecord,
        require_funds: bool,
        trial_allowance: int | None = None,
    ) -> SettlementStatus:
        """
        Grant the entitlement, append the usage log, debit the wallet.
        One transaction.

        The entitlement insert goes first so a duplicate triple
        short-circuits before any money moves.
        """
        try:
            if trial_allowance is not None:
                # Serialises trial settlements of one user
                await self._session.execute(lock_profile_stmt(record.user_id))
                unlocked = (
                    await self._session.execute(count_entitlements_stmt(record.user_id))
                ).scalar_one()
                if unlocked >= trial_allowance:
                    await self._session.rollback()
                    return SettlementStatus.TRIAL_EXHAUSTED

            granted = (
                await self._session.execute(grant_entitlement_stmt(record))
            ).scalar_one_or_none()
            if granted is None:
                await self._session.rollback()
                return SettlementStatus.ALREADY_ENTITLED

            await self._session.execute(usage_log_stmt(record))

            if record.charged_amount > 0:
                debit = debit_stmt(record.user_id, record.charged_amount, require_funds)
                new_balance = (await self._session.execute(debit)).scalar_one_or_none()
                if new_balance is None:
                    await self._session.rollback()
                    return SettlementStatus.INSUFFICIENT_FUNDS

            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "Settlement failed for user=%s question=%s model=%s; rolled back",
                record.user_id,
                record.question_id,
                record.model_id,
            )
            raise PersistenceError() from exc

        return SettlementStatus.RECORDED

    async def record_usage(self, record: UsageRecord) -> None:
        try:
            await self._session.execute(usage_log_stmt(record))
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "Failed to log usage for user=%s question=%s model=%s",
                record.user_id,
                record.question_id,
                record.model_id,
            )
            raise PersistenceError() from exc

    async def usage_summary(self, user_id: uuid.UUID) -> UsageSummary:
        totals_stmt = select(
            func.count(),
            func.coalesce(func.sum(AIUsageLog.charged_amount), 0),
            func.coalesce(func.sum(AIUsageLog.real_cost), 0),
        ).where(AIUsageLog.user_id == user_id)
        count, charged, real = (await self._read(totals_stmt, f"usage of {user_id}")).one()

        by_model_stmt = (
            select(AIUsageLog.model_id, func.count())
            .where(AIUsageLog.user_id == user_id)
            .group_by(AIUsageLog.model_id)
        )
        rows = (await self._read(by_model_stmt, f"usage of {user_id}")).all()

        return UsageSummary(
            request_count=count,
            total_charged=Decimal(charged),
            total_real_cost=Decimal(real),
            by_model={model_id: model_count for model_id, model_count in rows},
        )
