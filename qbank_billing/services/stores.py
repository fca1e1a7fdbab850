"""
Collaborator contracts and domain records for the billing core.

The orchestrator, ledger, cache and entitlement services talk to
persistence only through `BillingStore` and to the language model only
through `GenerationBackend`. The production implementations are
`repositories.billing_store.SqlBillingStore` and
`services.llm_client.GeminiClient`; tests substitute in-memory fakes.

Records are frozen dataclasses — the core never mutates what it reads.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol


class SubscriptionTier(str, enum.Enum):
    STANDARD = "standard"
    LEGACY = "legacy"


class SubscriptionStatus(str, enum.Enum):
    TRIAL = "trial"
    ACTIVE = "active"


class ResultSource(str, enum.Enum):
    """Provenance tag stored on usage logs and returned to the UI."""

    API = "api"
    CACHE = "cache"
    GLOBAL_CACHE_BILLED = "global_cache_billed"
    TRIAL_FREE = "trial_free"
    PURCHASED_CACHE = "purchased_cache"
    PURCHASED_REGENERATED = "purchased_regenerated"


class SettlementStatus(str, enum.Enum):
    RECORDED = "recorded"
    ALREADY_ENTITLED = "already_entitled"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRIAL_EXHAUSTED = "trial_exhausted"


@dataclass(frozen=True, slots=True)
class UserAccount:
    id: uuid.UUID
    tier: SubscriptionTier
    status: SubscriptionStatus
    balance: Decimal


@dataclass(frozen=True, slots=True)
class AnalysisRequest:
    """One "analyse question X with model M" invocation. Never persisted."""

    user_id: uuid.UUID
    question_id: str
    model_id: str
    question_text: str
    options: tuple[str, ...] = ()
    official_answer: str = ""
    question_type: str = "MCQ"


@dataclass(frozen=True, slots=True)
class TokenCounts:
    input: int = 0
    output: int = 0
    thinking: int = 0

    @property
    def billable_output(self) -> int:
        """Thinking tokens are billed at the output price."""
        return self.output + self.thinking


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A shared analysis. Token counts are None on pre-metering rows."""

    id: uuid.UUID
    question_id: str
    model_id: str
    analysis_text: str
    input_tokens: int | None
    output_tokens: int | None
    thinking_tokens: int = 0
    tokens_estimated: bool = False

    @property
    def has_token_counts(self) -> bool:
        return self.input_tokens is not None and self.output_tokens is not None


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """One usage-log row about to be appended."""

    user_id: uuid.UUID
    question_id: str
    model_id: str
    result_source: ResultSource
    tokens: TokenCounts
    real_cost: Decimal
    charged_amount: Decimal


@dataclass(frozen=True, slots=True)
class UsageSummary:
    request_count: int
    total_charged: Decimal
    total_real_cost: Decimal
    by_model: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GenerationResult:
    text: str
    input_tokens: int
    output_tokens: int
    thinking_tokens: int = 0

    @property
    def tokens(self) -> TokenCounts:
        return TokenCounts(self.input_tokens, self.output_tokens, self.thinking_tokens)


class BillingStore(Protocol):
    """Persistence operations the billing core consumes."""

    async def get_profile(self, user_id: uuid.UUID) -> UserAccount | None: ...

    async def get_cache_entry(self, question_id: str, model_id: str) -> CacheEntry | None: ...

    async def upsert_cache_entry(
        self,
        question_id: str,
        model_id: str,
        analysis_text: str,
        tokens: TokenCounts,
    ) -> CacheEntry: ...

    async def backfill_cache_tokens(
        self,
        entry_id: uuid.UUID,
        input_tokens: int,
        output_tokens: int,
    ) -> None: ...

    async def count_entitlements(self, user_id: uuid.UUID) -> int:
        """Number of analyses the user has unlocked (paid or trial)."""
        ...

    async def has_entitlement(self, user_id: uuid.UUID, question_id: str, model_id: str) -> bool: ...

    async def record_settlement(
        self,
        record: UsageRecord,
        require_funds: bool,
        trial_allowance: int | None = None,
    ) -> SettlementStatus:
        """
        Grant the entitlement, append the usage log and debit
        `record.charged_amount`, all in one transaction.

        Nothing is written when the result is not RECORDED:
          ALREADY_ENTITLED   the user already owns the triple.
          INSUFFICIENT_FUNDS require_funds is set and the balance cannot
                             cover the debit.
          TRIAL_EXHAUSTED    trial_allowance is set (a trial-free record)
                             and the user already holds that many
                             entitlements.
        """
        ...

    async def record_usage(self, record: UsageRecord) -> None:
        """Append a cost row without granting anything or moving money."""
        ...

    async def usage_summary(self, user_id: uuid.UUID) -> UsageSummary: ...


class GenerationBackend(Protocol):
    async def generate(self, prompt: str, model_id: str) -> GenerationResult: ...
