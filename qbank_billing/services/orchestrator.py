"""
Request orchestrator — "analyse question X with model M for user U".

Stages:

    START → CHECK_ENTITLEMENT → (EARLY_FREE_EXIT | CHECK_CACHE)
          → (USE_CACHE | GENERATE) → COMPUTE_COST → DECIDE_DEDUCTION
          → SETTLE_LEDGER → RESPOND

Any stage may fail; the exception propagates to the caller unchanged.

Result sources:

    paid before | trial | cache hit | source                 | new log row
    ------------+-------+-----------+------------------------+------------
    yes         | —     | yes       | purchased_cache        | no
    yes         | —     | no        | purchased_regenerated  | yes (unbilled)
    no          | yes   | yes       | cache                  | yes
    no          | yes   | no        | trial_free             | yes
    no          | no    | yes       | global_cache_billed    | yes
    no          | no    | no        | api                    | yes

Owners are never billed twice: the entitlement row is unique per
(user, question, model). Regenerating an owned analysis still logs its
real cost with a zero charge.

If concurrent requests use up the trial between the eligibility check and
settlement, the request is re-priced and settled as a billed one.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal

from qbank_billing.services import analysis_cache, ledger
from qbank_billing.services.cost_calculator import (
    BillingPolicy,
    deduction_amount,
    free_trial_applies,
    real_cost,
)
from qbank_billing.services.entitlements import resolve_entitlement
from qbank_billing.services.errors import (
    BillingError,
    InsufficientFunds,
    ProfileNotFound,
    TrialLimitReached,
)
from qbank_billing.services.llm_client import build_prompt
from qbank_billing.services.stores import (
    AnalysisRequest,
    BillingStore,
    CacheEntry,
    GenerationBackend,
    ResultSource,
    SettlementStatus,
    SubscriptionStatus,
    SubscriptionTier,
    TokenCounts,
    UsageRecord,
    UserAccount,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


class Stage(str, enum.Enum):
    START = "start"
    CHECK_ENTITLEMENT = "check_entitlement"
    EARLY_FREE_EXIT = "early_free_exit"
    CHECK_CACHE = "check_cache"
    USE_CACHE = "use_cache"
    GENERATE = "generate"
    COMPUTE_COST = "compute_cost"
    DECIDE_DEDUCTION = "decide_deduction"
    SETTLE_LEDGER = "settle_ledger"
    RESPOND = "respond"


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    analysis: str
    source: ResultSource
    cost: Decimal
    real_cost: Decimal
    tokens: TokenCounts


def classify_source(paid_before: bool, trial_free: bool, cache_hit: bool) -> ResultSource:
    if paid_before:
        return ResultSource.PURCHASED_CACHE if cache_hit else ResultSource.PURCHASED_REGENERATED
    if trial_free:
        return ResultSource.CACHE if cache_hit else ResultSource.TRIAL_FREE
    return ResultSource.GLOBAL_CACHE_BILLED if cache_hit else ResultSource.API


def _entry_tokens(entry: CacheEntry) -> TokenCounts:
    return TokenCounts(
        input=entry.input_tokens or 0,
        output=entry.output_tokens or 0,
        thinking=entry.thinking_tokens,
    )


class AnalysisOrchestrator:
    """Sequences entitlement, cache, generation, pricing and settlement."""

    def __init__(
        self,
        store: BillingStore,
        backend: GenerationBackend,
        policy: BillingPolicy,
    ) -> None:
        self._store = store
        self._backend = backend
        self._policy = policy

    async def request_analysis(self, request: AnalysisRequest) -> AnalysisResult:
        stage = Stage.START
        try:
            account = await self._store.get_profile(request.user_id)
            if account is None:
                raise ProfileNotFound()

            stage = Stage.CHECK_ENTITLEMENT
            entitlement = await resolve_entitlement(
                self._store, request.user_id, request.question_id, request.model_id,
            )
            prompt = build_prompt(request)

            if entitlement.paid_before:
                stage = Stage.CHECK_CACHE
                entry = await analysis_cache.lookup(
                    self._store, request.question_id, request.model_id,
                )
                if entry is not None:
                    stage = Stage.EARLY_FREE_EXIT
                    return self._early_free_exit(entry, prompt)

                stage = Stage.GENERATE
                return await self._regenerate_owned(request, prompt)

            # ── Not yet entitled: trial + pre-flight funds gate ──
            unlocked = await self._store.count_entitlements(request.user_id)
            trial = free_trial_applies(account, unlocked, self._policy)
            self._preflight(account, trial)

            stage = Stage.CHECK_CACHE
            entry = await analysis_cache.lookup(
                self._store, request.question_id, request.model_id,
            )

            if entry is not None:
                stage = Stage.USE_CACHE
                entry = await analysis_cache.backfill_tokens(self._store, entry, prompt)
                text, tokens = entry.analysis_text, _entry_tokens(entry)
            else:
                stage = Stage.GENERATE
                generation = await self._backend.generate(prompt, request.model_id)
                text, tokens = generation.text, generation.tokens
                await analysis_cache.upsert(
                    self._store, request.question_id, request.model_id, text, tokens,
                )

            stage = Stage.COMPUTE_COST
            cost = real_cost(
                request.model_id, tokens.input, tokens.billable_output, self._policy.pricing,
            )

            stage = Stage.DECIDE_DEDUCTION
            cache_hit = entry is not None
            source, deduction = self._price(account, cost, trial, cache_hit)

            stage = Stage.SETTLE_LEDGER
            outcome = await self._settle(request, account, tokens, cost, source, deduction, trial)
            if outcome.status == SettlementStatus.TRIAL_EXHAUSTED:
                # Concurrent requests used up the trial; bill this one
                source, deduction = self._price(account, cost, False, cache_hit)
                outcome = await self._settle(
                    request, account, tokens, cost, source, deduction, False,
                )

            stage = Stage.RESPOND
            return AnalysisResult(
                analysis=text,
                source=source,
                cost=outcome.charged,
                real_cost=cost,
                tokens=tokens,
            )
        except BillingError as exc:
            logger.warning(
                "AI analysis failed at %s for user=%s question=%s model=%s: %s",
                stage.value,
                request.user_id,
                request.question_id,
                request.model_id,
                exc,
            )
            raise

    def _price(
        self, account: UserAccount, cost: Decimal, trial: bool, cache_hit: bool,
    ) -> tuple[ResultSource, Decimal]:
        deduction = deduction_amount(
            cost, account.tier, trial, has_paid_before=False, policy=self._policy,
        )
        return classify_source(False, trial, cache_hit=cache_hit), deduction

    async def _settle(
        self,
        request: AnalysisRequest,
        account: UserAccount,
        tokens: TokenCounts,
        cost: Decimal,
        source: ResultSource,
        deduction: Decimal,
        trial: bool,
    ) -> ledger.SettlementOutcome:
        return await ledger.settle(
            self._store,
            account,
            deduction,
            UsageRecord(
                user_id=request.user_id,
                question_id=request.question_id,
                model_id=request.model_id,
                result_source=source,
                tokens=tokens,
                real_cost=cost,
                charged_amount=deduction,
            ),
            trial_allowance=self._policy.trial_allowance if trial else None,
        )

    # ── Paths for users who already own the analysis ───────
    def _early_free_exit(self, entry: CacheEntry, prompt: str) -> AnalysisResult:
        """Serve an owned, cached analysis. No generation, no writes."""
        entry = analysis_cache.estimated_counts(entry, prompt)
        return AnalysisResult(
            analysis=entry.analysis_text,
            source=ResultSource.PURCHASED_CACHE,
            cost=_ZERO,
            real_cost=_ZERO,
            tokens=_entry_tokens(entry),
        )

    async def _regenerate_owned(self, request: AnalysisRequest, prompt: str) -> AnalysisResult:
        """Paid but uncached: regenerate and re-cache, never re-bill."""
        generation = await self._backend.generate(prompt, request.model_id)
        tokens = generation.tokens
        await analysis_cache.upsert(
            self._store, request.question_id, request.model_id, generation.text, tokens,
        )
        cost = real_cost(
            request.model_id, tokens.input, tokens.billable_output, self._policy.pricing,
        )
        await ledger.record_unbilled(
            self._store,
            UsageRecord(
                user_id=request.user_id,
                question_id=request.question_id,
                model_id=request.model_id,
                result_source=ResultSource.PURCHASED_REGENERATED,
                tokens=tokens,
                real_cost=cost,
                charged_amount=_ZERO,
            ),
        )
        return AnalysisResult(
            analysis=generation.text,
            source=ResultSource.PURCHASED_REGENERATED,
            cost=_ZERO,
            real_cost=cost,
            tokens=tokens,
        )

    # ── Pre-flight gate ─────────────────────────────────────
    @staticmethod
    def _preflight(account: UserAccount, trial: bool) -> None:
        """
        Refuse standard-tier requests that cannot be billed before paying
        for a generation: no trial left and an empty wallet.
        """
        if account.tier != SubscriptionTier.STANDARD or trial:
            return
        if account.balance > _ZERO:
            return
        if account.status == SubscriptionStatus.TRIAL:
            raise TrialLimitReached()
        raise InsufficientFunds(required=None, available=account.balance)
