"""
AI analysis router — the billing-metered entry point used by the UI.

POST /ai-analysis
  1. Authenticates the caller via bearer key.
  2. Validates the payload (Pydantic).
  3. Hands off to the orchestrator: entitlement → cache → generation →
     cost → deduction → settlement.
  4. Returns the analysis and what THIS request cost the caller.

GET /ai-analysis/usage   — the caller's usage to date (wallet widget)
GET /ai-analysis/models  — priced model catalogue (model picker)

Billing failures are raised as BillingError subclasses and rendered as
`{"error": ...}` by the handlers registered in main.py.
"""

import logging
from functools import lru_cache
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from qbank_billing.auth.dependencies import AuthContext, get_current_user
from qbank_billing.core.config import ModelPrice, settings
from qbank_billing.core.database import get_db_session
from qbank_billing.repositories.billing_store import SqlBillingStore
from qbank_billing.schemas.analysis import (
    AnalysisRequestIn,
    AnalysisResponse,
    ErrorResponse,
    ModelCatalogOut,
    ModelPriceOut,
    TokenUsageOut,
    UsageSummaryOut,
)
from qbank_billing.services.cost_calculator import BillingPolicy
from qbank_billing.services.errors import ProfileNotFound
from qbank_billing.services.llm_client import GeminiClient
from qbank_billing.services.orchestrator import AnalysisOrchestrator
from qbank_billing.services.stores import (
    AnalysisRequest,
    BillingStore,
    GenerationBackend,
    SubscriptionStatus,
    SubscriptionTier,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["AI Analysis"])


# ── Dependencies ────────────────────────────────────────────
@lru_cache
def get_billing_policy() -> BillingPolicy:
    """Policy is read from settings once per process."""
    return BillingPolicy.from_settings()


def get_generation_backend() -> GenerationBackend:
    return GeminiClient.from_settings()


def get_billing_store(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BillingStore:
    return SqlBillingStore(session)


# Type aliases for cleaner signatures
Auth = Annotated[AuthContext, Depends(get_current_user)]
Store = Annotated[BillingStore, Depends(get_billing_store)]
Backend = Annotated[GenerationBackend, Depends(get_generation_backend)]
Policy = Annotated[BillingPolicy, Depends(get_billing_policy)]

_ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    402: {"model": ErrorResponse, "description": "Trial limit reached or insufficient credits"},
    404: {"model": ErrorResponse, "description": "Profile not found"},
    502: {"model": ErrorResponse, "description": "Generation backend failed"},
}


@router.post(
    "",
    response_model=AnalysisResponse,
    responses=_ERROR_RESPONSES,
    summary="Request an AI analysis of a question",
    description=(
        "Serves an owned analysis for free, reuses the shared cache when "
        "possible, otherwise generates one. Bills the caller's wallet per "
        "tier, trial and entitlement rules."
    ),
)
async def request_analysis(
    payload: AnalysisRequestIn,
    auth: Auth,
    store: Store,
    backend: Backend,
    policy: Policy,
) -> AnalysisResponse:
    orchestrator = AnalysisOrchestrator(store=store, backend=backend, policy=policy)

    result = await orchestrator.request_analysis(
        AnalysisRequest(
            user_id=auth.user_id,
            question_id=payload.question_id,
            model_id=payload.model_id,
            question_text=payload.question,
            options=tuple(payload.options),
            official_answer=payload.official_answer,
            question_type=payload.question_type,
        )
    )

    return AnalysisResponse(
        analysis=result.analysis,
        source=result.source.value,
        cost=float(result.cost),
        tokens=TokenUsageOut(
            input=result.tokens.input,
            output=result.tokens.output,
            thinking=result.tokens.thinking,
        ),
    )


@router.get(
    "/usage",
    response_model=UsageSummaryOut,
    responses={401: _ERROR_RESPONSES[401], 404: _ERROR_RESPONSES[404]},
    summary="Caller's AI usage to date",
)
async def get_usage(auth: Auth, store: Store, policy: Policy) -> UsageSummaryOut:
    account = await store.get_profile(auth.user_id)
    if account is None:
        raise ProfileNotFound()

    summary = await store.usage_summary(auth.user_id)

    trial_remaining = 0
    if (
        account.tier == SubscriptionTier.STANDARD
        and account.status == SubscriptionStatus.TRIAL
    ):
        unlocked = await store.count_entitlements(auth.user_id)
        trial_remaining = max(policy.trial_allowance - unlocked, 0)

    return UsageSummaryOut(
        request_count=summary.request_count,
        total_charged=float(summary.total_charged),
        total_real_cost=float(summary.total_real_cost),
        by_model=summary.by_model,
        trial_remaining=trial_remaining,
        credit_balance=float(account.balance),
    )


def _price_out(model_id: str, price: ModelPrice) -> ModelPriceOut:
    return ModelPriceOut(
        model_id=model_id,
        input_per_million=float(price.input),
        output_per_million=float(price.output),
    )


@router.get(
    "/models",
    response_model=ModelCatalogOut,
    summary="Models available for analysis, with prices",
)
async def list_models(policy: Policy) -> ModelCatalogOut:
    pricing = policy.pricing
    return ModelCatalogOut(
        models=[
            _price_out(model_id, pricing.get_price(model_id))
            for model_id in pricing.get_supported_models()
        ],
        default_model=settings.DEFAULT_MODEL,
        default_price=_price_out("default", pricing.default),
    )
