"""
Pydantic v2 schemas for the AI analysis endpoint.

Separation:
  • AnalysisRequestIn  — what the CLIENT sends (question + chosen model).
  • AnalysisResponse   — what the SERVER returns after billing is settled.

The client never sends a price, a tier or a balance: the frontend can
REQUEST, the backend DECIDES what it costs.

Wire names are camelCase to match the UI; snake_case is accepted on input.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ── Request schema ──────────────────────────────────────────
class AnalysisRequestIn(BaseModel):
    """
    Payload accepted by POST /ai-analysis.

    extra="forbid" rejects unknown fields (e.g. a client-supplied cost)
    with 422 instead of silently ignoring them.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="forbid",
        protected_namespaces=(),
    )

    question_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        examples=["q-2023-paper1-017"],
        description="Question identifier; numeric ids are accepted as strings.",
    )
    question: str = Field(
        ...,
        min_length=1,
        description="Question stem shown to the model.",
    )
    options: list[str] = Field(
        default_factory=list,
        description="Answer options (MCQ only).",
    )
    official_answer: str = Field(
        default="",
        description="The answer published with the paper.",
    )
    question_type: Literal["MCQ", "SAQ"] = Field(
        default="MCQ",
        description="Multiple choice or short answer.",
    )
    model_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        examples=["gemini-2.5-flash", "gemini-2.5-pro"],
        description="Model the user selected.",
    )


# ── Response schemas ────────────────────────────────────────
class TokenUsageOut(BaseModel):
    input: int
    output: int
    thinking: int


class AnalysisResponse(BaseModel):
    """
    Result of one analysis request.

    cost is the amount deducted from the caller's wallet for THIS
    request — 0 when owned already, trial-free, or settled concurrently.
    """

    analysis: str
    source: str
    cost: float
    tokens: TokenUsageOut


class UsageSummaryOut(BaseModel):
    """The caller's AI usage to date."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    request_count: int
    total_charged: float
    total_real_cost: float
    by_model: dict[str, int]
    trial_remaining: int
    credit_balance: float


class ModelPriceOut(BaseModel):
    """Per-million-token USD prices for one model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    model_id: str
    input_per_million: float
    output_per_million: float


class ModelCatalogOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    models: list[ModelPriceOut]
    default_model: str
    default_price: ModelPriceOut


class ErrorResponse(BaseModel):
    error: str
