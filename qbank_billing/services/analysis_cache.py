"""
Shared analysis cache service.

The cache is global: one row per (question, model), reused by every user.
Writes are upserts on that composite key, so two users generating the same
uncached pair at once both succeed and the later write wins. That costs a
duplicate backend call, never a duplicate row.

Token backfill:
  Rows created before token metering have no counts. They are filled with
  estimate_tokens(), a length heuristic, and flagged tokens_estimated so
  downstream accounting can tell estimates from measured counts.
"""

from __future__ import annotations

import dataclasses
import logging
import math

from qbank_billing.services.stores import BillingStore, CacheEntry, TokenCounts

logger = logging.getLogger(__name__)

# Rough characters-per-token ratio for English prose.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """
    ESTIMATE a token count as ceil(len(text) / 4).

    An approximation for rows without usage metadata, not a tokenizer.
    """
    return math.ceil(len(text) / CHARS_PER_TOKEN)


async def lookup(store: BillingStore, question_id: str, model_id: str) -> CacheEntry | None:
    entry = await store.get_cache_entry(question_id, model_id)
    logger.debug(
        "Cache %s for question=%s model=%s",
        "hit" if entry is not None else "miss",
        question_id,
        model_id,
    )
    return entry


async def upsert(
    store: BillingStore,
    question_id: str,
    model_id: str,
    analysis_text: str,
    tokens: TokenCounts,
) -> CacheEntry:
    """Insert or overwrite the shared entry for (question, model)."""
    return await store.upsert_cache_entry(question_id, model_id, analysis_text, tokens)


def filled_counts(entry: CacheEntry, prompt: str) -> tuple[int, int]:
    """
    (input, output) token counts with gaps filled by estimates.

    Input is estimated from the prompt that would have produced the
    analysis; output from the analysis text itself.
    """
    input_tokens = entry.input_tokens
    if input_tokens is None:
        input_tokens = estimate_tokens(prompt)
    output_tokens = entry.output_tokens
    if output_tokens is None:
        output_tokens = estimate_tokens(entry.analysis_text)
    return input_tokens, output_tokens


def estimated_counts(entry: CacheEntry, prompt: str) -> CacheEntry:
    """Fill missing token counts with estimates, without touching the store."""
    if entry.has_token_counts:
        return entry
    input_tokens, output_tokens = filled_counts(entry, prompt)
    return dataclasses.replace(
        entry,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        tokens_estimated=True,
    )


async def backfill_tokens(store: BillingStore, entry: CacheEntry, prompt: str) -> CacheEntry:
    """Estimate and persist token counts for a pre-metering cache row."""
    if entry.has_token_counts:
        return entry

    input_tokens, output_tokens = filled_counts(entry, prompt)
    await store.backfill_cache_tokens(entry.id, input_tokens, output_tokens)
    logger.info(
        "Backfilled estimated tokens for cache entry %s (in=%d out=%d)",
        entry.id,
        input_tokens,
        output_tokens,
    )
    return dataclasses.replace(
        entry,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        tokens_estimated=True,
    )
