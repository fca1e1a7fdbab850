"""
Tests for the shared cache service and the token estimator.
"""
import pytest

from qbank_billing.services import analysis_cache
from qbank_billing.services.analysis_cache import estimate_tokens
from qbank_billing.services.stores import TokenCounts


class TestEstimateTokens:
    """ceil(len / 4) heuristic."""

    @pytest.mark.parametrize(
        "text, expected",
        [("", 0), ("a", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
    )
    def test_rounds_up(self, text, expected):
        assert estimate_tokens(text) == expected


@pytest.mark.asyncio
async def test_lookup_miss_then_upsert_hit(store):
    assert await analysis_cache.lookup(store, "q-1", "gemini-2.5-flash") is None

    await analysis_cache.upsert(store, "q-1", "gemini-2.5-flash", "text", TokenCounts(10, 20, 5))
    entry = await analysis_cache.lookup(store, "q-1", "gemini-2.5-flash")

    assert entry is not None
    assert entry.analysis_text == "text"
    assert (entry.input_tokens, entry.output_tokens, entry.thinking_tokens) == (10, 20, 5)


@pytest.mark.asyncio
async def test_upsert_is_keyed_on_question_and_model(store):
    await analysis_cache.upsert(store, "q-1", "gemini-2.5-flash", "first", TokenCounts(1, 1))
    await analysis_cache.upsert(store, "q-1", "gemini-2.5-flash", "second", TokenCounts(2, 2))
    await analysis_cache.upsert(store, "q-1", "gemini-2.5-pro", "other model", TokenCounts(3, 3))

    assert len(store.cache) == 2
    assert store.cache[("q-1", "gemini-2.5-flash")].analysis_text == "second"


@pytest.mark.asyncio
async def test_backfill_persists_estimates(store):
    entry = store.seed_cache("q-1", "gemini-2.5-flash", text="y" * 81, input_tokens=None, output_tokens=None)

    repaired = await analysis_cache.backfill_tokens(store, entry, prompt="p" * 40)

    assert repaired.input_tokens == 10
    assert repaired.output_tokens == 21
    assert repaired.tokens_estimated is True
    stored = store.cache[("q-1", "gemini-2.5-flash")]
    assert (stored.input_tokens, stored.output_tokens, stored.tokens_estimated) == (10, 21, True)


@pytest.mark.asyncio
async def test_backfill_keeps_measured_counts(store):
    entry = store.seed_cache("q-1", "gemini-2.5-flash", input_tokens=5, output_tokens=7)

    result = await analysis_cache.backfill_tokens(store, entry, prompt="irrelevant")

    assert result is entry
    assert "backfill_cache_tokens" not in store.calls


def test_estimated_counts_fills_only_missing_side(store):
    entry = store.seed_cache("q-1", "gemini-2.5-flash", text="z" * 8, input_tokens=42, output_tokens=None)

    repaired = analysis_cache.estimated_counts(entry, prompt="ignored")

    assert repaired.input_tokens == 42
    assert repaired.output_tokens == 2
    assert repaired.tokens_estimated is True


@pytest.mark.asyncio
async def test_backfill_partial_row_keeps_measured_input(store):
    entry = store.seed_cache("q-1", "gemini-2.5-flash", text="w" * 12, input_tokens=42, output_tokens=None)

    repaired = await analysis_cache.backfill_tokens(store, entry, prompt="p" * 400)

    assert (repaired.input_tokens, repaired.output_tokens) == (42, 3)
    stored = store.cache[("q-1", "gemini-2.5-flash")]
    assert (stored.input_tokens, stored.output_tokens, stored.tokens_estimated) == (42, 3, True)


def test_filled_counts_returns_concrete_integers(store):
    entry = store.seed_cache("q-1", "gemini-2.5-flash", text="v" * 5, input_tokens=None, output_tokens=None)

    assert analysis_cache.filled_counts(entry, prompt="p" * 9) == (3, 2)
