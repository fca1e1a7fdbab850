"""
Tests for wallet settlement.
"""
import dataclasses
from decimal import Decimal

import pytest

from qbank_billing.services import ledger
from qbank_billing.services.errors import InsufficientFunds
from qbank_billing.services.stores import (
    ResultSource,
    SettlementStatus,
    SubscriptionStatus,
    SubscriptionTier,
    TokenCounts,
    UsageRecord,
)


def make_record(account, amount, question_id="q-1"):
    return UsageRecord(
        user_id=account.id,
        question_id=question_id,
        model_id="gemini-2.5-flash",
        result_source=ResultSource.API,
        tokens=TokenCounts(100, 200, 0),
        real_cost=Decimal("0.001"),
        charged_amount=Decimal(amount),
    )


@pytest.mark.asyncio
async def test_debits_and_logs_together(store):
    account = store.add_profile(balance="1.00")

    outcome = await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    assert outcome.status == SettlementStatus.RECORDED
    assert outcome.charged == Decimal("0.25")
    assert store.balance(account.id) == Decimal("0.75")
    assert len(store.logs_for(account.id)) == 1


@pytest.mark.asyncio
async def test_insufficient_funds_writes_nothing(store):
    account = store.add_profile(balance="0.10")

    with pytest.raises(InsufficientFunds) as excinfo:
        await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    assert excinfo.value.required == Decimal("0.25")
    assert excinfo.value.available == Decimal("0.10")
    assert "top up" in str(excinfo.value)
    assert store.logs == []
    assert "record_settlement" not in store.calls
    assert store.balance(account.id) == Decimal("0.10")


@pytest.mark.asyncio
async def test_exact_balance_is_enough(store):
    account = store.add_profile(balance="0.25")

    await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    assert store.balance(account.id) == 0


@pytest.mark.asyncio
async def test_zero_deduction_always_succeeds(store):
    account = store.add_profile(status=SubscriptionStatus.TRIAL, balance="0")

    outcome = await ledger.settle(store, account, Decimal("0"), make_record(account, "0"))

    assert outcome.ok
    assert outcome.charged == 0
    assert len(store.logs) == 1


@pytest.mark.asyncio
async def test_legacy_may_go_negative(store):
    account = store.add_profile(tier=SubscriptionTier.LEGACY, balance="0")

    outcome = await ledger.settle(store, account, Decimal("0.004"), make_record(account, "0.004"))

    assert outcome.charged == Decimal("0.004")
    assert store.balance(account.id) == Decimal("-0.004")


@pytest.mark.asyncio
async def test_duplicate_triple_is_not_charged_twice(store):
    account = store.add_profile(balance="1.00")
    await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    outcome = await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    assert outcome.status == SettlementStatus.ALREADY_ENTITLED
    assert outcome.charged == 0
    assert store.balance(account.id) == Decimal("0.75")
    assert len(store.logs) == 1


@pytest.mark.asyncio
async def test_conditional_debit_refusal_raises(store):
    # Snapshot says 1.00, but the wallet was drained by a concurrent request
    account = store.add_profile(balance="1.00")
    store.profiles[account.id] = dataclasses.replace(account, balance=Decimal("0.05"))

    with pytest.raises(InsufficientFunds):
        await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.25"))

    assert store.logs == []


@pytest.mark.asyncio
async def test_record_must_match_deduction(store):
    account = store.add_profile(balance="1.00")

    with pytest.raises(ValueError):
        await ledger.settle(store, account, Decimal("0.25"), make_record(account, "0.10"))


@pytest.mark.asyncio
async def test_trial_allowance_rechecked_at_settlement(store):
    account = store.add_profile(status=SubscriptionStatus.TRIAL, balance="0")
    store.seed_log(account.id, "q-a", "gemini-2.5-flash")
    store.seed_log(account.id, "q-b", "gemini-2.5-flash")

    outcome = await ledger.settle(
        store, account, Decimal("0"), make_record(account, "0"), trial_allowance=2,
    )

    assert outcome.status == SettlementStatus.TRIAL_EXHAUSTED
    assert not outcome.ok
    assert outcome.charged == 0
    assert len(store.logs) == 2
    assert len(store.entitlements_for(account.id)) == 2


@pytest.mark.asyncio
async def test_unbilled_usage_is_logged_without_entitlement(store):
    account = store.add_profile(balance="1.00")
    record = dataclasses.replace(
        make_record(account, "0"), result_source=ResultSource.PURCHASED_REGENERATED,
    )

    await ledger.record_unbilled(store, record)

    assert store.logs == [record]
    assert store.entitlements == set()
    assert store.balance(account.id) == Decimal("1.00")


@pytest.mark.asyncio
async def test_unbilled_usage_refuses_a_charge(store):
    account = store.add_profile(balance="1.00")

    with pytest.raises(ValueError):
        await ledger.record_unbilled(store, make_record(account, "0.25"))

    assert "record_usage" not in store.calls
