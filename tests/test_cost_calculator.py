"""
Tests for pricing lookup, real cost and the deduction table.
"""
import uuid
from decimal import Decimal

import pytest

from qbank_billing.core.config import Settings
from qbank_billing.services.cost_calculator import (
    BillingPolicy,
    deduction_amount,
    free_trial_applies,
    real_cost,
)
from qbank_billing.services.stores import SubscriptionStatus, SubscriptionTier, UserAccount


class TestRealCost:
    """Tokens -> USD."""

    def test_one_million_each_equals_price_sum(self, pricing):
        cost = real_cost("gemini-2.5-flash", 1_000_000, 1_000_000, pricing)
        assert cost == Decimal("0.30") + Decimal("2.50")

    def test_unknown_model_uses_default_price(self, pricing):
        cost = real_cost("some-future-model", 1_000_000, 1_000_000, pricing)
        assert cost == pricing.default.input + pricing.default.output

    def test_fractional_usage(self, pricing):
        cost = real_cost("gemini-2.5-pro", 1000, 2500, pricing)
        assert cost == Decimal("0.00125") + Decimal("0.025")

    def test_zero_tokens_cost_nothing(self, pricing):
        assert real_cost("gemini-2.5-flash", 0, 0, pricing) == 0

    def test_deterministic(self, pricing):
        first = real_cost("gemini-2.5-pro", 1234, 5678, pricing)
        second = real_cost("gemini-2.5-pro", 1234, 5678, pricing)
        assert first == second

    def test_negative_tokens_rejected(self, pricing):
        with pytest.raises(ValueError):
            real_cost("gemini-2.5-flash", -1, 10, pricing)


class TestDeductionAmount:
    """The decision table, row by row."""

    COST = Decimal("0.01")

    @pytest.mark.parametrize("tier", list(SubscriptionTier))
    @pytest.mark.parametrize("trial", [True, False])
    def test_paid_before_is_always_free(self, policy, tier, trial):
        assert deduction_amount(self.COST, tier, trial, True, policy) == 0

    def test_standard_trial_is_free(self, policy):
        assert deduction_amount(self.COST, SubscriptionTier.STANDARD, True, False, policy) == 0

    def test_standard_paid_uses_multiplier(self, policy):
        deduction = deduction_amount(self.COST, SubscriptionTier.STANDARD, False, False, policy)
        assert deduction == Decimal("0.20")

    @pytest.mark.parametrize("trial", [True, False])
    def test_legacy_billed_at_cost(self, policy, trial):
        deduction = deduction_amount(self.COST, SubscriptionTier.LEGACY, trial, False, policy)
        assert deduction == self.COST

    def test_multiplier_is_configurable(self, pricing):
        policy = BillingPolicy(pricing=pricing, paid_multiplier=Decimal("5"))
        deduction = deduction_amount(self.COST, SubscriptionTier.STANDARD, False, False, policy)
        assert deduction == Decimal("0.05")


class TestFreeTrial:
    """Trial allowance boundary."""

    def account(self, tier=SubscriptionTier.STANDARD, status=SubscriptionStatus.TRIAL):
        return UserAccount(id=uuid.uuid4(), tier=tier, status=status, balance=Decimal("0"))

    @pytest.mark.parametrize("usage, expected", [(0, True), (1, True), (2, False), (7, False)])
    def test_allowance_of_two(self, policy, usage, expected):
        assert free_trial_applies(self.account(), usage, policy) is expected

    def test_active_accounts_get_no_trial(self, policy):
        account = self.account(status=SubscriptionStatus.ACTIVE)
        assert free_trial_applies(account, 0, policy) is False

    def test_legacy_accounts_get_no_trial(self, policy):
        account = self.account(tier=SubscriptionTier.LEGACY)
        assert free_trial_applies(account, 0, policy) is False


class TestPolicyFromSettings:
    """Policy numbers come from configuration."""

    def test_defaults(self):
        config = Settings(DATABASE_URL="postgresql+asyncpg://x:y@localhost/z")
        policy = BillingPolicy.from_settings(config)
        assert policy.trial_allowance == 2
        assert policy.paid_multiplier == Decimal("20")
        assert policy.legacy_multiplier == Decimal("1")
        assert "gemini-2.5-flash" in policy.pricing.get_supported_models()

    def test_overrides(self):
        config = Settings(
            DATABASE_URL="postgresql+asyncpg://x:y@localhost/z",
            TRIAL_ALLOWANCE=5,
            PAID_TIER_MULTIPLIER=Decimal("12.5"),
            MODEL_PRICING={"tiny": {"input": "0.01", "output": "0.02"}},
            DEFAULT_PRICE_INPUT=Decimal("9"),
        )
        policy = BillingPolicy.from_settings(config)
        assert policy.trial_allowance == 5
        assert policy.paid_multiplier == Decimal("12.5")
        assert policy.pricing.get_supported_models() == ["tiny"]
        assert policy.pricing.get_price("tiny").output == Decimal("0.02")
        assert policy.pricing.get_price("unknown").input == Decimal("9")
