"""
Server-side cost calculation for AI analysis requests.

Two steps, both pure:
  • real_cost()        — tokens -> what the backend call cost us (USD).
  • deduction_amount() — real cost -> what the user's wallet is debited,
                         after entitlement, trial and tier rules.

Using Decimal everywhere avoids floating-point rounding on money. All
policy numbers (multipliers, trial allowance) arrive via BillingPolicy,
which is built from settings — nothing here is a pricing literal.

Deduction table:

    paid before | trial applies | tier     | deduction
    ------------+---------------+----------+-------------------------------
    yes         | any           | any      | 0
    no          | yes           | standard | 0
    no          | no            | standard | real_cost × paid multiplier
    no          | any           | legacy   | real_cost × legacy multiplier
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from qbank_billing.core.config import Settings, settings
from qbank_billing.services.pricing import PricingTable
from qbank_billing.services.stores import SubscriptionStatus, SubscriptionTier, UserAccount

logger = logging.getLogger(__name__)

# Pre-computed divisor
_ONE_MILLION = Decimal("1000000")
_ZERO = Decimal("0")


@dataclass(frozen=True)
class BillingPolicy:
    """Pricing policy injected into the calculator and the orchestrator."""

    pricing: PricingTable = field(default_factory=PricingTable)
    trial_allowance: int = 2
    paid_multiplier: Decimal = Decimal("20")
    legacy_multiplier: Decimal = Decimal("1")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> BillingPolicy:
        return cls(
            pricing=PricingTable.from_settings(config),
            trial_allowance=config.TRIAL_ALLOWANCE,
            paid_multiplier=config.PAID_TIER_MULTIPLIER,
            legacy_multiplier=config.LEGACY_TIER_MULTIPLIER,
        )


def real_cost(
    model_id: str,
    input_tokens: int,
    output_tokens: int,
    pricing: PricingTable | None = None,
) -> Decimal:
    """
    Calculate the USD cost of one generation.

    Args:
        model_id:      Model identifier; unknown ids use the default price.
        input_tokens:  Prompt tokens (>= 0).
        output_tokens: Billable output tokens (>= 0), thinking included.
        pricing:       Table to price against (default: from settings).

    Returns:
        Exact Decimal cost in USD.
    """
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("Token counts must be non-negative")

    table = pricing if pricing is not None else PricingTable.from_settings()
    if not table.is_known(model_id):
        logger.warning("No pricing for model %r — using default price", model_id)
    price = table.get_price(model_id)

    input_cost = (Decimal(input_tokens) / _ONE_MILLION) * price.input
    output_cost = (Decimal(output_tokens) / _ONE_MILLION) * price.output

    return input_cost + output_cost


def deduction_amount(
    cost: Decimal,
    tier: SubscriptionTier,
    free_trial_applies: bool,
    has_paid_before: bool,
    policy: BillingPolicy,
) -> Decimal:
    """Apply the deduction table to a real cost."""
    if has_paid_before:
        return _ZERO
    if tier == SubscriptionTier.LEGACY:
        return cost * policy.legacy_multiplier
    if free_trial_applies:
        return _ZERO
    return cost * policy.paid_multiplier


def free_trial_applies(account: UserAccount, unlocked_count: int, policy: BillingPolicy) -> bool:
    """Standard-tier trial accounts get `trial_allowance` free analyses in total."""
    return (
        account.tier == SubscriptionTier.STANDARD
        and account.status == SubscriptionStatus.TRIAL
        and unlocked_count < policy.trial_allowance
    )
