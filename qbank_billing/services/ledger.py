"""
Billing ledger / wallet mutator.

settle() is the only path that debits a wallet. It:
  1. Checks funds for standard-tier accounts with a positive deduction.
  2. Grants the entitlement, appends the usage log and debits the balance
     in ONE transaction (entitlement, then log, then debit; all commit or
     none does).

Ordering and failure modes:
  • The store's debit is conditional (balance >= amount) for standard
    accounts, so a concurrent spend between the check in step 1 and the
    write in step 2 is caught by the database, and the inserts are
    rolled back with it.
  • A unique-constraint conflict on the entitlement insert means another
    request already settled this (user, question, model). Nothing is
    written and the outcome is ALREADY_ENTITLED — no second charge.
  • Trial-free settlements re-check the trial allowance inside the
    transaction. If concurrent requests used it up meanwhile the outcome
    is TRIAL_EXHAUSTED and the caller must re-price the request.
  • Any other write failure rolls back everything and raises
    PersistenceError.

record_unbilled() appends a cost row for a generation nobody is charged
for (regenerating an analysis the user already owns).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from qbank_billing.services.errors import InsufficientFunds
from qbank_billing.services.stores import (
    BillingStore,
    SettlementStatus,
    SubscriptionTier,
    UsageRecord,
    UserAccount,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class SettlementOutcome:
    status: SettlementStatus
    charged: Decimal

    @property
    def ok(self) -> bool:
        return self.status in (SettlementStatus.RECORDED, SettlementStatus.ALREADY_ENTITLED)


def requires_funds(account: UserAccount, deduction: Decimal) -> bool:
    """Only standard-tier accounts with a positive deduction can be refused."""
    return account.tier == SubscriptionTier.STANDARD and deduction > _ZERO


def check_funds(account: UserAccount, deduction: Decimal) -> None:
    """Raise InsufficientFunds if the deduction would overdraw the wallet."""
    if requires_funds(account, deduction) and account.balance - deduction < _ZERO:
        raise InsufficientFunds(required=deduction, available=account.balance)


async def settle(
    store: BillingStore,
    account: UserAccount,
    deduction: Decimal,
    record: UsageRecord,
    trial_allowance: int | None = None,
) -> SettlementOutcome:
    """
    Validate funds, then grant the entitlement, log usage and debit.

    Pass trial_allowance only for records priced as trial-free.

    Raises:
        InsufficientFunds: standard tier, positive deduction, balance too low.
        PersistenceError:  the store could not write (already rolled back).
    """
    if record.charged_amount != deduction:
        raise ValueError("Usage record charged_amount must equal the deduction")

    check_funds(account, deduction)

    status = await store.record_settlement(
        record,
        require_funds=requires_funds(account, deduction),
        trial_allowance=trial_allowance,
    )

    if status == SettlementStatus.INSUFFICIENT_FUNDS:
        # Balance moved under us between the read and the conditional debit.
        logger.warning(
            "Conditional debit refused for user %s (deduction=%s)",
            account.id,
            deduction,
        )
        raise InsufficientFunds(required=deduction, available=account.balance)

    if status == SettlementStatus.ALREADY_ENTITLED:
        logger.info(
            "Concurrent settlement already recorded for user=%s question=%s model=%s, no charge",
            record.user_id,
            record.question_id,
            record.model_id,
        )
        return SettlementOutcome(status=status, charged=_ZERO)

    if status == SettlementStatus.TRIAL_EXHAUSTED:
        logger.info(
            "Trial allowance used up by concurrent requests for user=%s question=%s",
            record.user_id,
            record.question_id,
        )
        return SettlementOutcome(status=status, charged=_ZERO)

    logger.info(
        "Settled user=%s question=%s model=%s source=%s real_cost=%s charged=%s",
        record.user_id,
        record.question_id,
        record.model_id,
        record.result_source.value,
        record.real_cost,
        deduction,
    )
    return SettlementOutcome(status=status, charged=deduction)


async def record_unbilled(store: BillingStore, record: UsageRecord) -> None:
    """Log the real cost of a generation the house pays for."""
    if record.charged_amount != _ZERO:
        raise ValueError("Unbilled usage must have a zero charged_amount")

    await store.record_usage(record)
    logger.info(
        "Logged unbilled %s for user=%s question=%s model=%s (real_cost=%s)",
        record.result_source.value,
        record.user_id,
        record.question_id,
        record.model_id,
        record.real_cost,
    )
