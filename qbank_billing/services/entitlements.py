"""
Entitlement resolver.

A user is entitled to an analysis once an entitlement row exists for the
exact (user, question, model) triple, whether they paid for it or received
it under the free trial. Entitlements live in their own table with a unique
constraint on that triple, apart from the usage log, which also records
unbilled regenerations.

Pure reads. Always resolved before any generation or billing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from qbank_billing.services.stores import BillingStore


@dataclass(frozen=True, slots=True)
class Entitlement:
    user_id: uuid.UUID
    question_id: str
    model_id: str
    paid_before: bool


async def has_paid_before(
    store: BillingStore,
    user_id: uuid.UUID,
    question_id: str,
    model_id: str,
) -> bool:
    return await store.has_entitlement(user_id, question_id, model_id)


async def resolve_entitlement(
    store: BillingStore,
    user_id: uuid.UUID,
    question_id: str,
    model_id: str,
) -> Entitlement:
    paid = await has_paid_before(store, user_id, question_id, model_id)
    return Entitlement(
        user_id=user_id,
        question_id=question_id,
        model_id=model_id,
        paid_before=paid,
    )
