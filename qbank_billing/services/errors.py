"""
Billing-core error taxonomy.

Services raise these; the FastAPI app maps them to HTTP status codes and
a `{"error": "..."}` body. Messages are user-facing, so they say what the
user can do about the failure (top up, upgrade) and nothing internal.

None of these are retried automatically — the caller owns retry/backoff.
"""

from __future__ import annotations

from decimal import Decimal


class BillingError(Exception):
    """Base class for every failure the billing core reports to callers."""

    message: str = "AI analysis request failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class ProfileNotFound(BillingError):
    """The authenticated user has no profile row."""

    message = "User profile not found."


class TrialLimitReached(BillingError):
    """A trial account used its free analyses and has no credit."""

    message = (
        "Free trial limit reached. Upgrade your plan or top up credits "
        "to continue using AI analysis."
    )


class InsufficientFunds(BillingError):
    """The wallet cannot cover the deduction for this request."""

    def __init__(self, required: Decimal | None, available: Decimal) -> None:
        self.required = required
        self.available = available
        if required is None:
            # Refused before the cost was known (empty wallet)
            detail = f"your balance is ${available:.4f}"
        else:
            detail = f"this analysis costs ${required:.4f} but your balance is ${available:.4f}"
        super().__init__(f"Insufficient credits: {detail}. Please top up your wallet.")


class GenerationBackendError(BillingError):
    """The external language-model call failed or returned nothing usable."""

    message = "AI analysis service is temporarily unavailable."


class PersistenceError(BillingError):
    """The billing database could not be read, or a write failed and was rolled back."""

    message = "Failed to record AI usage. Please try again."
