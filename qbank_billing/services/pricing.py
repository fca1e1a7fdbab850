"""
Model pricing table.

Per-million-token USD prices keyed by model id, with a default price for
any model id the table does not know. The table is built from settings
(MODEL_PRICING / DEFAULT_PRICE_*) so prices change without a deploy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from qbank_billing.core.config import ModelPrice, Settings, settings


@dataclass(frozen=True)
class PricingTable:
    """Model id -> price, with a fallback for unrecognised models."""

    prices: dict[str, ModelPrice] = field(default_factory=dict)
    default: ModelPrice = field(
        default_factory=lambda: ModelPrice(input=Decimal("0.30"), output=Decimal("2.50"))
    )

    def get_price(self, model_id: str) -> ModelPrice:
        """Return the model's price, or the default price if it is unknown."""
        return self.prices.get(model_id, self.default)

    def is_known(self, model_id: str) -> bool:
        return model_id in self.prices

    def get_supported_models(self) -> list[str]:
        """Return a sorted list of model ids with explicit pricing."""
        return sorted(self.prices.keys())

    @classmethod
    def from_settings(cls, config: Settings = settings) -> PricingTable:
        return cls(
            prices=dict(config.MODEL_PRICING),
            default=ModelPrice(
                input=config.DEFAULT_PRICE_INPUT,
                output=config.DEFAULT_PRICE_OUTPUT,
            ),
        )
