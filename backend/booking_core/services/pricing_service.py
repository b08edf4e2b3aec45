# backend/booking_core/services/pricing_service.py
"""
Price tier lookup.

A lesson's price depends only on its level and whether the buyer holds an
approved discount. Tiers are configured as ``<level>_<standard|discount>``
(e.g. ``GCSE_discount``) in ``settings.pricing_tiers``.
"""

from dataclasses import dataclass
import logging
from typing import Dict, Optional

from ..core.config import PriceTierConfig, settings
from ..core.exceptions import PriceNotConfiguredException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceTier:
    key: str
    price_id: str
    unit_amount: int
    currency: str


def tier_key(level: str, discount_approved: bool) -> str:
    return f"{level}_{'discount' if discount_approved else 'standard'}"


class PricingService:
    """Resolves the gateway price for a level and discount status."""

    def __init__(
        self,
        tiers: Optional[Dict[str, PriceTierConfig]] = None,
        currency: Optional[str] = None,
    ):
        self.tiers = tiers if tiers is not None else settings.pricing_tiers
        self.currency = currency or settings.stripe_currency

    def resolve_tier(self, level: str, discount_approved: bool) -> PriceTier:
        """
        Raises:
            PriceNotConfiguredException: no tier for this level/discount pair.
                This is an operator error and is logged at ERROR for alerting.
        """
        key = tier_key(level, discount_approved)
        config = self.tiers.get(key)
        if config is None:
            logger.error(
                "No price configured for tier",
                extra={"tier": key, "level": level, "discount_approved": discount_approved},
            )
            raise PriceNotConfiguredException(key)
        return PriceTier(
            key=key,
            price_id=config.price_id,
            unit_amount=config.unit_amount,
            currency=self.currency,
        )
