"""
Tier pricing.

WHY: Every client is attached to one of five price lists (A..E). Catalog
rows often fill in only some of them, so the price used at the till walks a
fixed fallback chain instead of trusting one column.

RESOLUTION ORDER:
1. The requested tier
2. The remaining tiers in the order E, A, B, C, D
3. The product base price
4. The configured default (a sale is never priced at zero by accident)

The resolver is pure: same sheet and tier, same price.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..enums import Tier, TIER_FALLBACK_ORDER


@dataclass(frozen=True)
class PriceSheet:
    """Tier prices and base price of one sale unit, detached from the session."""
    tier_prices: dict = field(default_factory=dict)  # Tier -> cents
    base_price_cents: int = 0

    @classmethod
    def for_item(cls, product, variant=None) -> "PriceSheet":
        """
        Build the sheet for a product or one of its variants.

        A variant prices off its own tier columns and falls back to its
        product's base price.
        """
        source = variant if variant is not None else product
        prices = {Tier.parse(key): cents for key, cents in source.tier_prices().items()}
        return cls(tier_prices=prices, base_price_cents=product.price_cents or 0)


def _positive(cents) -> int:
    return cents if cents and cents > 0 else 0


def tier_chain(tier: Tier) -> tuple:
    """Requested tier first, then the fallback order without repeating it."""
    return (tier,) + tuple(t for t in TIER_FALLBACK_ORDER if t != tier)


def resolve_unit_price(item, tier=None, *, default_price_cents: int = 1000) -> int:
    """
    Unit price in cents for ``item`` (a PriceSheet, Product or ProductVariant).

    ``tier=None`` means no client is selected and prices on tier E.
    """
    sheet = item if isinstance(item, PriceSheet) else PriceSheet.for_item(
        getattr(item, "product", None) or item,
        item if getattr(item, "product", None) is not None else None,
    )
    requested = Tier.E if tier is None else Tier.parse(tier)

    for candidate in tier_chain(requested):
        cents = _positive(sheet.tier_prices.get(candidate))
        if cents:
            return cents

    base = _positive(sheet.base_price_cents)
    if base:
        return base
    return default_price_cents


def tier_for_client(client, default_tier=Tier.E) -> Tier:
    """Pricing tier of ``client``; walk-in sales and untiered clients use ``default_tier``."""
    if client is None:
        return Tier.parse(default_tier)
    label = getattr(client, "subscription_tier", None)
    if label is None or (isinstance(label, str) and not label.strip()):
        return Tier.parse(default_tier)
    return Tier.parse(label)
