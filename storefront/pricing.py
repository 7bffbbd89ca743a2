# storefront/pricing.py
"""Pricing policy applied where products enter the catalog and the checkout.

A policy maps a product to the unit price the shopper is charged. The
test-phase promotion prices everything at zero; switching ``PRICING_POLICY``
to ``list`` charges the persisted price without touching any other code.
"""
from typing import Callable, Dict

from storefront import config
from storefront.db.schemas import Product

PricingPolicy = Callable[[Product], float]


def zero_price(product: Product) -> float:
    return 0.0


def list_price(product: Product) -> float:
    return float(product.price)


POLICIES: Dict[str, PricingPolicy] = {
    "zero": zero_price,
    "list": list_price,
}


def get_pricing_policy(name: str = None) -> PricingPolicy:
    name = name or config.PRICING_POLICY
    try:
        return POLICIES[name]
    except KeyError:
        raise ValueError(f"Unknown pricing policy: {name!r}") from None


def apply_pricing(product: Product, policy: PricingPolicy) -> Product:
    return product.model_copy(update={"price": policy(product)})


def to_minor_units(amount: float) -> int:
    """Цена в центах для шлюза."""
    return int(round(amount * 100))
