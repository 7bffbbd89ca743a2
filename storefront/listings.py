# storefront/listings.py
from dataclasses import dataclass
from typing import List, Optional

MODE_PAYMENT = "payment"
MODE_SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class GatewayListing:
    """Товар, заведённый прямо в платёжном шлюзе (покупается без корзины)."""

    id: str
    price_id: str
    name: str
    description: str
    mode: str = MODE_PAYMENT


LISTINGS: List[GatewayListing] = [
    GatewayListing(
        id="prod_ScrTVkWfP2gI7B",
        price_id="price_1RhbkQR4HjYicDO0tYEGLzl5",
        name="Premium E-Commerce Package",
        description="Complete e-commerce solution with advanced features, premium support, "
                    "and unlimited access to all tools.",
        mode=MODE_PAYMENT,
    ),
]


def get_listing_by_id(listing_id: str) -> Optional[GatewayListing]:
    return next((listing for listing in LISTINGS if listing.id == listing_id), None)


def get_listing_by_price_id(price_id: str) -> Optional[GatewayListing]:
    return next((listing for listing in LISTINGS if listing.price_id == price_id), None)
