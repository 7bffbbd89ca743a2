# storefront/catalog.py
import logging
from datetime import datetime
from typing import List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.functions import get_all_products
from storefront.db.schemas import Product
from storefront.pricing import PricingPolicy, apply_pricing, get_pricing_policy

logger = logging.getLogger(__name__)

SORT_NAME = "name"
SORT_PRICE_ASC = "price_asc"
SORT_PRICE_DESC = "price_desc"
SORT_NEWEST = "newest"
SORT_KEYS = (SORT_NAME, SORT_PRICE_ASC, SORT_PRICE_DESC, SORT_NEWEST)


class CatalogReader:
    def __init__(self, db: AsyncSession, pricing_policy: PricingPolicy = None):
        self.db = db
        self.pricing_policy = pricing_policy or get_pricing_policy()

    async def fetch_products(self) -> List[Product]:
        """Все товары, новые первыми, с применённой ценовой политикой."""
        rows = await get_all_products(self.db)
        products = [apply_pricing(Product.model_validate(row), self.pricing_policy) for row in rows]
        logger.debug("fetch_products: %d products", len(products))
        return products


def categories(products: Sequence[Product]) -> List[str]:
    seen = []
    for product in products:
        if product.category not in seen:
            seen.append(product.category)
    return seen


def _matches(product: Product, query: str) -> bool:
    return (
        query in product.name.lower()
        or query in product.description.lower()
        or query in product.category.lower()
    )


def filter_and_sort(products: Sequence[Product], query: str = "", category: str = "", sort_key: str = SORT_NAME) -> List[Product]:
    """Pure filter/sort over an already fetched product list.

    ``query`` is a case-insensitive substring matched against name,
    description and category; an empty ``category`` means all categories.
    Unknown sort keys fall back to sorting by name.
    """
    filtered = list(products)

    query = (query or "").strip().lower()
    if query:
        filtered = [p for p in filtered if _matches(p, query)]

    if category:
        filtered = [p for p in filtered if p.category == category]

    if sort_key == SORT_PRICE_ASC:
        filtered.sort(key=lambda p: p.price)
    elif sort_key == SORT_PRICE_DESC:
        filtered.sort(key=lambda p: p.price, reverse=True)
    elif sort_key == SORT_NEWEST:
        filtered.sort(key=lambda p: p.created_at or datetime.min, reverse=True)
    else:
        filtered.sort(key=lambda p: (p.name.casefold(), p.name))

    return filtered
