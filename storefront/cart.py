# storefront/cart.py
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.functions import (
    clear_user_cart,
    create_cart_item,
    delete_cart_item,
    get_cart_item,
    get_cart_item_by_product,
    get_cart_items,
    get_product_by_id,
    update_cart_item_quantity,
)
from storefront.db.schemas import CartItem, CartResponse
from storefront.errors import AuthError, NotFoundError, ValidationError
from storefront.pricing import PricingPolicy, apply_pricing, get_pricing_policy
from storefront.session import Session

logger = logging.getLogger(__name__)


class CartRegistry:
    """Один замок на корзину пользователя: изменения одной корзины идут по очереди.

    Замок существует, пока его кто-то держит или ждёт, затем запись удаляется.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}
        # Пользователи, у которых сейчас идёт оформление заказа
        self.checkouts: Set[str] = set()

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                del self._locks[user_id]

    def discard(self, user_id: str):
        # Замок не трогаем: занятый должен дождаться своих ожидающих
        self.checkouts.discard(user_id)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._locks


class CartStore:
    """Cart line items of the signed-in user, mirrored from the ``cart_items`` table.

    Every mutation is persisted immediately and followed by a reload of the
    item list. Mutations on the same cart are serialized through the
    registry lock, so an add followed by a remove of the same item always
    ends with the item removed, whatever order the round trips finish in.
    """

    def __init__(self, db: AsyncSession, session: Optional[Session], registry: CartRegistry = None,
                 pricing_policy: PricingPolicy = None):
        self.db = db
        self.session = session
        self.registry = registry or CartRegistry()
        self.pricing_policy = pricing_policy or get_pricing_policy()
        self.items: List[CartItem] = []
        self._in_flight = 0

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_price(self) -> float:
        return sum(item.quantity * item.product.price for item in self.items)

    def snapshot(self) -> Optional[CartResponse]:
        # Пока идёт запрос, список не считается актуальным
        if self.loading:
            return None
        return CartResponse(items=list(self.items), total_items=self.total_items, total_price=self.total_price)

    def _require_session(self) -> Session:
        if self.session is None:
            raise AuthError("Please sign in to manage your cart")
        return self.session

    @asynccontextmanager
    async def _locked(self, session: Session):
        self._in_flight += 1
        try:
            async with self.registry.hold(session.user_id):
                yield
        finally:
            self._in_flight -= 1

    async def _reload(self, session: Session):
        rows = await get_cart_items(self.db, session.user_id)
        items = []
        for row in rows:
            item = CartItem.model_validate(row)
            items.append(item.model_copy(update={"product": apply_pricing(item.product, self.pricing_policy)}))
        self.items = items

    async def refresh(self) -> List[CartItem]:
        session = self._require_session()
        async with self._locked(session):
            await self._reload(session)
        return self.items

    async def add_to_cart(self, product_id: int, quantity: int = 1) -> List[CartItem]:
        session = self._require_session()
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        async with self._locked(session):
            product = await get_product_by_id(self.db, product_id)
            if product is None:
                raise NotFoundError("Product not found")
            if product.stock <= 0:
                logger.warning("add_to_cart: product %s is out of stock", product_id)
                raise ValidationError("Product is out of stock")

            existing = await get_cart_item_by_product(self.db, session.user_id, product_id)
            if existing:
                if existing.quantity >= product.stock:
                    logger.warning("add_to_cart: product %s already at stock limit %s", product_id, product.stock)
                    raise ValidationError(f"Only {product.stock} of {product.name} in stock")
                # Уже в корзине - увеличиваем количество, но не больше остатка
                await update_cart_item_quantity(self.db, existing, min(existing.quantity + quantity, product.stock))
            else:
                await create_cart_item(self.db, session.user_id, product_id, min(quantity, product.stock))

            await self._reload(session)
        return self.items

    async def update_quantity(self, cart_item_id: int, new_quantity: int) -> List[CartItem]:
        if new_quantity <= 0:
            return await self.remove_from_cart(cart_item_id)

        session = self._require_session()
        async with self._locked(session):
            cart_item = await get_cart_item(self.db, session.user_id, cart_item_id)
            if cart_item is None:
                raise NotFoundError("Cart item not found")
            if cart_item.product.stock <= 0:
                logger.warning("update_quantity: product %s is out of stock", cart_item.product_id)
                raise ValidationError("Product is out of stock")
            quantity =max(1, min(new_quantity, cart_item.product.stock))
            if quantity != new_quantity:
                logger.debug("update_quantity: clamped %s to %s for item %s", new_quantity, quantity, cart_item_id)
            await update_cart_item_quantity(self.db, cart_item, quantity)
            await self._reload(session)
        return self.items

    async def remove_from_cart(self, cart_item_id: int) -> List[CartItem]:
        session = self._require_session()
        async with self._locked(session):
            await delete_cart_item(self.db, session.user_id, cart_item_id)
            await self._reload(session)
        return self.items

    async def clear(self, added_before: datetime = None):
        """Удаляет строки корзины; с ``added_before`` только добавленные не позже этого времени."""
        session = self._require_session()
        async with self._locked(session):
            removed = await clear_user_cart(self.db, session.user_id, added_before)
            await self._reload(session)
        logger.info("Cart cleared for user_id=%s, %s rows removed", session.user_id, removed)
