# storefront/orders.py
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.cart import CartStore
from storefront.db.functions import (
    get_latest_order,
    get_order_by_checkout_session,
    get_user_orders,
    mark_order_reconciled,
)
from storefront.db.schemas import Order, OrderConfirmation
from storefront.errors import AuthError, OrderNotFoundError
from storefront.session import Session

logger = logging.getLogger(__name__)


class OrderReconciler:
    """View of the orders the server side created after payment.

    With a ``session_id`` from the success redirect the order is looked up
    by that checkout session; without one, the newest order of the user is
    shown. The first confirmation of an order clears the cart lines added
    before the order was placed; later confirmations leave the cart alone.
    """

    def __init__(self, db: AsyncSession, session: Optional[Session], cart: CartStore = None):
        self.db = db
        self.session = session
        self.cart = cart

    def _require_session(self) -> Session:
        if self.session is None:
            raise AuthError("Please sign in to view your orders")
        return self.session

    async def reconcile(self, session_id: str = None) -> OrderConfirmation:
        session = self._require_session()
        if session_id:
            order = await get_order_by_checkout_session(self.db, session.user_id, session_id)
        else:
            order = await get_latest_order(self.db, session.user_id)

        if order is None:
            logger.warning("No order yet for user_id=%s, session_id=%s", session.user_id, session_id)
            raise OrderNotFoundError("We could not find your order yet. Please check your order history shortly.")

        confirmation = OrderConfirmation(session_id=session_id, order=Order.model_validate(order))
        # Корзину чистим один раз на заказ и только от строк, добавленных до него
        if self.cart is not None and await mark_order_reconciled(self.db, order.id):
            await self.cart.clear(added_before=order.created_at)
            confirmation.cart_cleared = True
        return confirmation

    async def order_history(self) -> List[Order]:
        session = self._require_session()
        orders = await get_user_orders(self.db, session.user_id)
        return [Order.model_validate(order) for order in orders]
