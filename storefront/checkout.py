# storefront/checkout.py
import json
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from storefront import config
from storefront.auth_utils import decode_token
from storefront.cart import CartStore
from storefront.db.schemas import CheckoutRedirect, PaymentIntent, ShippingInfo
from storefront.errors import AuthError, CheckoutInProgressError, EmptyCartError
from storefront.gateway import PaymentGateway
from storefront.listings import GatewayListing
from storefront.pricing import to_minor_units
from storefront.session import Session

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    """Turns the cart into a payment gateway checkout session.

    Unit prices come from the cart's products, which already carry the
    pricing policy, so lifting the zero-price promotion needs no change
    here. The gateway answers with a URL the shopper is redirected to;
    once issued, that redirect cannot be taken back.
    """

    def __init__(self, session: Optional[Session], cart: CartStore, gateway: PaymentGateway,
                 success_url: str = None, cancel_url: str = None, currency: str = None):
        self.session = session
        self.cart = cart
        self.gateway = gateway
        self.success_url = success_url or config.SUCCESS_URL
        self.cancel_url = cancel_url or config.CANCEL_URL
        self.currency = currency or config.PAYMENT_CURRENCY

    def _require_session(self, message: str) -> Session:
        if self.session is None:
            raise AuthError(message)
        # Токен мог истечь после входа
        decode_token(self.session.access_token)
        return self.session

    def _require_items(self):
        if not self.cart.items:
            raise EmptyCartError()

    @property
    def submitting(self) -> bool:
        return self.session is not None and self.session.user_id in self.cart.registry.checkouts

    @asynccontextmanager
    async def _in_flight(self, session: Session):
        checkouts = self.cart.registry.checkouts
        if session.user_id in checkouts:
            raise CheckoutInProgressError()
        checkouts.add(session.user_id)
        try:
            yield
        finally:
            checkouts.discard(session.user_id)

    def build_line_items(self) -> List[dict]:
        return [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": item.product.name,
                        "description": item.product.description or f"Quantity: {item.quantity}",
                        "images": [item.product.image_url] if item.product.image_url else [],
                    },
                    "unit_amount": to_minor_units(item.product.price),
                },
                "quantity": item.quantity,
            }
            for item in self.cart.items
        ]

    def build_metadata(self, session: Session, shipping_info: ShippingInfo) -> Dict[str, str]:
        # Метаданные шлюза - только строки
        return {
            "user_id": session.user_id,
            "shipping_info": json.dumps(shipping_info.model_dump(by_alias=True)),
            "cart_items": json.dumps([
                {"product_id": item.product_id, "quantity": item.quantity, "price": item.product.price}
                for item in self.cart.items
            ]),
        }

    async def submit_checkout(self, shipping_info: ShippingInfo) -> CheckoutRedirect:
        session = self._require_session("Please sign in to complete your order")
        self._require_items()

        async with self._in_flight(session):
            data = await self.gateway.create_checkout_session(
                session.access_token,
                line_items=self.build_line_items(),
                customer_email=session.email or shipping_info.email,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                metadata=self.build_metadata(session, shipping_info),
            )
        logger.info("Checkout session created for user_id=%s, %d line items", session.user_id, len(self.cart.items))
        return CheckoutRedirect(url=data["url"], session_id=data.get("id"))

    async def create_payment_intent(self, shipping_info: ShippingInfo) -> PaymentIntent:
        session = self._require_session("Please sign in to complete your order")
        self._require_items()

        items = [
            {"id": str(item.product_id), "name": item.product.name, "quantity": item.quantity, "price": item.product.price}
            for item in self.cart.items
        ]
        async with self._in_flight(session):
            data = await self.gateway.create_payment_intent(
                session.access_token,
                amount=to_minor_units(self.cart.total_price),
                items=items,
                shipping=shipping_info.model_dump(by_alias=True),
            )
        return PaymentIntent(client_secret=data["clientSecret"], payment_intent_id=data.get("paymentIntentId", ""))

    async def purchase_listing(self, listing: GatewayListing) -> CheckoutRedirect:
        session = self._require_session("Please sign in to make a purchase")

        async with self._in_flight(session):
            data = await self.gateway.create_listing_checkout(
                session.access_token,
                price_id=listing.price_id,
                mode=listing.mode,
                success_url=self.success_url,
                cancel_url=config.LISTING_CANCEL_URL,
            )
        logger.info("Listing checkout created for user_id=%s, listing=%s", session.user_id, listing.id)
        return CheckoutRedirect(url=data["url"], session_id=data.get("id"))
