# storefront/gateway.py
import logging
from typing import Any, Dict, List

import httpx

from storefront import config
from storefront.errors import AuthError, GatewayError, NetworkError

logger = logging.getLogger(__name__)


class PaymentGateway:
    """HTTPS client for the payment gateway functions.

    Every call carries the shopper's bearer token and a JSON body; a non-2xx
    answer is expected to look like ``{"error": "..."}`` and its message is
    passed to the user unchanged.
    """

    def __init__(self, base_url: str = None, client: httpx.AsyncClient = None, timeout: float = None):
        self.base_url = (base_url or config.PAYMENT_GATEWAY_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=config.PAYMENT_GATEWAY_TIMEOUT if timeout is None else timeout
        )

    async def aclose(self):
        await self._client.aclose()

    async def _post(self, path: str, access_token: str, payload: dict) -> Dict[str, Any]:
        if not access_token:
            raise AuthError("Failed to authenticate user")

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        url = f"{self.base_url}/{path}"
        logger.debug("POST %s", url)
        try:
            response = await self._client.post(url, headers=headers, json=payload)
        except httpx.TransportError as e:
            logger.exception("Payment gateway is unreachable: %s", url)
            raise NetworkError() from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code == 401:
            raise AuthError(data.get("error") or "Please sign in to complete your order")
        if not response.is_success:
            logger.warning("Payment gateway rejected %s: %s %s", path, response.status_code, data)
            raise GatewayError(data.get("error") or None)
        return data

    async def create_checkout_session(self, access_token: str, line_items: List[dict], customer_email: str,
                                      success_url: str, cancel_url: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        data = await self._post("create-checkout-session", access_token, {
            "line_items": line_items,
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        })
        if not data.get("url"):
            raise GatewayError("Payment gateway did not return a checkout URL")
        return data

    async def create_payment_intent(self, access_token: str, amount: int, items: List[dict],
                                    shipping: Dict[str, str]) -> Dict[str, Any]:
        data = await self._post("create-payment-intent", access_token, {
            "amount": amount,
            "items": items,
            "shipping": shipping,
        })
        if not data.get("clientSecret"):
            raise GatewayError("Failed to create payment intent")
        return data

    async def create_listing_checkout(self, access_token: str, price_id: str, mode: str,
                                      success_url: str, cancel_url: str) -> Dict[str, Any]:
        data = await self._post("stripe-checkout", access_token, {
            "price_id": price_id,
            "mode": mode,
            "success_url": success_url,
            "cancel_url": cancel_url,
        })
        if not data.get("url"):
            raise GatewayError("Payment gateway did not return a checkout URL")
        return data
