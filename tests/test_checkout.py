import asyncio
import json

import httpx
import pytest

from storefront import config
from storefront.cart import CartStore
from storefront.checkout import CheckoutOrchestrator
from storefront.db.schemas import ShippingInfo
from storefront.errors import (
    AuthError,
    CheckoutInProgressError,
    EmptyCartError,
    GatewayError,
    NetworkError,
)
from storefront.listings import LISTINGS, get_listing_by_id, get_listing_by_price_id
from storefront.pricing import list_price
from storefront.session import Session

from conftest import CHECKOUT_SESSION_ID


@pytest.fixture
def shipping():
    return ShippingInfo(
        name="Ada Shopper", email="shopper@example.com", address="1 Main St",
        city="Springfield", postalCode="12345", country="US",
    )


@pytest.fixture
async def filled_cart(cart, products):
    await cart.add_to_cart(products["lamp"].id, 2)
    await cart.add_to_cart(products["mug"].id, 1)
    return cart


@pytest.fixture
def orchestrator(session, filled_cart, gateway):
    return CheckoutOrchestrator(session, filled_cart, gateway)


async def test_empty_cart_makes_no_gateway_call(session, cart, gateway, fake_gateway, shipping):
    orchestrator = CheckoutOrchestrator(session, cart, gateway)

    with pytest.raises(EmptyCartError, match="Your cart is empty"):
        await orchestrator.submit_checkout(shipping)

    assert fake_gateway.requests == []


async def test_signed_out_checkout_makes_no_gateway_call(filled_cart, gateway, fake_gateway, shipping):
    orchestrator = CheckoutOrchestrator(None, filled_cart, gateway)

    with pytest.raises(AuthError, match="sign in"):
        await orchestrator.submit_checkout(shipping)

    assert fake_gateway.requests == []


async def test_expired_session_is_rejected(filled_cart, gateway, fake_gateway, shipping, expired_token):
    stale = Session(user_id="user-1", email="shopper@example.com", access_token=expired_token)
    orchestrator = CheckoutOrchestrator(stale, filled_cart, gateway)

    with pytest.raises(AuthError):
        await orchestrator.submit_checkout(shipping)

    assert fake_gateway.requests == []


async def test_submit_returns_success_redirect(orchestrator, shipping):
    redirect = await orchestrator.submit_checkout(shipping)

    prefix = config.SUCCESS_URL.split(config.CHECKOUT_SESSION_PLACEHOLDER)[0]
    assert redirect.url == prefix + CHECKOUT_SESSION_ID
    assert redirect.url.rsplit("session_id=", 1)[1]
    assert redirect.session_id == CHECKOUT_SESSION_ID
    assert not orchestrator.submitting


async def test_submit_request_payload(orchestrator, fake_gateway, session, products, shipping):
    await orchestrator.submit_checkout(shipping)

    [request] = fake_gateway.requests
    body = json.loads(request.content)
    assert request.url.path.endswith("/create-checkout-session")
    assert request.headers["Authorization"] == f"Bearer {session.access_token}"
    assert body["customer_email"] == "shopper@example.com"
    assert body["success_url"] == config.SUCCESS_URL
    assert body["cancel_url"] == config.CANCEL_URL

    first = body["line_items"][0]
    assert first["quantity"] == 2
    assert first["price_data"]["unit_amount"] == 0
    assert first["price_data"]["currency"] == "usd"
    assert first["price_data"]["product_data"]["name"] == "Desk Lamp"
    assert first["price_data"]["product_data"]["images"] == ["https://img.test/lamp.jpg"]

    metadata = body["metadata"]
    assert metadata["user_id"] == "user-1"
    assert json.loads(metadata["shipping_info"])["postalCode"] == "12345"
    assert json.loads(metadata["cart_items"]) == [
        {"product_id": products["lamp"].id, "quantity": 2, "price": 0},
        {"product_id": products["mug"].id, "quantity": 1, "price": 0},
    ]


async def test_list_prices_reach_the_gateway(db, session, registry, gateway, fake_gateway, products, shipping):
    cart = CartStore(db, session, registry, pricing_policy=list_price)
    await cart.add_to_cart(products["kettle"].id, 1)

    await CheckoutOrchestrator(session, cart, gateway).submit_checkout(shipping)

    [body] = fake_gateway.json_bodies()
    assert body["line_items"][0]["price_data"]["unit_amount"] == 3999
    assert json.loads(body["metadata"]["cart_items"])[0]["price"] == 39.99


async def test_gateway_error_message_is_passed_through(orchestrator, fake_gateway, shipping):
    fake_gateway.responder = lambda request: httpx.Response(400, json={"error": "No such price: price_123"})

    with pytest.raises(GatewayError) as excinfo:
        await orchestrator.submit_checkout(shipping)

    assert excinfo.value.message == "No such price: price_123"
    assert not orchestrator.submitting


async def test_gateway_error_without_body(orchestrator, fake_gateway, shipping):
    fake_gateway.responder = lambda request: httpx.Response(500, text="upstream exploded")

    with pytest.raises(GatewayError, match="Failed to create checkout session"):
        await orchestrator.submit_checkout(shipping)


async def test_gateway_unauthorized(orchestrator, fake_gateway, shipping):
    fake_gateway.responder = lambda request: httpx.Response(401, json={"error": "JWT expired"})

    with pytest.raises(AuthError, match="JWT expired"):
        await orchestrator.submit_checkout(shipping)


async def test_network_failure_resets_in_flight(orchestrator, fake_gateway, shipping):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    fake_gateway.responder = refuse

    with pytest.raises(NetworkError):
        await orchestrator.submit_checkout(shipping)
    assert not orchestrator.submitting

    fake_gateway.responder = fake_gateway.default_response
    redirect = await orchestrator.submit_checkout(shipping)
    assert redirect.session_id == CHECKOUT_SESSION_ID


async def test_second_submit_while_in_flight_is_rejected(orchestrator, fake_gateway, shipping):
    entered = asyncio.Event()
    release = asyncio.Event()

    async def slow(request):
        entered.set()
        await release.wait()
        return fake_gateway.default_response(request)

    fake_gateway.responder = slow
    first = asyncio.create_task(orchestrator.submit_checkout(shipping))
    await asyncio.wait_for(entered.wait(), 1)

    assert orchestrator.submitting
    with pytest.raises(CheckoutInProgressError):
        await orchestrator.submit_checkout(shipping)

    release.set()
    await first
    assert not orchestrator.submitting
    assert len(fake_gateway.requests) == 1


async def test_payment_intent(db, session, registry, gateway, fake_gateway, products, shipping):
    cart = CartStore(db, session, registry, pricing_policy=list_price)
    await cart.add_to_cart(products["lamp"].id, 2)

    intent = await CheckoutOrchestrator(session, cart, gateway).create_payment_intent(shipping)

    assert intent.client_secret == "pi_1_secret_x"
    assert intent.payment_intent_id == "pi_1"
    [body] = fake_gateway.json_bodies()
    assert body["amount"] == 4900
    assert body["items"] == [{"id": str(products["lamp"].id), "name": "Desk Lamp", "quantity": 2, "price": 24.5}]
    assert body["shipping"]["city"] == "Springfield"


async def test_payment_intent_needs_items(session, cart, gateway, fake_gateway, shipping):
    with pytest.raises(EmptyCartError):
        await CheckoutOrchestrator(session, cart, gateway).create_payment_intent(shipping)

    assert fake_gateway.requests == []


async def test_listing_purchase(session, cart, gateway, fake_gateway):
    listing = LISTINGS[0]

    redirect = await CheckoutOrchestrator(session, cart, gateway).purchase_listing(listing)

    assert redirect.session_id == CHECKOUT_SESSION_ID
    [body] = fake_gateway.json_bodies()
    assert fake_gateway.requests[0].url.path.endswith("/stripe-checkout")
    assert body["price_id"] == listing.price_id
    assert body["mode"] == "payment"
    assert body["cancel_url"] == config.LISTING_CANCEL_URL


async def test_listing_purchase_requires_sign_in(cart, gateway, fake_gateway):
    with pytest.raises(AuthError, match="make a purchase"):
        await CheckoutOrchestrator(None, cart, gateway).purchase_listing(LISTINGS[0])

    assert fake_gateway.requests == []


def test_listing_lookups():
    listing = LISTINGS[0]

    assert get_listing_by_id(listing.id) is listing
    assert get_listing_by_price_id(listing.price_id) is listing
    assert get_listing_by_id("prod_missing") is None
