# storefront/main.py
import logging
from typing import AsyncGenerator, List, Optional

from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import config
from storefront.cart import CartRegistry, CartStore
from storefront.catalog import SORT_NAME, CatalogReader, categories, filter_and_sort
from storefront.checkout import CheckoutOrchestrator
from storefront.db.database import get_db
from storefront.db.init_db import init_db
from storefront.db.schemas import (
    CartItemCreate,
    CartResponse,
    CheckoutRedirect,
    Order,
    OrderConfirmation,
    PaymentIntent,
    Product,
    ShippingInfo,
    SubscriptionStatus,
)
from storefront.errors import AuthError, NotFoundError, StorefrontError
from storefront.gateway import PaymentGateway
from storefront.listings import get_listing_by_id
from storefront.orders import OrderReconciler
from storefront.session import Session, SessionStore, send_request_and_wait_for_response
from storefront.subscriptions import SubscriptionReader

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)

# Замки корзин живут столько же, сколько приложение
cart_registry = CartRegistry()
_gateway: Optional[PaymentGateway] = None


async def lifespan(app: FastAPI) -> AsyncGenerator:
    await init_db()
    yield
    if _gateway is not None:
        await _gateway.aclose()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.STOREFRONT_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    logger.debug("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway()
    return _gateway


def get_identity_requester():
    return send_request_and_wait_for_response


def get_cart_registry() -> CartRegistry:
    return cart_registry


def get_session(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Session]:
    """Сессия из заголовка Authorization или cookie; без неё - None."""
    token = token or request.cookies.get("access_token")
    if not token:
        return None
    try:
        return Session.from_token(token)
    except AuthError as e:
        logger.debug("Token rejected: %s", e.message)
        return None


def get_cart(
    session: Optional[Session] = Depends(get_session),
    db: AsyncSession = Depends(get_db),
    registry: CartRegistry = Depends(get_cart_registry),
) -> CartStore:
    return CartStore(db, session, registry)


def _cart_response(cart: CartStore) -> CartResponse:
    return CartResponse(items=cart.items, total_items=cart.total_items, total_price=cart.total_price)


@app.get("/")
async def health_check():
    """Health check endpoint."""
    return {"status": "storefront running"}


@app.post("/login")
async def login_action(email: str = Form(...), password: str = Form(...), requester=Depends(get_identity_requester)):
    """Sign in through the identity provider and keep the token in a cookie."""
    session = await SessionStore(requester).sign_in(email, password)
    response = RedirectResponse(url="/", status_code=303)
    response.set_cookie(key="access_token", value=session.access_token, httponly=True, secure=True)
    return response


@app.get("/logout")
async def logout(session: Optional[Session] = Depends(get_session), registry: CartRegistry = Depends(get_cart_registry)):
    """Удаление токена и состояния корзины пользователя."""
    store = SessionStore(session=session)
    store.on_sign_out(lambda s: registry.discard(s.user_id))
    store.sign_out()
    response = RedirectResponse(url="/", status_code=303)
    response.delete_cookie("access_token")
    return response


@app.get("/api/products", response_model=List[Product])
async def read_products(
    searchquery: str = Query(default="", alias="search"),
    category: str = "",
    sort: str = SORT_NAME,
    db: AsyncSession = Depends(get_db),
):
    products = await CatalogReader(db).fetch_products()
    return filter_and_sort(products, searchquery, category, sort)


@app.get("/api/categories", response_model=List[str])
async def get_categories(db: AsyncSession = Depends(get_db)):
    products = await CatalogReader(db).fetch_products()
    return categories(products)


@app.get("/cart", response_model=CartResponse)
async def read_cart(cart: CartStore = Depends(get_cart)):
    await cart.refresh()
    return _cart_response(cart)


@app.post("/cart/add", response_model=CartResponse)
async def add_to_cart(item: CartItemCreate, cart: CartStore = Depends(get_cart)):
    await cart.add_to_cart(item.product_id, item.quantity)
    return _cart_response(cart)


@app.put("/cart/{item_id}", response_model=CartResponse)
async def update_cart_item_quantity(item_id: int, quantity: int, cart: CartStore = Depends(get_cart)):
    await cart.update_quantity(item_id, quantity)
    return _cart_response(cart)


@app.delete("/cart/{item_id}", response_model=CartResponse)
async def remove_from_cart(item_id: int, cart: CartStore = Depends(get_cart)):
    await cart.remove_from_cart(item_id)
    return _cart_response(cart)


async def _checkout(cart: CartStore, gateway: PaymentGateway) -> CheckoutOrchestrator:
    if cart.session is not None:
        await cart.refresh()
    return CheckoutOrchestrator(cart.session, cart, gateway)


@app.post("/checkout", response_class=RedirectResponse)
async def submit_checkout(shipping_info: ShippingInfo, cart: CartStore = Depends(get_cart),
                          gateway: PaymentGateway = Depends(get_gateway)):
    orchestrator = await _checkout(cart, gateway)
    redirect: CheckoutRedirect = await orchestrator.submit_checkout(shipping_info)
    # Полный переход на страницу оплаты шлюза
    return RedirectResponse(url=redirect.url, status_code=303)


@app.post("/checkout/payment-intent", response_model=PaymentIntent)
async def create_payment_intent(shipping_info: ShippingInfo, cart: CartStore = Depends(get_cart),
                                gateway: PaymentGateway = Depends(get_gateway)):
    orchestrator = await _checkout(cart, gateway)
    return await orchestrator.create_payment_intent(shipping_info)


@app.post("/listings/{listing_id}/purchase", response_class=RedirectResponse)
async def purchase_listing(listing_id: str, cart: CartStore = Depends(get_cart),
                           gateway: PaymentGateway = Depends(get_gateway)):
    listing = get_listing_by_id(listing_id)
    if listing is None:
        raise NotFoundError("Product not found")
    redirect = await CheckoutOrchestrator(cart.session, cart, gateway).purchase_listing(listing)
    return RedirectResponse(url=redirect.url, status_code=303)


@app.get("/success", response_model=OrderConfirmation)
async def checkout_success(session_id: Optional[str] = None, cart: CartStore = Depends(get_cart)):
    return await OrderReconciler(cart.db, cart.session, cart).reconcile(session_id)


@app.get("/orders", response_model=List[Order])
async def order_history(cart: CartStore = Depends(get_cart)):
    return await OrderReconciler(cart.db, cart.session).order_history()


@app.get("/subscription", response_model=SubscriptionStatus)
async def read_subscription(session: Optional[Session] = Depends(get_session), db: AsyncSession = Depends(get_db)):
    return await SubscriptionReader(db, session).current()
