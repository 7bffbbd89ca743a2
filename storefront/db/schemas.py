# storefront/db/schemas.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# Схема для товара (Product)
class Product(BaseModel):
    id: int
    name: str
    description: str = ""
    price: float
    image_url: str = ""
    category: str = ""
    stock: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Схема для строки корзины
class CartItem(BaseModel):
    id: int
    product_id: int
    quantity: int
    product: Product

    class Config:
        from_attributes = True


class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = 1


class CartResponse(BaseModel):
    items: List[CartItem]
    total_items: int
    total_price: float


class ShippingInfo(BaseModel):
    """Данные формы доставки: отдельно не хранятся, уходят в metadata шлюза."""

    name: str
    email: str
    address: str
    city: str
    postal_code: str = Field(alias="postalCode")
    country: str

    class Config:
        populate_by_name = True


# Схема для товара внутри заказа
class OrderProduct(BaseModel):
    id: int
    name: str
    image_url: str = ""

    class Config:
        from_attributes = True


class OrderItem(BaseModel):
    id: int
    quantity: int
    price: float
    product: OrderProduct

    class Config:
        from_attributes = True


class Order(BaseModel):
    id: int
    total_amount: float
    status: str
    created_at: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    checkout_session_id: Optional[str] = None
    order_items: List[OrderItem] = []

    class Config:
        from_attributes = True


class OrderConfirmation(BaseModel):
    session_id: Optional[str] = None
    order: Order
    cart_cleared: bool = False


class CheckoutRedirect(BaseModel):
    url: str
    session_id: Optional[str] = None


class PaymentIntent(BaseModel):
    client_secret: str
    payment_intent_id: str


# Состояние подписки для страницы профиля
class SubscriptionStatus(BaseModel):
    status: str
    active: bool = False
    plan: Optional[str] = None
    price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    payment_method_brand: Optional[str] = None
    payment_method_last4: Optional[str] = None
    message: Optional[str] = None
