# storefront/db/models.py
from datetime import datetime

from sqlalchemy import Boolean, Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    description = Column(String, nullable=False, default="")
    price = Column(Float, nullable=False, default=0)
    image_url = Column(String, nullable=False, default="")
    category = Column(String, index=True, nullable=False, default="")
    stock = Column(Integer, nullable=False, default=0)  # Количество в наличии
    created_at = Column(DateTime, default=datetime.utcnow)


class CartItem(Base):
    __tablename__ = "cart_items"
    # Одна строка на пару (пользователь, товар)
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_items_user_product"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product")


class Order(Base):
    """Заказы создаются на стороне сервера (webhook), здесь только читаются."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    total_amount = Column(Float, nullable=False, default=0)
    status = Column(String, default="pending")  # Статус заказа
    created_at = Column(DateTime, default=datetime.utcnow)  # Дата создания заказа
    payment_intent_id = Column(String, nullable=True)
    checkout_session_id = Column(String, index=True, nullable=True)
    # Когда подтверждение заказа впервые очистило корзину
    reconciled_at = Column(DateTime, nullable=True)

    order_items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"))
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=1)  # Количество товара
    price = Column(Float, nullable=False, default=0)

    order = relationship("Order", back_populates="order_items")
    product = relationship("Product")


class Subscription(Base):
    """Подписка пользователя в платёжном шлюзе; пишет webhook, здесь только чтение."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(String, nullable=True)
    subscription_id = Column(String, nullable=True)
    subscription_status = Column(String, nullable=False, default="not_started")
    price_id = Column(String, nullable=True)
    current_period_start = Column(Integer, nullable=True)  # unix time
    current_period_end = Column(Integer, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    payment_method_brand = Column(String, nullable=True)
    payment_method_last4 = Column(String, nullable=True)
