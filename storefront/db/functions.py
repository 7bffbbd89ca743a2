# storefront/db/functions.py
import logging
from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from storefront.db.models import Product, CartItem, Order, OrderItem, Subscription

logger = logging.getLogger(__name__)


# Все товары, новые первыми
async def get_all_products(db: AsyncSession):
    result = await db.execute(select(Product).order_by(Product.created_at.desc(), Product.id.desc()))
    products = result.scalars().all()
    logger.debug("get_all_products: %d rows", len(products))
    return products


# Получение одного продукта
async def get_product_by_id(db: AsyncSession, product_id: int):
    result = await db.execute(select(Product).filter(Product.id == product_id))
    return result.scalar_one_or_none()


# Товары из корзины пользователя вместе с продуктами
async def get_cart_items(db: AsyncSession, user_id: str):
    result = await db.execute(
        select(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .options(selectinload(CartItem.product))
    )
    items = result.scalars().all()
    logger.debug("get_cart_items: user_id=%s, %d rows", user_id, len(items))
    return items


async def get_cart_item(db: AsyncSession, user_id: str, cart_item_id: int):
    result = await db.execute(
        select(CartItem)
        .filter(CartItem.id == cart_item_id, CartItem.user_id == user_id)
        .options(selectinload(CartItem.product))
    )
    return result.scalar_one_or_none()


async def get_cart_item_by_product(db: AsyncSession, user_id: str, product_id: int):
    result = await db.execute(
        select(CartItem).filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    return result.scalar_one_or_none()


# Добавление новой строки корзины
async def create_cart_item(db: AsyncSession, user_id: str, product_id: int, quantity: int):
    cart_item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
    db.add(cart_item)
    await db.commit()
    await db.refresh(cart_item)
    logger.debug("create_cart_item: user_id=%s product_id=%s quantity=%s", user_id, product_id, quantity)
    return cart_item


# Обновление количества товара в корзине
async def update_cart_item_quantity(db: AsyncSession, cart_item: CartItem, quantity: int):
    cart_item.quantity = quantity
    await db.commit()
    logger.debug("update_cart_item_quantity: id=%s quantity=%s", cart_item.id, quantity)
    return cart_item


# Удаление товара из корзины; отсутствующая строка не ошибка
async def delete_cart_item(db: AsyncSession, user_id: str, cart_item_id: int):
    result = await db.execute(
        delete(CartItem).where(CartItem.id == cart_item_id, CartItem.user_id == user_id)
    )
    await db.commit()
    logger.debug("delete_cart_item: id=%s deleted=%s", cart_item_id, result.rowcount)
    return result.rowcount


async def clear_user_cart(db: AsyncSession, user_id: str, added_before: datetime = None):
    """Функция для очистки корзины пользователя"""
    statement = delete(CartItem).where(CartItem.user_id == user_id)
    if added_before is not None:
        statement = statement.where(CartItem.created_at <= added_before)
    result = await db.execute(statement)
    await db.commit()
    return result.rowcount


# Отмечает заказ подтверждённым; True только для первого подтверждения
async def mark_order_reconciled(db: AsyncSession, order_id: int) -> bool:
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.reconciled_at.is_(None))
        .values(reconciled_at=datetime.utcnow())
    )
    await db.commit()
    return result.rowcount == 1


def _order_query(user_id: str):
    return (
        select(Order)
        .filter(Order.user_id == user_id)
        .options(selectinload(Order.order_items).selectinload(OrderItem.product))
    )


# Последний созданный заказ пользователя
async def get_latest_order(db: AsyncSession, user_id: str):
    result = await db.execute(
        _order_query(user_id).order_by(Order.created_at.desc(), Order.id.desc()).limit(1)
    )
    return result.scalar_one_or_none()


# Заказ по идентификатору платёжной сессии
async def get_order_by_checkout_session(db: AsyncSession, user_id: str, session_id: str):
    result = await db.execute(
        _order_query(user_id).filter(Order.checkout_session_id == session_id).limit(1)
    )
    return result.scalar_one_or_none()


# Все заказы пользователя, новые первыми
async def get_user_orders(db: AsyncSession, user_id: str):
    result = await db.execute(_order_query(user_id).order_by(Order.created_at.desc(), Order.id.desc()))
    return result.scalars().all()


# Подписка пользователя, если webhook её уже записал
async def get_user_subscription(db: AsyncSession, user_id: str):
    result = await db.execute(select(Subscription).filter(Subscription.user_id == user_id))
    return result.scalar_one_or_none()
