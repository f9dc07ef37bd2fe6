import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import NotFoundException
from models.cart import Cart, CartItem
from schemas.cart import AddCartItemRequest
from services.events import EventService

logger = logging.getLogger(__name__)

SOURCE_SERVICE_NAME = "CartService"


def empty_cart(user_id: str) -> dict:
    return {
        "cartId": user_id,
        "userId": user_id,
        "items": [],
        "totalItems": 0,
        "createdAt": None,
        "updatedAt": None,
    }


class CartService:
    """
    One cart per user. Every change emits an event after the cart is saved;
    removing an item also queues a reminder notification linked to the removal.
    """

    def __init__(self, db: AsyncSession, events: EventService):
        self.db = db
        self.events = events

    async def _get_cart(self, user_id: str):
        result = await self.db.execute(select(Cart).where(Cart.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_cart(self, user_id: str) -> dict:
        cart = await self._get_cart(user_id)
        return cart.to_dict() if cart else empty_cart(user_id)

    async def add_item(self, request: AddCartItemRequest) -> dict:
        user_id, product_id, quantity = request.user_id, request.product_id, request.quantity
        logger.info(f"{SOURCE_SERVICE_NAME}: Request Add item for user {user_id}: {product_id} x{quantity}")
        now = datetime.now(timezone.utc)

        cart = await self._get_cart(user_id)
        if cart is None:
            cart = Cart(user_id=user_id, created_at=now, updated_at=now, items=[])
            self.db.add(cart)
        cart.updated_at = now

        item = cart.find_item(product_id)
        if item:
            item.quantity += quantity
            item.added_at = now
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity, added_at=now))
        await self.db.commit()

        await self.events.create_and_publish(
            source=SOURCE_SERVICE_NAME,
            topic=settings.KAFKA_TOPIC_CART_UPDATES,
            key=user_id,
            payload={"userId": user_id, "productId": product_id, "quantity": quantity},
            snapshot={
                "cartId": cart.user_id,
                "userId": cart.user_id,
                "totalItems": cart.total_items,
                "updatedAt": now.isoformat(),
            },
        )
        return cart.to_dict()

    async def remove_item(self, user_id: str, product_id: str):
        logger.info(f"{SOURCE_SERVICE_NAME}: Request Remove item {product_id} for user {user_id}")
        cart = await self._get_cart(user_id)
        if cart is None:
            raise NotFoundException(f"Cart not found for user {user_id}", resource="cart")
        item = cart.find_item(product_id)
        if item is None:
            raise NotFoundException(
                f"Product {product_id} not found in cart for user {user_id}", resource="cart_item"
            )

        quantity_removed = item.quantity
        now = datetime.now(timezone.utc)
        cart.items.remove(item)
        cart.updated_at = now
        await self.db.commit()
        logger.info(f"{SOURCE_SERVICE_NAME}: Item {product_id} removed from cart for user {user_id}.")

        removal = await self.events.create_and_publish(
            source=SOURCE_SERVICE_NAME,
            topic=settings.KAFKA_TOPIC_CART_REMOVALS,
            key=user_id,
            payload={"userId": user_id, "productId": product_id},
            snapshot={
                "userId": user_id,
                "productId": product_id,
                "quantityRemoved": quantity_removed,
                "removedAt": now.isoformat(),
            },
        )
        await self.events.create_and_publish(
            source=SOURCE_SERVICE_NAME,
            topic=settings.KAFKA_TOPIC_NOTIFICATION,
            key=user_id,
            payload={
                # Placeholder address: carts only know the user id
                "to": f"user-{user_id}@example.com",
                "subject": "¿Olvidaste algo en tu carrito?",
                "content": f"Hola {user_id}, vimos que eliminaste el producto con ID '{product_id}' de tu carrito...",
                "userId": user_id,
                "productId": product_id,
                "quantity": quantity_removed,
                "reason": "ITEM_REMOVED_FROM_CART",
            },
            snapshot={
                "status": "REMOVAL_NOTIFICATION_QUEUED",
                "targetUserId": user_id,
                "originalEventId": removal.event_id,
            },
        )
