import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import NotFoundException, ValidationException
from models.order import Order, OrderItem, OrderStatus
from schemas.order import CreateOrderRequest
from services.events import EventService
from services.products import ProductService

logger = logging.getLogger(__name__)

SOURCE_SERVICE_NAME = "OrderService"


class OrderService:
    def __init__(self, db: AsyncSession, events: EventService):
        self.db = db
        self.events = events
        self.products = ProductService(db)

    async def create_order(self, request: CreateOrderRequest) -> dict:
        """
        Create an order from the requested items. Prices come from the request;
        every product must exist. Emits OrderCreated keyed by user id.
        """
        user_id = request.user_id
        logger.info(f"{SOURCE_SERVICE_NAME}: Request Create order for user {user_id} ({len(request.items)} items)")

        products = await self.products.get_products_by_ids([item.product_id for item in request.items])
        missing = [
            f"Product with ID {item.product_id} not found."
            for item in request.items if item.product_id not in products
        ]
        if missing:
            logger.error(f"{SOURCE_SERVICE_NAME}: Order rejected for user {user_id}: {missing}")
            raise ValidationException(
                "One or more products invalid or not found.",
                errors={"items": missing},
            )

        order_items = []
        total = 0.0
        for item in request.items:
            product = products[item.product_id]
            order_items.append(OrderItem(
                product_id=product.product_id,
                name=product.name,
                quantity=item.quantity,
                price_at_order=item.price,
            ))
            total += item.quantity * item.price

        order = Order(
            user_id=user_id,
            total_amount=round(total, 2),
            status=OrderStatus.PENDING_PAYMENT.value,
            items=order_items,
        )
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)
        logger.info(f"{SOURCE_SERVICE_NAME}: Order {order.order_id} created for user {user_id}.")

        data = order.to_dict()
        await self.events.create_and_publish(
            source=SOURCE_SERVICE_NAME,
            topic=settings.KAFKA_TOPIC_ORDER_CREATED,
            key=order.user_id,
            payload={
                "orderId": order.order_id,
                "userId": order.user_id,
                "items": data["items"],
                "totalAmount": order.total_amount,
                "orderStatus": order.status,
                "orderCreatedAt": data["createdAt"],
            },
            snapshot={
                "orderId": order.order_id,
                "status": order.status,
                "totalAmount": order.total_amount,
                "itemCount": len(order.items),
            },
        )
        return data

    async def get_order(self, order_id: str) -> dict:
        result = await self.db.execute(select(Order).where(Order.order_id == order_id))
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundException(f"Order {order_id} not found.", resource="order")
        return order.to_dict()
