"""
Order models
Includes: Order, OrderItem, OrderStatus
"""
import uuid
from enum import Enum

from sqlalchemy import Column, String, ForeignKey, Float, Integer
from sqlalchemy.orm import relationship

from core.database import BaseModel, CHAR_LENGTH


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"
    FAILED = "FAILED"


def new_order_id() -> str:
    return f"ORD-{uuid.uuid4().hex[:8].upper()}"


class Order(BaseModel):
    __tablename__ = "orders"
    __table_args__ = {'extend_existing': True}

    order_id = Column(String(50), nullable=False, unique=True, index=True, default=new_order_id)
    user_id = Column(String(100), nullable=False, index=True)
    total_amount = Column(Float, nullable=False)
    status = Column(String(50), nullable=False, default=OrderStatus.PENDING_PAYMENT.value, index=True)

    items = relationship("OrderItem", back_populates="order",
                         cascade="all, delete-orphan", lazy="selectin", order_by="OrderItem.id")

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "userId": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "totalAmount": self.total_amount,
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class OrderItem(BaseModel):
    """Line item with the name and price captured at order time"""
    __tablename__ = "order_items"
    __table_args__ = {'extend_existing': True}

    order_fk = Column(Integer, ForeignKey("orders.id"), nullable=False)
    product_id = Column(String(100), nullable=False)
    name = Column(String(CHAR_LENGTH), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_order = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "priceAtOrder": self.price_at_order,
        }
