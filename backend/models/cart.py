from sqlalchemy import Column, ForeignKey, Integer, String, DateTime, Index, func
from sqlalchemy.orm import relationship, validates

from core.database import Base


class Cart(Base):
    """One cart per user; the user id is the primary key."""
    __tablename__ = "carts"
    __table_args__ = {'extend_existing': True}

    user_id = Column(String(100), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan",
                         lazy="selectin", order_by="CartItem.id")

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def find_item(self, product_id: str):
        return next((item for item in self.items if item.product_id == product_id), None)

    def to_dict(self) -> dict:
        return {
            "cartId": self.user_id,
            "userId": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "totalItems": self.total_items,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        Index('idx_cart_items_cart_product', 'cart_id', 'product_id', unique=True),
        {'extend_existing': True}
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_id = Column(String(100), ForeignKey('carts.user_id'), nullable=False)
    product_id = Column(String(100), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    added_at = Column(DateTime(timezone=True), server_default=func.now())

    cart = relationship("Cart", back_populates="items")

    @validates('quantity')
    def validate_quantity(self, key, quantity):
        if quantity is None or quantity < 1:
            raise ValueError("Quantity must be at least 1")
        return quantity

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "addedAt": self.added_at.isoformat() if self.added_at else None,
        }
