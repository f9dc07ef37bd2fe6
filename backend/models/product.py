import uuid

from sqlalchemy import Column, String, Text, Float, CheckConstraint
from sqlalchemy.orm import validates

from core.database import BaseModel, CHAR_LENGTH


def new_product_id() -> str:
    return f"prod_{uuid.uuid4()}"


class Product(BaseModel):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        {'extend_existing': True}
    )

    product_id = Column(String(100), nullable=False, unique=True, index=True, default=new_product_id)
    name = Column(String(CHAR_LENGTH), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    category = Column(String(100), nullable=False, index=True)

    @validates('name', 'category')
    def strip_text(self, key, value):
        return value.strip() if isinstance(value, str) else value

    @validates('price')
    def validate_price(self, key, price):
        if price is None or price < 0:
            raise ValueError("Product price must be >= 0")
        return price

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
