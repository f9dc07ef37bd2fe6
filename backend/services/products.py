import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.product import Product, new_product_id
from schemas.product import ProductCreate
from core.exceptions import NotFoundException

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_products(self) -> List[Product]:
        result = await self.db.execute(select(Product).order_by(Product.id))
        return list(result.scalars().all())

    async def get_product(self, product_id: str) -> Product:
        product = await self.find_product(product_id)
        if not product:
            raise NotFoundException(f"Product {product_id} not found.", resource="product")
        return product

    async def find_product(self, product_id: str):
        result = await self.db.execute(select(Product).where(Product.product_id == product_id))
        return result.scalar_one_or_none()

    async def get_products_by_ids(self, product_ids: List[str]) -> dict:
        if not product_ids:
            return {}
        result = await self.db.execute(select(Product).where(Product.product_id.in_(product_ids)))
        return {product.product_id: product for product in result.scalars().all()}

    async def upsert_product(self, data: ProductCreate) -> Product:
        """Insert the product, or overwrite the fields of an existing one with the same id."""
        product_id = data.product_id or new_product_id()
        product = await self.find_product(product_id)
        if product is None:
            product = Product(product_id=product_id)
            self.db.add(product)
        product.name = data.name
        product.description = data.description
        product.price = data.price
        product.category = data.category
        await self.db.commit()
        await self.db.refresh(product)
        return product
