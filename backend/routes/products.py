from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.utils.response import Response
from services.products import ProductService

router = APIRouter(prefix="/products", tags=["Products"])


@router.get("")
async def list_products(db: AsyncSession = Depends(get_db)):
    products = await ProductService(db).get_products()
    return Response.success(data=[product.to_dict() for product in products])


@router.get("/{product_id}")
async def get_product(product_id: str, db: AsyncSession = Depends(get_db)):
    product = await ProductService(db).get_product(product_id)
    return Response.success(data=product.to_dict())
