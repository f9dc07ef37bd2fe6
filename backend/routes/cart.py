from fastapi import APIRouter, Depends, status
from fastapi import Response as EmptyResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.dependencies import get_event_service
from core.utils.response import Response
from schemas.cart import AddCartItemRequest, RemoveCartItemRequest
from services.cart import CartService
from services.events import EventService

router = APIRouter(prefix="/cart", tags=["Cart"])


@router.post("/items")
async def add_cart_item(
    request: AddCartItemRequest,
    db: AsyncSession = Depends(get_db),
    events: EventService = Depends(get_event_service),
):
    cart = await CartService(db, events).add_item(request)
    return Response.success(data=cart, message="Item added to cart")


@router.delete("/items/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(
    product_id: str,
    request: RemoveCartItemRequest,
    db: AsyncSession = Depends(get_db),
    events: EventService = Depends(get_event_service),
):
    await CartService(db, events).remove_item(request.user_id, product_id)
    return EmptyResponse(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}")
async def get_cart(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    events: EventService = Depends(get_event_service),
):
    cart = await CartService(db, events).get_cart(user_id)
    return Response.success(data=cart)
