from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.dependencies import get_event_service
from core.utils.response import Response
from schemas.order import CreateOrderRequest
from services.events import EventService
from services.orders import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    events: EventService = Depends(get_event_service),
):
    order = await OrderService(db, events).create_order(request)
    return Response.success(data=order, message="Order created", status_code=status.HTTP_201_CREATED)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
    events: EventService = Depends(get_event_service),
):
    order = await OrderService(db, events).get_order(order_id)
    return Response.success(data=order)
