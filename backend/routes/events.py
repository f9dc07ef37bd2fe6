from fastapi import APIRouter, Depends

from core.dependencies import get_event_service
from core.utils.response import Response
from services.events import EventService

router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/{event_id}")
async def get_event(event_id: str, events: EventService = Depends(get_event_service)):
    return Response.success(data=await events.get_event(event_id))


@router.get("/{event_id}/lineage")
async def get_event_lineage(event_id: str, events: EventService = Depends(get_event_service)):
    """The event followed by each event it was derived from, back to the originating request"""
    return Response.success(data=await events.get_lineage(event_id))
