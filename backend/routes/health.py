from fastapi import APIRouter, Depends, status

from core.config import settings
from core.database import db_manager
from core.dependencies import get_event_producer
from core.events.producer import EventProducer
from core.utils.response import Response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(producer: EventProducer = Depends(get_event_producer)):
    """Liveness plus the state of the database and broker connections"""
    database = await db_manager.health_check()
    healthy = database.get("status") == "healthy" and producer.is_connected
    return Response(
        success=healthy,
        data={
            "service": settings.SERVICE_NAME,
            "status": "healthy" if healthy else "degraded",
            "database": database,
            "kafka": producer.state.value,
        },
        message="OK" if healthy else "Degraded",
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
