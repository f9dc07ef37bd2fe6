from fastapi import APIRouter, Depends, status

from core.dependencies import get_event_service
from core.utils.response import Response
from schemas.user import UserRegisterRequest
from services.events import EventService
from services.user import UserService

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(
    request: UserRegisterRequest,
    events: EventService = Depends(get_event_service),
):
    result = await UserService(events).register(request)
    return Response.success(
        data=result,
        message="User registration initiated successfully!",
        status_code=status.HTTP_201_CREATED,
    )
