from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional


class UserRegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    last_name: Optional[str] = Field(None, alias="lastName")
    email: EmailStr
    password: str = Field(..., min_length=1)
    phone: Optional[str] = None

    def event_payload(self) -> dict:
        """Registration data carried by the event; the password never leaves the service."""
        return {
            "name": self.name,
            "lastName": self.last_name,
            "email": str(self.email),
            "phone": self.phone,
        }


class UserRegisterResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    event_id: str = Field(..., alias="eventId")
