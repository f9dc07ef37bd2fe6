from pydantic import BaseModel, ConfigDict, Field
from typing import List


class OrderItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    items: List[OrderItemRequest] = Field(..., min_length=1)
