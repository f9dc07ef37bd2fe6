from pydantic import BaseModel, ConfigDict, Field


class AddCartItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)


class RemoveCartItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId", min_length=1)
