from pydantic import BaseModel, ConfigDict, Field


class AddToCartRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)
    product_id: int = Field(alias="productId")
    quantity: int = Field(default=1, gt=0)
    selected_size: str | None = Field(default=None, alias="selectedSize")
    selected_colour: str | None = Field(default=None, alias="selectedColour")


class ModifyCartQuantityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    quantity: int = Field(gt=0)
