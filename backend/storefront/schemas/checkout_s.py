from pydantic import BaseModel, ConfigDict, Field


class PaymentConfirmedItem(BaseModel):
    model_config = ConfigDict(extra="ignore")
    product_id: int
    cart_product_id: int | None = None
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    product_name: str | None = None
    product_image: str | None = None
    selected_size: str | None = None
    selected_colour: str | None = None


class ShippingAddress(BaseModel):
    model_config = ConfigDict(extra="ignore")
    line1: str | None = None
    line2: str | None = None
    city: str = Field(min_length=1)
    postal_code: str | None = None
    country: str = Field(min_length=1)
    phone: str | None = None


class PaymentConfirmedEvent(BaseModel):
    """Finalized purchase as delivered by the payment provider."""

    model_config = ConfigDict(extra="ignore")
    payment_id: str = Field(min_length=1)
    customer_id: str | None = None
    user_id: int | None = None
    amount_total: float | None = Field(default=None, ge=0)
    items: list[PaymentConfirmedItem] = Field(min_length=1)
    shipping: ShippingAddress
