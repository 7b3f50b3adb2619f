from storefront.schemas.cart_s import AddToCartRequest, ModifyCartQuantityRequest
from storefront.schemas.checkout_s import (
    PaymentConfirmedEvent,
    PaymentConfirmedItem,
    ShippingAddress,
)
from storefront.schemas.orders_s import UpdateOrderStatusRequest
from storefront.schemas.reservations_s import ReleaseReservationsResponse

__all__ = [
    "AddToCartRequest",
    "ModifyCartQuantityRequest",
    "PaymentConfirmedEvent",
    "PaymentConfirmedItem",
    "ShippingAddress",
    "UpdateOrderStatusRequest",
    "ReleaseReservationsResponse",
]
