"""Immutable copies of product data taken when a cart line or order item is created.

A snapshot never tracks later catalog edits, so it is kept apart from the
live ``Product`` row and only ever written onto the denormalized columns of
``CartProduct`` and ``OrderItem``.
"""

from __future__ import annotations

from dataclasses import dataclass

from storefront.db.models import CartProduct, Product


@dataclass(frozen=True)
class ProductSnapshot:
    name: str
    image: str
    price: float

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("snapshot name is required")
        if self.price < 0:
            raise ValueError("snapshot price cannot be negative")

    @classmethod
    def of(cls, product: Product) -> ProductSnapshot:
        return cls(
            name=str(product.name),
            image=str(product.image or ""),
            price=float(product.price),
        )

    @classmethod
    def from_cart_product(cls, cart_product: CartProduct) -> ProductSnapshot:
        return cls(
            name=str(cart_product.product_name),
            image=str(cart_product.product_image or ""),
            price=float(cart_product.product_price),
        )

    def with_price(self, price: float) -> ProductSnapshot:
        return ProductSnapshot(name=self.name, image=self.image, price=float(price))

    def as_columns(self) -> dict:
        return {
            "product_name": self.name,
            "product_image": self.image,
            "product_price": self.price,
        }
