"""Conditional mutations of ``Product.count_in_stock``.

Every change to available stock goes through :func:`reserve_stock` or
:func:`release_stock`. Both are single ``UPDATE`` statements, so the check and
the write happen atomically in the database and concurrent callers on the
same product are serialized by the row lock the update takes. Callers own the
transaction: nothing here commits.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from storefront.db.models import Product


def _require_positive(quantity: int) -> int:
    quantity = int(quantity)
    if quantity <= 0:
        raise ValueError("quantity must be greater than 0")
    return quantity


def get_product(product_id: int | None, db: Session, *, for_update: bool = False) -> Product | None:
    if product_id is None:
        return None
    query = db.query(Product).filter(Product.id == product_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_available_quantity(product_id: int | None, db: Session) -> int | None:
    if product_id is None:
        return None
    available = (
        db.query(Product.count_in_stock)
        .filter(Product.id == product_id)
        .scalar()
    )
    if available is None:
        return None
    return int(available)


def reserve_stock(product_id: int, quantity: int, db: Session) -> bool:
    """Take ``quantity`` units off the shelf if, and only if, they are there."""
    quantity = _require_positive(quantity)
    updated = (
        db.query(Product)
        .filter(
            Product.id == product_id,
            Product.count_in_stock >= quantity,
        )
        .update(
            {Product.count_in_stock: Product.count_in_stock - quantity},
            synchronize_session="fetch",
        )
    )
    return int(updated or 0) == 1


def release_stock(product_id: int, quantity: int, db: Session) -> bool:
    """Put ``quantity`` units back. Returns False when the product is gone."""
    quantity = _require_positive(quantity)
    updated = (
        db.query(Product)
        .filter(Product.id == product_id)
        .update(
            {Product.count_in_stock: Product.count_in_stock + quantity},
            synchronize_session="fetch",
        )
    )
    return int(updated or 0) == 1
