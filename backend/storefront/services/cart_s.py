from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from storefront.db.config import get_reservation_ttl_minutes
from storefront.db.models import CartProduct, User, utc_now
from storefront.db.snapshots import ProductSnapshot
from storefront.errors import (
    InsufficientStockError,
    NotFoundError,
    OutOfStockError,
    StockConflictError,
)
from storefront.services.stock_ledger_s import (
    get_available_quantity,
    get_product,
    release_stock,
    reserve_stock,
)

logger = logging.getLogger(__name__)


def _reservation_expiry(now: datetime) -> datetime:
    return now + timedelta(minutes=get_reservation_ttl_minutes())


def _cart_product_to_dict(cart_product: CartProduct) -> dict:
    return {
        "id": cart_product.id,
        "user_id": cart_product.user_id,
        "product_id": cart_product.product_id,
        "quantity": int(cart_product.quantity),
        "selected_size": cart_product.selected_size,
        "selected_colour": cart_product.selected_colour,
        "product_name": cart_product.product_name,
        "product_image": cart_product.product_image,
        "product_price": float(cart_product.product_price),
        "reserved": bool(cart_product.reserved),
        "reservation_expiry": cart_product.reservation_expiry,
        "created_at": cart_product.created_at,
        "updated_at": cart_product.updated_at,
    }


def _with_availability(cart_product: CartProduct, available: int | None, *, reserved_aware: bool) -> dict:
    payload = _cart_product_to_dict(cart_product)
    if available is None:
        payload["product_exists"] = False
        payload["product_out_of_stock"] = False
        return payload

    out_of_stock = available < int(cart_product.quantity)
    if reserved_aware and cart_product.reserved:
        out_of_stock = False
    payload["product_exists"] = True
    payload["product_out_of_stock"] = out_of_stock
    return payload


def _get_user(user_id: int, db: Session, *, for_update: bool = False) -> User:
    query = db.query(User).filter(User.id == user_id)
    if for_update:
        query = query.with_for_update()
    user = query.first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def _get_user_cart_product(
    user_id: int,
    cart_product_id: int,
    db: Session,
    *,
    for_update: bool = False,
) -> CartProduct:
    query = db.query(CartProduct).filter(
        CartProduct.id == cart_product_id,
        CartProduct.user_id == user_id,
    )
    if for_update:
        query = query.with_for_update()
    cart_product = query.first()
    if cart_product is None:
        raise NotFoundError("Product not in your cart")
    return cart_product


def _find_matching_line(
    user_id: int,
    product_id: int,
    selected_size: str | None,
    selected_colour: str | None,
    db: Session,
) -> CartProduct | None:
    # IS NULL and = must be distinguished, so the variant match is done on the Python side.
    candidates = (
        db.query(CartProduct)
        .filter(
            CartProduct.user_id == user_id,
            CartProduct.product_id == product_id,
        )
        .order_by(CartProduct.id.asc())
        .with_for_update()
        .all()
    )
    for candidate in candidates:
        if (
            candidate.selected_size == selected_size
            and candidate.selected_colour == selected_colour
        ):
            return candidate
    return None


def _take_stock_or_conflict(product_id: int, quantity: int, db: Session) -> None:
    if not reserve_stock(product_id=product_id, quantity=quantity, db=db):
        logger.warning(
            "event=stock_reserve_conflict product_id=%s quantity=%s",
            product_id,
            quantity,
        )
        raise StockConflictError("Insufficient stock or concurrency issue")


def list_cart(user_id: int, db: Session) -> list[dict]:
    _get_user(user_id, db)
    cart_products = (
        db.query(CartProduct)
        .filter(CartProduct.user_id == user_id)
        .order_by(CartProduct.id.asc())
        .all()
    )
    return [
        _with_availability(
            cart_product,
            get_available_quantity(cart_product.product_id, db),
            reserved_aware=False,
        )
        for cart_product in cart_products
    ]


def count_cart(user_id: int, db: Session) -> int:
    _get_user(user_id, db)
    return int(
        db.query(CartProduct).filter(CartProduct.user_id == user_id).count()
    )


def get_cart_product(user_id: int, cart_product_id: int, db: Session) -> dict:
    cart_product = _get_user_cart_product(user_id, cart_product_id, db)
    return _with_availability(
        cart_product,
        get_available_quantity(cart_product.product_id, db),
        reserved_aware=True,
    )


def add_to_cart(
    user_id: int,
    product_id: int,
    db: Session,
    *,
    quantity: int = 1,
    selected_size: str | None = None,
    selected_colour: str | None = None,
    now: datetime | None = None,
) -> tuple[dict, bool]:
    """Reserve stock for a cart line.

    A line that already exists for the same product and variant grows by one
    unit. A line the reaper already unreserved holds no stock, so it is
    re-reserved as a whole with a fresh expiry. Returns ``(line, created)``.
    """
    quantity = int(quantity)
    if quantity <= 0:
        raise ValueError("quantity must be greater than 0")
    now = now or utc_now()

    _get_user(user_id, db, for_update=True)
    product = get_product(product_id, db)
    if product is None:
        raise NotFoundError("Product not found")

    existing = _find_matching_line(
        user_id=user_id,
        product_id=product_id,
        selected_size=selected_size,
        selected_colour=selected_colour,
        db=db,
    )
    available = get_available_quantity(product_id, db) or 0

    if existing is not None:
        new_quantity = int(existing.quantity) + 1
        if available < new_quantity:
            raise OutOfStockError("Out of stock")

        if existing.reserved:
            _take_stock_or_conflict(product_id, 1, db)
        else:
            _take_stock_or_conflict(product_id, new_quantity, db)
            existing.reserved = True
            existing.reservation_expiry = _reservation_expiry(now)
        existing.quantity = new_quantity
        db.flush()
        logger.info(
            "event=cart_line_incremented user_id=%s cart_product_id=%s product_id=%s quantity=%s",
            user_id,
            existing.id,
            product_id,
            new_quantity,
        )
        return _cart_product_to_dict(existing), False

    if available < quantity:
        raise OutOfStockError("Out of stock")

    _take_stock_or_conflict(product_id, quantity, db)
    snapshot = ProductSnapshot.of(product)
    cart_product = CartProduct(
        user_id=user_id,
        product_id=product_id,
        quantity=quantity,
        selected_size=selected_size,
        selected_colour=selected_colour,
        reserved=True,
        reservation_expiry=_reservation_expiry(now),
        **snapshot.as_columns(),
    )
    db.add(cart_product)
    db.flush()
    logger.info(
        "event=cart_line_reserved user_id=%s cart_product_id=%s product_id=%s quantity=%s",
        user_id,
        cart_product.id,
        product_id,
        quantity,
    )
    return _cart_product_to_dict(cart_product), True


def modify_cart_product_quantity(
    user_id: int,
    cart_product_id: int,
    quantity: int,
    db: Session,
    *,
    now: datetime | None = None,
) -> dict:
    quantity = int(quantity)
    if quantity <= 0:
        raise ValueError("quantity must be greater than 0")
    now = now or utc_now()

    _get_user(user_id, db, for_update=True)
    cart_product = _get_user_cart_product(user_id, cart_product_id, db, for_update=True)
    available = get_available_quantity(cart_product.product_id, db)
    if available is None:
        raise NotFoundError("Product does not exist")
    if quantity > available:
        raise InsufficientStockError("Insufficient stock for the requested quantity")

    product_id = int(cart_product.product_id)
    current_quantity = int(cart_product.quantity)
    if cart_product.reserved:
        delta = quantity - current_quantity
        if delta > 0:
            _take_stock_or_conflict(product_id, delta, db)
        elif delta < 0 and not release_stock(product_id, -delta, db):
            raise NotFoundError("Product does not exist")
    else:
        _take_stock_or_conflict(product_id, quantity, db)
        cart_product.reserved = True
        cart_product.reservation_expiry = _reservation_expiry(now)

    cart_product.quantity = quantity
    db.flush()
    logger.info(
        "event=cart_line_quantity_changed user_id=%s cart_product_id=%s from=%s to=%s",
        user_id,
        cart_product_id,
        current_quantity,
        quantity,
    )
    return _cart_product_to_dict(cart_product)


def remove_from_cart(user_id: int, cart_product_id: int, db: Session) -> dict:
    _get_user(user_id, db, for_update=True)
    cart_product = _get_user_cart_product(user_id, cart_product_id, db, for_update=True)
    removed = _cart_product_to_dict(cart_product)

    if cart_product.reserved and cart_product.product_id is not None:
        restored = release_stock(
            product_id=int(cart_product.product_id),
            quantity=int(cart_product.quantity),
            db=db,
        )
        if not restored:
            logger.warning(
                "event=cart_release_product_missing cart_product_id=%s product_id=%s",
                cart_product.id,
                cart_product.product_id,
            )

    db.delete(cart_product)
    db.flush()
    logger.info(
        "event=cart_line_removed user_id=%s cart_product_id=%s released=%s",
        user_id,
        cart_product_id,
        removed["reserved"],
    )
    return removed
