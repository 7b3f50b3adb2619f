from __future__ import annotations

import logging

from sqlalchemy.orm import Session, joinedload

from storefront.db.models import ORDER_STATUSES, Order
from storefront.errors import NotFoundError

logger = logging.getLogger(__name__)


def _order_query(db: Session):
    return db.query(Order).options(joinedload(Order.items))


def order_to_dict(order: Order) -> dict:
    items = []
    for item in sorted(order.items, key=lambda x: x.id):
        items.append(
            {
                "id": item.id,
                "product_id": item.product_id,
                "cart_product_id": item.cart_product_id,
                "product_name": item.product_name,
                "product_image": item.product_image,
                "product_price": float(item.product_price),
                "quantity": int(item.quantity),
                "selected_size": item.selected_size,
                "selected_colour": item.selected_colour,
            }
        )

    return {
        "id": order.id,
        "user_id": order.user_id,
        "items": items,
        "shipping_address": order.shipping_address,
        "city": order.city,
        "postal_code": order.postal_code,
        "country": order.country,
        "phone": order.phone,
        "payment_id": order.payment_id,
        "status": order.status,
        "status_history": list(order.status_history or []),
        "total_price": float(order.total_price or 0),
        "date_ordered": order.date_ordered,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def list_orders_for_user(user_id: int, db: Session) -> list[dict]:
    orders = (
        _order_query(db)
        .filter(Order.user_id == user_id)
        .order_by(Order.date_ordered.desc(), Order.id.desc())
        .all()
    )
    return [order_to_dict(order) for order in orders]


def get_order_for_user(user_id: int, order_id: int, db: Session) -> dict | None:
    order = (
        _order_query(db)
        .filter(
            Order.id == order_id,
            Order.user_id == user_id,
        )
        .first()
    )
    if order is None:
        return None
    return order_to_dict(order)


def change_order_status(order_id: int, new_status: str, db: Session) -> dict:
    if new_status not in ORDER_STATUSES:
        raise ValueError("invalid status")

    order = (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update()
        .first()
    )
    if order is None:
        raise NotFoundError("Order not found")

    history = list(order.status_history or [])
    if not history:
        history.append(order.status)
    if history[-1] != new_status:
        history.append(new_status)
    # JSON columns track reassignment, not in-place mutation.
    order.status_history = history
    previous_status = order.status
    order.status = new_status
    db.flush()
    db.refresh(order)
    logger.info(
        "event=order_status_changed order_id=%s from=%s to=%s",
        order_id,
        previous_status,
        new_status,
    )
    return order_to_dict(order)


def delete_order(order_id: int, db: Session) -> dict:
    order = _order_query(db).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError("Order not found")
    deleted = order_to_dict(order)
    db.delete(order)
    db.flush()
    logger.info("event=order_deleted order_id=%s items=%s", order_id, len(deleted["items"]))
    return deleted
