from __future__ import annotations

import json
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.db.models import (
    CartProduct,
    Order,
    OrderItem,
    Product,
    User,
    WebhookEvent,
    utc_now,
)
from storefront.db.snapshots import ProductSnapshot
from storefront.errors import DuplicateEventError
from storefront.services.orders_s import order_to_dict
from storefront.services.stock_ledger_s import get_product, release_stock, reserve_stock

CHECKOUT_PROVIDER = "checkout"
WEBHOOK_PROCESSING = "processing"
WEBHOOK_PROCESSED = "processed"
WEBHOOK_DROPPED = "dropped"

logger = logging.getLogger(__name__)


def _serialize_payload(payload: dict | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def _normalize_key_part(value: object) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    if not normalized:
        return None
    return normalized


def acquire_webhook_event(
    *,
    provider: str,
    event_key: str,
    payload: dict | None,
    db: Session,
) -> bool:
    """Claim an event key. False means another delivery already claimed it."""
    normalized_provider = _normalize_key_part(provider)
    normalized_key = _normalize_key_part(event_key)
    if normalized_provider is None:
        raise ValueError("provider is required")
    if normalized_key is None:
        raise ValueError("event_key is required")

    existing = (
        db.query(WebhookEvent.id)
        .filter(
            WebhookEvent.provider == normalized_provider,
            WebhookEvent.event_key == normalized_key,
        )
        .first()
    )
    if existing is not None:
        return False

    event = WebhookEvent(
        provider=normalized_provider,
        event_key=normalized_key,
        status=WEBHOOK_PROCESSING,
        payload=_serialize_payload(payload),
        received_at=utc_now(),
        processed_at=None,
        last_error=None,
    )
    try:
        with db.begin_nested():
            db.add(event)
            db.flush()
        return True
    except IntegrityError:
        return False


def _close_webhook_event(
    *,
    provider: str,
    event_key: str,
    status: str,
    error_message: str | None,
    db: Session,
) -> None:
    event = (
        db.query(WebhookEvent)
        .filter(
            WebhookEvent.provider == provider,
            WebhookEvent.event_key == event_key,
        )
        .first()
    )
    if event is None:
        return
    event.status = status
    event.processed_at = utc_now()
    event.last_error = error_message[:2000] if error_message else None
    db.flush()


def _resolve_paying_user(customer_id: str | None, user_id: int | None, db: Session) -> User | None:
    if customer_id is not None:
        user = (
            db.query(User)
            .filter(User.payment_customer_id == customer_id)
            .with_for_update()
            .first()
        )
        if user is not None:
            return user
    if user_id is not None:
        return db.query(User).filter(User.id == int(user_id)).with_for_update().first()
    return None


def _shipping_street(shipping: dict) -> str:
    line1 = _normalize_key_part(shipping.get("line1"))
    line2 = _normalize_key_part(shipping.get("line2"))
    if line1 is None or line1 == "N/A":
        return line2 or ""
    return line1


def _item_snapshot(
    item: dict,
    source_line: CartProduct | None,
    product: Product | None,
) -> ProductSnapshot:
    price = float(item["unit_price"])
    name = _normalize_key_part(item.get("product_name"))
    if name is not None:
        return ProductSnapshot(name=name, image=str(item.get("product_image") or ""), price=price)
    if source_line is not None:
        return ProductSnapshot.from_cart_product(source_line).with_price(price)
    if product is not None:
        return ProductSnapshot.of(product).with_price(price)
    return ProductSnapshot(name=f"Product {item.get('product_id')}", image="", price=price)


def _consume_source_line(
    *,
    user_id: int,
    item: dict,
    source_line: CartProduct | None,
    payment_id: str,
    db: Session,
) -> None:
    """Detach a purchased cart line from the reservation lifecycle.

    The purchased quantity is authoritative. Units a still reserved line
    holds count toward it: any surplus goes back to the shelf and any
    missing units are claimed without going below zero. A line the reaper
    released (or one that is gone) holds nothing, so every purchased unit is
    claimed.
    """
    product_id = item.get("product_id")
    purchased = int(item["quantity"])
    held = 0
    if source_line is not None:
        line_product_id = source_line.product_id
        if source_line.reserved and line_product_id is not None:
            if product_id is not None and int(line_product_id) == int(product_id):
                held = int(source_line.quantity)
            else:
                # Held stock of a different product goes straight back.
                release_stock(int(line_product_id), int(source_line.quantity), db)
        db.delete(source_line)

    diff = held - purchased
    if diff > 0:
        release_stock(int(product_id), diff, db)
        logger.info(
            "event=checkout_surplus_released payment_id=%s product_id=%s quantity=%s",
            payment_id,
            product_id,
            diff,
        )
        return
    if diff == 0:
        return

    missing = -diff
    if product_id is None or not reserve_stock(int(product_id), missing, db):
        logger.warning(
            "event=checkout_stock_shortfall payment_id=%s user_id=%s product_id=%s quantity=%s",
            payment_id,
            user_id,
            product_id,
            missing,
        )


def finalize_paid_checkout(event: dict, db: Session) -> dict:
    """Turn a confirmed payment into one Order. Safe to call again with the same event."""
    payment_id = _normalize_key_part(event.get("payment_id"))
    if payment_id is None:
        raise ValueError("payment_id is required")
    items = event.get("items") or []
    if not items:
        raise ValueError("at least one purchased item is required")

    if not acquire_webhook_event(
        provider=CHECKOUT_PROVIDER,
        event_key=payment_id,
        payload=event,
        db=db,
    ):
        raise DuplicateEventError(f"payment {payment_id} was already processed")
    if db.query(Order.id).filter(Order.payment_id == payment_id).first() is not None:
        raise DuplicateEventError(f"payment {payment_id} was already processed")

    customer_id = _normalize_key_part(event.get("customer_id"))
    user = _resolve_paying_user(customer_id, event.get("user_id"), db)
    if user is None:
        logger.error(
            "event=checkout_user_not_found payment_id=%s customer_id=%s user_id=%s",
            payment_id,
            customer_id,
            event.get("user_id"),
        )
        _close_webhook_event(
            provider=CHECKOUT_PROVIDER,
            event_key=payment_id,
            status=WEBHOOK_DROPPED,
            error_message="user not found",
            db=db,
        )
        return {"processed": False, "reason": "user not found"}

    if customer_id is not None and not user.payment_customer_id:
        user.payment_customer_id = customer_id

    shipping = event.get("shipping") or {}
    order = Order(
        user_id=user.id,
        shipping_address=_shipping_street(shipping),
        city=str(shipping.get("city") or ""),
        postal_code=shipping.get("postal_code"),
        country=str(shipping.get("country") or ""),
        phone=shipping.get("phone"),
        payment_id=payment_id,
        status="pending",
        status_history=["pending"],
        total_price=0.0,
    )
    db.add(order)

    computed_total = 0.0
    for item in items:
        cart_product_id = item.get("cart_product_id")
        source_line = None
        if cart_product_id is not None:
            source_line = (
                db.query(CartProduct)
                .filter(
                    CartProduct.id == int(cart_product_id),
                    CartProduct.user_id == user.id,
                )
                .with_for_update()
                .first()
            )

        product = get_product(item.get("product_id"), db)
        snapshot = _item_snapshot(item, source_line, product)
        quantity = int(item["quantity"])
        order.items.append(
            OrderItem(
                product_id=product.id if product is not None else None,
                cart_product_id=cart_product_id,
                quantity=quantity,
                selected_size=item.get("selected_size"),
                selected_colour=item.get("selected_colour"),
                **snapshot.as_columns(),
            )
        )
        computed_total += snapshot.price * quantity

        _consume_source_line(
            user_id=int(user.id),
            item=item,
            source_line=source_line,
            payment_id=payment_id,
            db=db,
        )

    amount_total = event.get("amount_total")
    order.total_price = round(float(amount_total if amount_total is not None else computed_total), 2)
    db.flush()

    _close_webhook_event(
        provider=CHECKOUT_PROVIDER,
        event_key=payment_id,
        status=WEBHOOK_PROCESSED,
        error_message=None,
        db=db,
    )
    db.refresh(order)
    logger.info(
        "event=checkout_order_created payment_id=%s order_id=%s user_id=%s items=%s total=%s",
        payment_id,
        order.id,
        user.id,
        len(order.items),
        order.total_price,
    )
    return {"processed": True, "order": order_to_dict(order)}
