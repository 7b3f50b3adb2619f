from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

MAX_STOCK = 255
ORDER_STATUSES = (
    "pending",
    "processed",
    "shipped",
    "out-for-delivery",
    "delivered",
    "cancelled",
    "on-hold",
    "expired",
)


def utc_now() -> datetime:
    # Columns store naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint(
            f"count_in_stock >= 0 AND count_in_stock <= {MAX_STOCK}",
            name="ck_products_count_in_stock_range",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Float, nullable=False)
    image = Column(String, nullable=False, default="")
    sizes = Column(JSON, nullable=False, default=list)
    colours = Column(JSON, nullable=False, default=list)
    count_in_stock = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=True)
    payment_customer_id = Column(String, nullable=True, unique=True, index=True)
    is_admin = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    cart = relationship(
        "CartProduct",
        back_populates="user",
        order_by="CartProduct.id",
        cascade="all, delete-orphan",
    )
    orders = relationship("Order", back_populates="user")


class CartProduct(Base):
    """A cart line holding a time-bounded claim on product stock."""

    __tablename__ = "cart_products"
    __table_args__ = (
        Index("ix_cart_products_reserved_expiry", "reserved", "reservation_expiry"),
        Index("ix_cart_products_user_product", "user_id", "product_id"),
        CheckConstraint("quantity >= 1", name="ck_cart_products_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )

    quantity = Column(Integer, nullable=False, default=1)
    selected_size = Column(String, nullable=True)
    selected_colour = Column(String, nullable=True)

    # Snapshot of the product when the line was created.
    product_name = Column(String, nullable=False)
    product_image = Column(String, nullable=False)
    product_price = Column(Float, nullable=False)

    reserved = Column(Boolean, nullable=False, default=True)
    reservation_expiry = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    user = relationship("User", back_populates="cart")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    shipping_address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    postal_code = Column(String, nullable=True)
    country = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    payment_id = Column(String, nullable=False, unique=True, index=True)
    status = Column(String, nullable=False, default="pending")
    status_history = Column(JSON, nullable=False, default=lambda: ["pending"])
    total_price = Column(Float, nullable=False)

    date_ordered = Column(DateTime, default=utc_now, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    user = relationship("User", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )
    cart_product_id = Column(Integer, nullable=True)

    product_name = Column(String, nullable=False)
    product_image = Column(String, nullable=False)
    product_price = Column(Float, nullable=False)

    quantity = Column(Integer, nullable=False, default=1)
    selected_size = Column(String, nullable=True)
    selected_colour = Column(String, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)

    order = relationship("Order", back_populates="items")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_key", name="uq_webhook_events_provider_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, index=True)
    event_key = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="processing")
    payload = Column(Text, nullable=True)
    received_at = Column(DateTime, default=utc_now, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
