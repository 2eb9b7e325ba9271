from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, utcnow

ORDER_STATUSES = (
    "pending",
    "awaiting_payment",
    "paid",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
)
PAYMENT_METHODS = ("credit_card", "debit_card", "boleto", "pix", "bank_transfer")
PAYMENT_STATUSES = ("pending", "approved", "declined", "reversed")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


class Order(db.Model):
    """
    Order header.

    WHY: The order number is a human-readable, advisory reference
    (PREFIX-YYYYMMDD-NNNN); the integer id is the durable identifier.

    Money is stored in cents. total = subtotal + shipping - discount is
    computed by OrderAssembler, not enforced by the database.

    Orders are never physically deleted; cancellation is a status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("subtotal_cents >= 0", name="ck_orders_subtotal"),
        db.CheckConstraint("shipping_cents >= 0", name="ck_orders_shipping"),
        db.CheckConstraint("discount_cents >= 0", name="ck_orders_discount"),
        db.CheckConstraint("total_cents >= 0", name="ck_orders_total"),
        db.CheckConstraint(_in_list("status", ORDER_STATUSES), name="ck_orders_status"),
        db.CheckConstraint(_in_list("payment_status", PAYMENT_STATUSES), name="ck_orders_payment_status"),
        db.CheckConstraint(
            f"payment_method IS NULL OR {_in_list('payment_method', PAYMENT_METHODS)}",
            name="ck_orders_payment_method",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_created_at", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    address_id = db.Column(db.Integer, db.ForeignKey("addresses.id"), nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Lifecycle status (see services/status_service.py for the state machine)
    status = db.Column(db.String(24), nullable=False, default="pending")

    # Payment
    payment_method = db.Column(db.String(24), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    paid_at = db.Column(db.DateTime, nullable=True)
    payment_transaction_ref = db.Column(db.String(128), nullable=True)

    # Shipping / tracking
    tracking_code = db.Column(db.String(64), nullable=True)
    shipped_at = db.Column(db.DateTime, nullable=True)
    estimated_delivery = db.Column(db.Date, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow, server_default=db.func.now())

    customer = db.relationship("Customer")
    address = db.relationship("Address")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.id",
        lazy=True,
    )
    status_events = db.relationship(
        "OrderStatusEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: [OrderStatusEvent.created_at, OrderStatusEvent.id],
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "address_id": self.address_id,
            "subtotal_cents": self.subtotal_cents,
            "shipping_cents": self.shipping_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "paid_at": to_utc_z(self.paid_at),
            "payment_transaction_ref": self.payment_transaction_ref,
            "tracking_code": self.tracking_code,
            "shipped_at": to_utc_z(self.shipped_at),
            "estimated_delivery": self.estimated_delivery.isoformat() if self.estimated_delivery else None,
            "delivered_at": to_utc_z(self.delivered_at),
            "customer_notes": self.customer_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderItem(db.Model):
    """
    Line item snapshot frozen at purchase time.

    sku, name and unit price are copied from the product so historical orders
    stay accurate after catalogue changes.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_order_items_unit_price"),
        db.CheckConstraint("subtotal_cents >= 0", name="ck_order_items_subtotal"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    # Colour, size, etc.
    variation = db.Column(db.String(128), nullable=True)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "variation": self.variation,
        }


class OrderStatusEvent(db.Model):
    """
    Append-only history of order status transitions.

    IMMUTABLE: Records are never updated or deleted. previous_status is NULL
    only for the creation event. actor_id NULL means system-initiated.
    """
    __tablename__ = "order_status_events"
    __table_args__ = (
        db.Index("ix_order_status_events_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    previous_status = db.Column(db.String(24), nullable=True)
    new_status = db.Column(db.String(24), nullable=False)
    note = db.Column(db.Text, nullable=True)

    actor_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())

    order = db.relationship("Order", back_populates="status_events")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "note": self.note,
            "actor_id": self.actor_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }
