# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Assembler - turns validated checkout lines into a persisted order

WHY: The order header, its line-item snapshots, the stock decrement, the
first history event and the audit entry must land in one transaction. The
assembler never commits; the surrounding unit of work does.

ORDER NUMBERS:
PREFIX-YYYYMMDD-NNNN with a random 4-digit suffix. Display/reference only.
The integer primary key is the durable identifier. Collisions are retried
against existing numbers inside the (write-locked) transaction; the unique
constraint on orders.order_number backs that up.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..errors import InsufficientStock, OrderNotFound, ProductNotFound, StorageFailure, ValidationError
from ..models import Order, OrderItem, OrderStatusEvent, PAYMENT_METHODS
from orderdesk.time_utils import compact_date
from .audit_service import AuditRecorder, RequestContext
from .inventory_service import InventoryLedger, require_positive_quantity
from .status_service import INITIAL_STATUS, StatusHistorian

ORDER_NUMBER_ATTEMPTS = 10


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    quantity: int
    variation: Optional[str] = None


def generate_order_number(prefix: str, now: datetime | None = None) -> str:
    """e.g. BSP-20250222-4821"""
    suffix = 1000 + secrets.randbelow(9000)
    return f"{prefix}-{compact_date(now)}-{suffix}"


def _non_negative_cents(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer amount of cents")
    return value


class OrderAssembler:
    def __init__(
        self,
        session: Session,
        inventory: InventoryLedger,
        history: StatusHistorian,
        audit: AuditRecorder,
        *,
        order_number_prefix: str = "BSP",
        number_generator: Callable[[str], str] | None = None,
    ):
        self.session = session
        self.inventory = inventory
        self.history = history
        self.audit = audit
        self.order_number_prefix = order_number_prefix
        self.number_generator = number_generator or generate_order_number

    def _allocate_order_number(self) -> str:
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            candidate = self.number_generator(self.order_number_prefix)
            taken = self.session.query(Order.id).filter(Order.order_number == candidate).first()
            if taken is None:
                return candidate
        raise StorageFailure("Could not allocate a unique order number")

    def assemble(
        self,
        *,
        customer_id: int,
        address_id: int,
        lines: list[OrderLine],
        shipping_cents: int = 0,
        discount_cents: int = 0,
        payment_method: str | None = None,
        customer_notes: str | None = None,
        actor_id: int | None = None,
        context: RequestContext | None = None,
    ) -> Order:
        """
        Create an order in status 'pending' with one item per distinct line.

        Raises:
            ValidationError: no lines, bad amounts, unknown payment method,
                or a discount larger than subtotal + shipping
            ProductNotFound: a line refers to a missing/inactive product
            InsufficientStock: stock < requested quantity for any product
        """
        if not lines:
            raise ValidationError("An order needs at least one line")
        shipping_cents = _non_negative_cents("shipping_cents", shipping_cents)
        discount_cents = _non_negative_cents("discount_cents", discount_cents)
        if payment_method is not None and payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                f"Invalid payment method '{payment_method}'. Must be one of: {', '.join(PAYMENT_METHODS)}"
            )

        # Identical (product, variation) lines collapse into one snapshot
        merged: dict[tuple[int, Optional[str]], int] = {}
        for line in lines:
            require_positive_quantity(line.quantity)
            key = (line.product_id, line.variation)
            merged[key] = merged.get(key, 0) + line.quantity

        per_product: dict[int, int] = {}
        for (product_id, _), quantity in merged.items():
            per_product[product_id] = per_product.get(product_id, 0) + quantity

        products = {}
        insufficient = []
        for product_id, quantity in per_product.items():
            product = self.inventory.get_product(product_id, for_update=True)
            if not product.is_active:
                raise ProductNotFound(f"Product {product.sku} is not available", details={"sku": product.sku})
            products[product_id] = product
            if product.stock_quantity < quantity:
                insufficient.append({
                    "sku": product.sku,
                    "requested_quantity": quantity,
                    "on_hand": product.stock_quantity,
                })
        if insufficient:
            raise InsufficientStock("Insufficient stock", details={"items": insufficient})

        subtotal_cents = sum(
            products[product_id].unit_price_cents * quantity
            for (product_id, _), quantity in merged.items()
        )
        total_cents = subtotal_cents + shipping_cents - discount_cents
        if total_cents < 0:
            raise ValidationError("Discount exceeds order value")

        order = Order(
            order_number=self._allocate_order_number(),
            customer_id=customer_id,
            address_id=address_id,
            subtotal_cents=subtotal_cents,
            shipping_cents=shipping_cents,
            discount_cents=discount_cents,
            total_cents=total_cents,
            status=INITIAL_STATUS,
            payment_method=payment_method,
            payment_status="pending",
            customer_notes=customer_notes,
        )
        self.session.add(order)
        self.session.flush()

        for (product_id, variation), quantity in merged.items():
            product = products[product_id]
            self.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                sku=product.sku,
                name=product.name,
                quantity=quantity,
                unit_price_cents=product.unit_price_cents,
                subtotal_cents=product.unit_price_cents * quantity,
                variation=variation,
            ))
        self.session.flush()

        for product_id, quantity in per_product.items():
            self.inventory.decrement_stock(product_id, quantity)

        self.history.record_creation(order, note="Order created", actor_id=actor_id, context=context)

        self.audit.record(
            table_name="orders",
            record_id=order.id,
            action="INSERT",
            after={
                "order_number": order.order_number,
                "total_cents": total_cents,
                "quantity": sum(per_product.values()),
                "items": [
                    {"sku": products[pid].sku, "quantity": qty}
                    for (pid, _), qty in merged.items()
                ],
            },
            actor_id=actor_id if actor_id is not None else customer_id,
            context=context,
        )
        return order


def get_order_details(
    session: Session,
    *,
    order_number: str | None = None,
    order_id: int | None = None,
) -> dict:
    """
    Full order with customer summary, address, items and status history.

    Read-only; history is in the order it happened.
    """
    if order_number is None and order_id is None:
        raise ValidationError("order_number or order_id is required")

    query = session.query(Order)
    if order_id is not None:
        query = query.filter(Order.id == order_id)
    else:
        query = query.filter(Order.order_number == order_number)
    order = query.first()
    if order is None:
        raise OrderNotFound(
            "Order not found",
            details={"order_number": order_number, "order_id": order_id},
        )

    history = (
        session.query(OrderStatusEvent)
        .filter(OrderStatusEvent.order_id == order.id)
        .order_by(OrderStatusEvent.created_at.asc(), OrderStatusEvent.id.asc())
        .all()
    )
    items = session.query(OrderItem).filter(OrderItem.order_id == order.id).order_by(OrderItem.id.asc()).all()

    data = order.to_dict()
    data["customer"] = {
        "public_id": order.customer.public_id,
        "name": order.customer.name,
        "email": order.customer.email,
        "phone": order.customer.phone,
    }
    data["address"] = order.address.to_dict()
    data["items"] = [item.to_dict() for item in items]
    data["history"] = [event.to_dict() for event in history]
    return data
