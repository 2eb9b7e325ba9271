# Overview: Checkout and payment-notification flows; the entry points a web layer would call.

"""
Checkout Service

Two independent flows, each one unit of work:

1. checkout(): identity -> address -> stock read -> order assembly
   (items, stock decrement, history, audit) -> COMMIT -> collaborators.
2. apply_payment_notification(): order lookup -> status transition -> COMMIT.

Collaborators (payment-link generation, confirmation e-mail) run strictly
after commit. Their failures are logged and returned on the result as
CollaboratorFailure; they never roll back or hide a committed order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

from flask import current_app

from ..errors import CollaboratorFailure, InsufficientStock, OrderDeskError, ValidationError
from ..models import Order
from .address_service import AddressFields
from .audit_service import RequestContext, SYSTEM_CONTEXT
from .order_service import OrderLine
from .unit_of_work import TransactionCoordinator, UnitOfWork


@dataclass(frozen=True)
class CheckoutRequest:
    customer_name: str
    email: str
    tax_id: str
    phone: Optional[str]
    postal_code: str
    street: str
    number: str
    district: Optional[str]
    city: str
    region: str
    complement: Optional[str] = None
    quantity: int = 1
    sku: Optional[str] = None
    shipping_cents: int = 0
    discount_cents: int = 0
    payment_method: Optional[str] = None
    customer_notes: Optional[str] = None


@dataclass(frozen=True)
class OrderConfirmation:
    """What post-commit collaborators get to see about a placed order."""
    order_number: str
    total_cents: int
    customer_name: str
    customer_email: str
    customer_phone: Optional[str]
    product_name: str
    quantity: int


@dataclass
class CheckoutResult:
    order_id: int
    order_number: str
    total_cents: int
    customer_public_id: str
    new_customer: bool
    payment_url: Optional[str] = None
    collaborator_failures: list[CollaboratorFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.collaborator_failures)

    def to_dict(self) -> dict:
        return {
            "order_number": self.order_number,
            "total_cents": self.total_cents,
            "new_customer": self.new_customer,
            "payment_url": self.payment_url,
            "warnings": [failure.to_dict()["error"] for failure in self.collaborator_failures],
        }


@dataclass(frozen=True)
class PaymentNotification:
    order_number: str
    outcome: str
    external_transaction_ref: Optional[str] = None
    capture_method: Optional[str] = None


@dataclass(frozen=True)
class NotificationResult:
    order_number: str
    previous_status: str
    status: str
    changed: bool


# outcome -> (order status, payment status)
PAYMENT_OUTCOMES = {
    "settled": ("paid", "approved"),
    "declined": ("cancelled", "declined"),
    "refunded": ("refunded", "reversed"),
}

# Money was captured at some point; a decline can no longer apply
_CAPTURED_PAYMENT_STATUSES = frozenset({"approved", "reversed"})

PaymentLinkProvider = Callable[[OrderConfirmation], str]
Mailer = Callable[[OrderConfirmation], None]


def _validate_checkout(request: CheckoutRequest) -> None:
    required = {
        "customer_name": request.customer_name,
        "email": request.email,
        "tax_id": request.tax_id,
        "postal_code": request.postal_code,
        "street": request.street,
        "number": request.number,
        "city": request.city,
        "region": request.region,
    }
    missing = [name for name, value in required.items() if not (value or "").strip()]
    if missing:
        raise ValidationError("Missing checkout fields", details={"fields": missing})
    quantity = request.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")


def _call_collaborator(name: str, func: Callable[[OrderConfirmation], Any], confirmation: OrderConfirmation):
    try:
        return func(confirmation), None
    except Exception as exc:
        current_app.logger.exception(
            "Collaborator %s failed for committed order %s", name, confirmation.order_number
        )
        failure = CollaboratorFailure(
            name,
            f"Order {confirmation.order_number} was placed, but {name} failed. Please contact support.",
            details={"order_number": confirmation.order_number},
        )
        failure.__cause__ = exc
        return None, failure


def checkout(
    session,
    request: CheckoutRequest,
    *,
    context: RequestContext | None = None,
    payment_links: PaymentLinkProvider | None = None,
    mailer: Mailer | None = None,
    config: Mapping[str, Any] | None = None,
    coordinator: TransactionCoordinator | None = None,
) -> CheckoutResult:
    """
    Place an order for a storefront checkout.

    Raises (nothing persisted in every case):
        ValidationError, IdentityConflict, ProductNotFound,
        InsufficientStock, StorageFailure
    """
    config = config if config is not None else current_app.config
    context = context or SYSTEM_CONTEXT
    _validate_checkout(request)
    sku = request.sku or config["DEFAULT_PRODUCT_SKU"]
    payment_method = request.payment_method or config.get("DEFAULT_PAYMENT_METHOD")

    def _operation(uow: UnitOfWork) -> tuple[CheckoutResult, OrderConfirmation]:
        customer, created = uow.identity.resolve(
            name=request.customer_name,
            email=request.email,
            tax_id=request.tax_id,
            phone=request.phone,
            context=context,
        )
        address = uow.addresses.record(
            customer.id,
            AddressFields(
                postal_code=request.postal_code,
                street=request.street,
                number=request.number,
                complement=request.complement,
                district=request.district,
                city=request.city,
                region=request.region,
            ),
            is_default=True,
            purpose="delivery",
        )

        product = uow.inventory.get_active_product_by_sku(sku, for_update=True)
        on_hand = uow.inventory.get_stock(product.id)
        if on_hand < request.quantity:
            raise InsufficientStock(
                "Insufficient stock",
                details={"sku": sku, "requested_quantity": request.quantity, "on_hand": on_hand},
            )

        order = uow.orders.assemble(
            customer_id=customer.id,
            address_id=address.id,
            lines=[OrderLine(product_id=product.id, quantity=request.quantity)],
            shipping_cents=request.shipping_cents,
            discount_cents=request.discount_cents,
            payment_method=payment_method,
            customer_notes=request.customer_notes,
            context=context,
        )

        result = CheckoutResult(
            order_id=order.id,
            order_number=order.order_number,
            total_cents=order.total_cents,
            customer_public_id=customer.public_id,
            new_customer=created,
        )
        confirmation = OrderConfirmation(
            order_number=order.order_number,
            total_cents=order.total_cents,
            customer_name=customer.name,
            customer_email=customer.email,
            customer_phone=customer.phone,
            product_name=product.name,
            quantity=request.quantity,
        )
        return result, confirmation

    coordinator = coordinator or TransactionCoordinator.from_config(session, config)
    try:
        result, confirmation = coordinator.run(_operation)
    except OrderDeskError as exc:
        if exc.http_status < 500:
            current_app.logger.warning("Checkout rejected (%s): %s", exc.code, exc.message)
        raise

    current_app.logger.info(
        "Checkout committed order %s (total_cents=%s, new_customer=%s)",
        result.order_number, result.total_cents, result.new_customer,
    )

    if payment_links is not None:
        url, failure = _call_collaborator("payment_links", payment_links, confirmation)
        result.payment_url = url
        if failure is not None:
            result.collaborator_failures.append(failure)
    if mailer is not None:
        _, failure = _call_collaborator("mailer", mailer, confirmation)
        if failure is not None:
            result.collaborator_failures.append(failure)

    return result


def update_order_status(
    session,
    order_number: str,
    new_status: str,
    *,
    note: str | None = None,
    actor_id: int | None = None,
    context: RequestContext | None = None,
    force: bool = False,
    config: Mapping[str, Any] | None = None,
) -> NotificationResult:
    """Operator-driven status change in its own unit of work."""
    config = config if config is not None else current_app.config

    def _operation(uow: UnitOfWork) -> NotificationResult:
        order_id = uow.history.find_order_id(order_number)
        event = uow.history.transition(
            order_id, new_status, note=note, actor_id=actor_id, context=context, force=force,
        )
        return NotificationResult(
            order_number=order_number,
            previous_status=event.previous_status,
            status=event.new_status,
            changed=True,
        )

    result = TransactionCoordinator.from_config(session, config).run(_operation)
    current_app.logger.info(
        "Order %s moved %s -> %s%s",
        order_number, result.previous_status, result.status, " (forced)" if force else "",
    )
    return result


def apply_payment_notification(
    session,
    notification: PaymentNotification,
    *,
    context: RequestContext | None = None,
    config: Mapping[str, Any] | None = None,
) -> NotificationResult:
    """
    Record a settlement outcome delivered by the payment notifier.

    Notifications are matched against the payment state, not only the order
    status. These are no-ops (no event, no audit entry):
    - a redelivery whose payment status is already recorded, even after
      the order moved on (paid -> processing -> shipped);
    - a decline arriving after the payment was captured.
    A transaction ref already stored on the order is never replaced.

    Raises:
        ValidationError: missing order number or unknown outcome
        OrderNotFound: order number does not resolve
        InvalidTransition: outcome not applicable to the order's status
    """
    config = config if config is not None else current_app.config
    if not (notification.order_number or "").strip():
        raise ValidationError("order_number is required")
    outcome = (notification.outcome or "").strip().lower()
    if outcome not in PAYMENT_OUTCOMES:
        raise ValidationError(
            f"Unknown payment outcome '{notification.outcome}'",
            details={"allowed": sorted(PAYMENT_OUTCOMES)},
        )
    target_status, payment_status = PAYMENT_OUTCOMES[outcome]

    def _operation(uow: UnitOfWork) -> NotificationResult:
        order_id = uow.history.find_order_id(notification.order_number)
        order = uow.session.get(Order, order_id)
        # Redeliveries and stale declines leave the order untouched
        if (
            order.status == target_status
            or order.payment_status == payment_status
            or (outcome == "declined" and order.payment_status in _CAPTURED_PAYMENT_STATUSES)
        ):
            return NotificationResult(
                order_number=order.order_number,
                previous_status=order.status,
                status=order.status,
                changed=False,
            )

        note = (
            f"Payment {outcome} via {notification.capture_method or 'gateway'}. "
            f"Transaction: {notification.external_transaction_ref or 'n/a'}."
        )
        event = uow.history.transition(order_id, target_status, note=note, context=context)
        order.payment_status = payment_status
        # The settled transaction ref is kept; later refs only appear in the note
        if notification.external_transaction_ref and not order.payment_transaction_ref:
            order.payment_transaction_ref = notification.external_transaction_ref
        uow.session.flush()
        return NotificationResult(
            order_number=order.order_number,
            previous_status=event.previous_status,
            status=event.new_status,
            changed=True,
        )

    result = TransactionCoordinator.from_config(session, config).run(_operation)
    if result.changed:
        current_app.logger.info(
            "Payment notification moved order %s %s -> %s",
            result.order_number, result.previous_status, result.status,
        )
    else:
        current_app.logger.info(
            "Payment notification for order %s ignored (status %s)", result.order_number, result.status
        )
    return result
