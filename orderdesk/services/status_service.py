# Overview: Service-layer operations for order status; encapsulates business logic and database work.

"""
Order Status Historian

================================================================================
PURPOSE: Move orders through their lifecycle and keep an immutable history
================================================================================

STATE MACHINE:
    pending -> awaiting_payment -> paid -> processing -> shipped -> delivered

    cancelled, refunded: side exits reachable from any non-terminal state
    delivered, cancelled, refunded: terminal

RULES:
1. Forward moves along the main path are allowed, skipping steps included
   (a payment notification takes pending straight to paid).
2. No backwards moves, no moves out of a terminal state, no same-state moves.
3. force=True is the operator-correction escape hatch: any known status is
   accepted. The event and audit entry record that the move was forced.
4. The status update and its OrderStatusEvent are flushed together; there is
   no code path that writes one without the other.

================================================================================
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from ..errors import InvalidTransition, OrderNotFound
from ..models import Order, OrderStatusEvent, ORDER_STATUSES
from orderdesk.time_utils import utcnow
from .audit_service import AuditRecorder, RequestContext, SYSTEM_CONTEXT
from .concurrency import lock_for_update


INITIAL_STATUS = "pending"
MAIN_PATH = ("pending", "awaiting_payment", "paid", "processing", "shipped", "delivered")
SIDE_EXITS = frozenset({"cancelled", "refunded"})
TERMINAL_STATUSES = frozenset({"delivered", "cancelled", "refunded"})

# Timestamp columns stamped the first time an order reaches a status
_STATUS_TIMESTAMPS = {
    "paid": "paid_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
}


def validate_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise InvalidTransition(
            f"Invalid status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}"
        )


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: str, to_status: str) -> bool:
    """Check a move against the lifecycle rules (ignores force)."""
    validate_status(from_status)
    validate_status(to_status)

    if from_status == to_status or is_terminal(from_status):
        return False
    if to_status in SIDE_EXITS:
        return True
    return MAIN_PATH.index(to_status) > MAIN_PATH.index(from_status)


class StatusHistorian:
    def __init__(self, session: Session, audit: AuditRecorder):
        self.session = session
        self.audit = audit

    def _append_event(
        self,
        order: Order,
        previous_status: str | None,
        note: str | None,
        actor_id: int | None,
        context: RequestContext,
    ) -> OrderStatusEvent:
        event = OrderStatusEvent(
            order_id=order.id,
            previous_status=previous_status,
            new_status=order.status,
            note=note,
            actor_id=actor_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        self.session.add(event)
        self.session.flush()
        return event

    def record_creation(
        self,
        order: Order,
        *,
        note: str | None = None,
        actor_id: int | None = None,
        context: RequestContext | None = None,
    ) -> OrderStatusEvent:
        """First history row of a freshly inserted order (previous_status NULL)."""
        return self._append_event(order, None, note, actor_id, context or SYSTEM_CONTEXT)

    def find_order_id(self, order_number: str) -> int:
        order_id = (
            self.session.query(Order.id)
            .filter(Order.order_number == order_number)
            .scalar()
        )
        if order_id is None:
            raise OrderNotFound(f"Order {order_number} not found", details={"order_number": order_number})
        return order_id

    def transition(
        self,
        order_id: int,
        new_status: str,
        *,
        note: str | None = None,
        actor_id: int | None = None,
        context: RequestContext | None = None,
        force: bool = False,
    ) -> OrderStatusEvent:
        """
        Change an order's status and append exactly one history event.

        Raises:
            OrderNotFound: order_id does not resolve
            InvalidTransition: unknown status, or move not allowed (unless force)
        """
        context = context or SYSTEM_CONTEXT
        validate_status(new_status)

        order = lock_for_update(self.session.query(Order).filter(Order.id == order_id)).first()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})

        previous_status = order.status
        if not force and not can_transition(previous_status, new_status):
            raise InvalidTransition(
                f"Cannot move order {order.order_number} from '{previous_status}' to '{new_status}'",
                details={"from": previous_status, "to": new_status},
            )

        order.status = new_status
        stamp_column = _STATUS_TIMESTAMPS.get(new_status)
        if stamp_column and getattr(order, stamp_column) is None:
            setattr(order, stamp_column, utcnow())

        event = self._append_event(order, previous_status, note, actor_id, context)

        self.audit.record(
            table_name="orders",
            record_id=order.id,
            action="UPDATE",
            before={"status": previous_status},
            after={"status": new_status, "forced": force, "note": note},
            actor_id=actor_id,
            context=context,
        )
        return event

    def history(self, order_id: int) -> list[OrderStatusEvent]:
        """Events in the order they happened; replaying them rebuilds the lifecycle."""
        return (
            self.session.query(OrderStatusEvent)
            .filter(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.created_at.asc(), OrderStatusEvent.id.asc())
            .all()
        )
