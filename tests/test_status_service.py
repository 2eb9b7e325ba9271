import pytest

from orderdesk.errors import InvalidTransition, OrderNotFound
from orderdesk.models import AuditEntry, Order, OrderStatusEvent
from orderdesk.services.status_service import can_transition, is_terminal


@pytest.mark.parametrize(
    "from_status,to_status,allowed",
    [
        ("pending", "awaiting_payment", True),
        ("pending", "paid", True),
        ("paid", "shipped", True),
        ("shipped", "delivered", True),
        ("processing", "cancelled", True),
        ("pending", "refunded", True),
        ("paid", "pending", False),
        ("delivered", "pending", False),
        ("delivered", "refunded", False),
        ("cancelled", "paid", False),
        ("refunded", "cancelled", False),
        ("paid", "paid", False),
    ],
)
def test_state_machine(from_status, to_status, allowed):
    assert can_transition(from_status, to_status) is allowed


def test_terminal_statuses():
    assert is_terminal("delivered")
    assert is_terminal("cancelled")
    assert is_terminal("refunded")
    assert not is_terminal("shipped")


def _events(session, order_id):
    return (
        session.query(OrderStatusEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusEvent.id)
        .all()
    )


def test_transition_appends_one_event(session, uow, placed_order, context):
    before = len(_events(session, placed_order.order_id))

    event = uow.history.transition(
        placed_order.order_id, "paid", note="Paid via pix", actor_id=None, context=context,
    )
    session.commit()

    events = _events(session, placed_order.order_id)
    assert len(events) == before + 1
    assert events[-1].id == event.id
    assert event.previous_status == "pending"
    assert event.new_status == "paid"
    assert event.note == "Paid via pix"
    assert event.actor_id is None
    assert event.user_agent == "pytest"

    order = session.get(Order, placed_order.order_id)
    assert order.status == "paid"
    assert order.paid_at is not None

    update = session.query(AuditEntry).filter_by(table_name="orders", action="UPDATE").one()
    assert update.before == {"status": "pending"}
    assert update.after["status"] == "paid"
    assert update.after["forced"] is False


def test_illegal_transition_writes_nothing(session, uow, placed_order):
    uow.history.transition(placed_order.order_id, "delivered")
    session.commit()
    count = len(_events(session, placed_order.order_id))

    with pytest.raises(InvalidTransition) as excinfo:
        uow.history.transition(placed_order.order_id, "pending")
    session.rollback()

    assert excinfo.value.details == {"from": "delivered", "to": "pending"}
    assert len(_events(session, placed_order.order_id)) == count
    assert session.get(Order, placed_order.order_id).status == "delivered"


def test_force_allows_operator_correction(session, uow, placed_order):
    uow.history.transition(placed_order.order_id, "delivered")
    event = uow.history.transition(
        placed_order.order_id, "shipped", note="Carrier returned parcel", actor_id=42, force=True,
    )
    session.commit()

    assert event.previous_status == "delivered"
    assert event.actor_id == 42
    assert session.get(Order, placed_order.order_id).status == "shipped"
    forced = session.query(AuditEntry).filter_by(action="UPDATE").order_by(AuditEntry.id.desc()).first()
    assert forced.after["forced"] is True


def test_unknown_status_and_unknown_order(uow, placed_order):
    with pytest.raises(InvalidTransition):
        uow.history.transition(placed_order.order_id, "lost", force=True)
    with pytest.raises(OrderNotFound):
        uow.history.transition(placed_order.order_id + 1000, "paid")
    with pytest.raises(OrderNotFound):
        uow.history.find_order_id("BSP-00000000-0000")


def test_history_reconstructs_lifecycle(session, uow, placed_order):
    for status in ("awaiting_payment", "paid", "processing", "shipped", "delivered"):
        uow.history.transition(placed_order.order_id, status)
        session.commit()

    history = uow.history.history(placed_order.order_id)
    assert [(e.previous_status, e.new_status) for e in history] == [
        (None, "pending"),
        ("pending", "awaiting_payment"),
        ("awaiting_payment", "paid"),
        ("paid", "processing"),
        ("processing", "shipped"),
        ("shipped", "delivered"),
    ]
    for earlier, later in zip(history, history[1:]):
        assert later.previous_status == earlier.new_status

    order = session.get(Order, placed_order.order_id)
    assert order.shipped_at is not None
    assert order.delivered_at is not None
