import threading

import pytest
from sqlalchemy.exc import OperationalError

from orderdesk import create_app
from orderdesk.errors import (
    IdentityConflict,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    ProductNotFound,
    StorageFailure,
    ValidationError,
)
from orderdesk.extensions import db
from orderdesk.models import Address, AuditEntry, Customer, Order, OrderItem, OrderStatusEvent, Product
from orderdesk.services.checkout_service import (
    PaymentNotification,
    apply_payment_notification,
    checkout,
    update_order_status,
)
from orderdesk.services.inventory_service import InventoryLedger
from orderdesk.services.order_service import OrderAssembler
from orderdesk.services.status_service import StatusHistorian

from conftest import TEST_CONFIG, TEST_SKU, make_request


def _counts(session):
    return {
        "customers": session.query(Customer).count(),
        "addresses": session.query(Address).count(),
        "orders": session.query(Order).count(),
        "items": session.query(OrderItem).count(),
        "events": session.query(OrderStatusEvent).count(),
        "audit": session.query(AuditEntry).count(),
    }


def test_checkout_new_customer(session, product, context):
    result = checkout(session, make_request(), context=context)

    assert result.new_customer is True
    assert result.total_cents == 20000
    assert not result.degraded

    order = session.query(Order).filter_by(order_number=result.order_number).one()
    assert order.subtotal_cents == 20000
    assert order.status == "pending"
    assert order.payment_method == "pix"
    assert session.query(OrderItem).filter_by(order_id=order.id).count() == 1
    assert session.get(Product, product.id).stock_quantity == 48

    customer = session.query(Customer).one()
    assert customer.public_id == result.customer_public_id
    address = session.query(Address).one()
    assert address.is_default is True
    assert address.region == "SP"
    assert address.purpose == "delivery"

    events = session.query(OrderStatusEvent).filter_by(order_id=order.id).all()
    assert [(e.previous_status, e.new_status) for e in events] == [(None, "pending")]
    assert events[0].ip_address == "203.0.113.7"

    tables = sorted(e.table_name for e in session.query(AuditEntry).all())
    assert tables == ["customers", "orders"]


def test_returning_customer_gets_new_default_address(session, placed_order, context):
    result = checkout(
        session,
        make_request(street="Rua Augusta", number="500", quantity=1),
        context=context,
    )

    assert result.new_customer is False
    assert result.customer_public_id == placed_order.customer_public_id
    assert session.query(Customer).count() == 1

    addresses = session.query(Address).order_by(Address.id).all()
    assert [a.is_default for a in addresses] == [False, True]
    order = session.query(Order).filter_by(order_number=result.order_number).one()
    assert order.address_id == addresses[1].id


def test_identity_conflict_persists_nothing(session, placed_order, context):
    before = _counts(session)

    with pytest.raises(IdentityConflict) as excinfo:
        checkout(session, make_request(tax_id="222", street="Rua Nova"), context=context)

    assert excinfo.value.details == {"field": "email"}
    assert _counts(session) == before


def test_insufficient_stock_rolls_back_customer_and_address(session, placed_order, context):
    before = _counts(session)

    with pytest.raises(InsufficientStock) as excinfo:
        checkout(session, make_request(street="Rua Augusta", quantity=49), context=context)
    with pytest.raises(InsufficientStock):
        checkout(
            session,
            make_request(email="bruno@example.com", tax_id="333", quantity=100),
            context=context,
        )

    assert excinfo.value.details == {"sku": TEST_SKU, "requested_quantity": 49, "on_hand": 48}
    assert _counts(session) == before
    assert session.query(Product).filter_by(sku=TEST_SKU).one().stock_quantity == 48
    assert session.query(Address).one().is_default is True


def test_unknown_product(session, product, context):
    with pytest.raises(ProductNotFound):
        checkout(session, make_request(sku="NOPE-001"), context=context)
    assert session.query(Customer).count() == 0


def test_invalid_request_is_rejected_before_any_write(session, product):
    with pytest.raises(ValidationError):
        checkout(session, make_request(quantity=0))
    with pytest.raises(ValidationError) as excinfo:
        checkout(session, make_request(email=" ", city=""))
    assert excinfo.value.details == {"fields": ["email", "city"]}
    assert session.query(Customer).count() == 0


def test_collaborators_run_after_commit(session, product, context):
    seen = []

    def payment_links(confirmation):
        seen.append(confirmation)
        return f"https://pay.example.com/{confirmation.order_number}"

    result = checkout(session, make_request(), context=context, payment_links=payment_links)

    assert result.payment_url == f"https://pay.example.com/{result.order_number}"
    assert seen[0].customer_email == "ana@example.com"
    assert seen[0].product_name == "BlueShield Pro"
    assert seen[0].quantity == 2


def test_collaborator_failure_is_degraded_success(session, product, context):
    def mailer(confirmation):
        raise RuntimeError("smtp down")

    result = checkout(session, make_request(), context=context, mailer=mailer)

    assert result.degraded
    [failure] = result.collaborator_failures
    assert failure.collaborator == "mailer"
    assert isinstance(failure.__cause__, RuntimeError)
    assert result.to_dict()["warnings"][0]["code"] == "COLLABORATOR_FAILURE"
    assert session.query(Order).filter_by(order_number=result.order_number).count() == 1


def test_storage_failure_persists_nothing(session, product, context, monkeypatch):
    def broken_assemble(self, **kwargs):
        raise OperationalError("INSERT INTO orders", {}, Exception("disk I/O error"))

    monkeypatch.setattr(OrderAssembler, "assemble", broken_assemble)

    with pytest.raises(StorageFailure) as excinfo:
        checkout(session, make_request(), context=context)

    assert "disk I/O error" not in excinfo.value.to_dict()["error"]["message"]
    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert session.query(Customer).count() == 0
    assert session.query(Address).count() == 0


def test_failure_after_stock_decrement_rolls_everything_back(session, placed_order, context, monkeypatch):
    before = _counts(session)

    def broken_record_creation(self, order, **kwargs):
        assert session.query(Product.stock_quantity).filter_by(sku=TEST_SKU).scalar() == 47
        raise OperationalError("INSERT INTO order_status_events", {}, Exception("disk I/O error"))

    monkeypatch.setattr(StatusHistorian, "record_creation", broken_record_creation)

    with pytest.raises(StorageFailure):
        checkout(session, make_request(street="Rua Augusta", quantity=1), context=context)

    assert _counts(session) == before
    assert session.query(Product).filter_by(sku=TEST_SKU).one().stock_quantity == 48
    address = session.query(Address).one()
    assert (address.street, address.is_default) == ("Av. Paulista", True)


def test_settled_notification_marks_order_paid(session, placed_order):
    result = apply_payment_notification(
        session,
        PaymentNotification(
            order_number=placed_order.order_number,
            outcome=" Settled ",
            external_transaction_ref="pix-e2e-123",
            capture_method="pix",
        ),
    )

    assert (result.previous_status, result.status, result.changed) == ("pending", "paid", True)
    order = session.get(Order, placed_order.order_id)
    assert order.payment_status == "approved"
    assert order.payment_transaction_ref == "pix-e2e-123"
    assert order.paid_at is not None

    events = session.query(OrderStatusEvent).filter_by(order_id=order.id).order_by(OrderStatusEvent.id).all()
    assert [(e.previous_status, e.new_status) for e in events] == [(None, "pending"), ("pending", "paid")]
    assert "pix-e2e-123" in events[1].note


def test_duplicate_notification_is_noop(session, placed_order):
    notification = PaymentNotification(order_number=placed_order.order_number, outcome="settled")
    apply_payment_notification(session, notification)
    before = _counts(session)

    result = apply_payment_notification(session, notification)

    assert result.changed is False
    assert result.status == "paid"
    assert _counts(session) == before


def test_settled_redelivery_after_fulfilment_is_noop(session, placed_order):
    number = placed_order.order_number
    apply_payment_notification(session, PaymentNotification(order_number=number, outcome="settled"))
    update_order_status(session, number, "processing")
    before = _counts(session)

    result = apply_payment_notification(session, PaymentNotification(order_number=number, outcome="settled"))

    assert result.changed is False
    assert result.status == "processing"
    assert _counts(session) == before
    assert session.get(Order, placed_order.order_id).status == "processing"


def test_late_decline_leaves_paid_order_alone(session, placed_order):
    number = placed_order.order_number
    apply_payment_notification(
        session,
        PaymentNotification(order_number=number, outcome="settled", external_transaction_ref="T1"),
    )
    before = _counts(session)

    result = apply_payment_notification(
        session,
        PaymentNotification(order_number=number, outcome="declined", external_transaction_ref="T0"),
    )

    assert result.changed is False
    assert _counts(session) == before
    order = session.get(Order, placed_order.order_id)
    assert (order.status, order.payment_status, order.payment_transaction_ref) == ("paid", "approved", "T1")


def test_refund_keeps_settled_transaction_ref(session, placed_order):
    number = placed_order.order_number
    apply_payment_notification(
        session,
        PaymentNotification(order_number=number, outcome="settled", external_transaction_ref="T1"),
    )
    apply_payment_notification(
        session,
        PaymentNotification(order_number=number, outcome="refunded", external_transaction_ref="R1"),
    )

    order = session.get(Order, placed_order.order_id)
    assert (order.status, order.payment_transaction_ref) == ("refunded", "T1")
    last_event = (
        session.query(OrderStatusEvent)
        .filter_by(order_id=order.id)
        .order_by(OrderStatusEvent.id.desc())
        .first()
    )
    assert "R1" in last_event.note


def test_declined_then_settled(session, placed_order):
    result = apply_payment_notification(
        session, PaymentNotification(order_number=placed_order.order_number, outcome="declined")
    )
    assert result.status == "cancelled"
    assert session.get(Order, placed_order.order_id).payment_status == "declined"

    with pytest.raises(InvalidTransition):
        apply_payment_notification(
            session, PaymentNotification(order_number=placed_order.order_number, outcome="settled")
        )
    assert session.get(Order, placed_order.order_id).status == "cancelled"


def test_refund_after_payment(session, placed_order):
    number = placed_order.order_number
    apply_payment_notification(session, PaymentNotification(order_number=number, outcome="settled"))
    result = apply_payment_notification(session, PaymentNotification(order_number=number, outcome="refunded"))

    assert (result.previous_status, result.status) == ("paid", "refunded")
    assert session.get(Order, placed_order.order_id).payment_status == "reversed"


def test_bad_notifications(session, placed_order):
    with pytest.raises(OrderNotFound):
        apply_payment_notification(session, PaymentNotification(order_number="BSP-19990101-0000", outcome="settled"))
    with pytest.raises(ValidationError):
        apply_payment_notification(session, PaymentNotification(order_number=placed_order.order_number, outcome="chargeback"))
    with pytest.raises(ValidationError):
        apply_payment_notification(session, PaymentNotification(order_number="", outcome="settled"))


def test_update_order_status(session, placed_order):
    result = update_order_status(session, placed_order.order_number, "shipped", note="BR123", actor_id=7)
    assert (result.previous_status, result.status) == ("pending", "shipped")

    with pytest.raises(InvalidTransition):
        update_order_status(session, placed_order.order_number, "paid")

    forced = update_order_status(session, placed_order.order_number, "paid", force=True)
    assert forced.status == "paid"
    assert session.get(Order, placed_order.order_id).status == "paid"


def test_concurrent_checkouts_register_one_customer(tmp_path):
    app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"check_same_thread": False}},
    })
    with app.app_context():
        db.create_all()
        InventoryLedger(db.session).seed_product(
            sku=TEST_SKU, name="BlueShield Pro", unit_price_cents=10000, stock_quantity=50,
        )
        db.session.commit()

    barrier = threading.Barrier(2)
    results, errors = [], []

    def place(street):
        with app.app_context():
            barrier.wait()
            try:
                results.append(checkout(db.session, make_request(street=street)))
            except Exception as exc:
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=place, args=(street,)) for street in ("Rua A", "Rua B")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(results) == 2
    assert sorted(r.new_customer for r in results) == [False, True]
    assert results[0].customer_public_id == results[1].customer_public_id

    with app.app_context():
        assert db.session.query(Customer).count() == 1
        assert db.session.query(Order).count() == 2
        assert db.session.query(Address).filter_by(is_default=True).count() == 1
        assert db.session.query(Product).filter_by(sku=TEST_SKU).one().stock_quantity == 46
        db.session.remove()
        db.drop_all()
