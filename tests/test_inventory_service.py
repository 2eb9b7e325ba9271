import pytest

from orderdesk.errors import InsufficientStock, ProductNotFound, ValidationError
from orderdesk.models import Product
from orderdesk.services.inventory_service import InventoryLedger


def test_get_stock_is_a_pure_read(session, uow, product):
    assert uow.inventory.get_stock(product.id) == 50
    assert uow.inventory.get_stock(product.id, for_update=True) == 50
    assert session.get(Product, product.id).stock_quantity == 50


def test_decrement_stock(session, uow, product):
    assert uow.inventory.decrement_stock(product.id, 3) == 47
    session.commit()
    assert session.get(Product, product.id).stock_quantity == 47


@pytest.mark.parametrize("quantity", [0, -1, True, 1.5, "2"])
def test_decrement_requires_positive_int(uow, product, quantity):
    with pytest.raises(ValidationError):
        uow.inventory.decrement_stock(product.id, quantity)


def test_decrement_never_goes_negative(session, uow, product):
    with pytest.raises(InsufficientStock):
        uow.inventory.decrement_stock(product.id, 51)
    session.rollback()
    assert session.get(Product, product.id).stock_quantity == 50


def test_unknown_product(uow, product):
    with pytest.raises(ProductNotFound):
        uow.inventory.get_stock(product.id + 100)
    with pytest.raises(ProductNotFound):
        uow.inventory.decrement_stock(product.id + 100, 1)
    with pytest.raises(ProductNotFound):
        uow.inventory.get_active_product_by_sku("NOPE")


def test_inactive_product_is_not_sold_by_sku(session, uow, product):
    product.is_active = False
    session.commit()
    with pytest.raises(ProductNotFound):
        uow.inventory.get_active_product_by_sku(product.sku)


def test_seed_product_is_idempotent(session, product):
    ledger = InventoryLedger(session)
    again, created = ledger.seed_product(
        sku=product.sku, name="Renamed", unit_price_cents=1, stock_quantity=1,
    )
    assert created is False
    assert again.id == product.id
    assert again.name == "BlueShield Pro"
    assert again.stock_quantity == 50
    assert again.specifications == {"weight": "22g", "protection": "UV400"}

    with pytest.raises(ValueError):
        ledger.seed_product(sku="NEW", name="New", unit_price_cents=-1, stock_quantity=0)
