# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

"""
Inventory Ledger

- get_stock() is a pure read (optionally row-locked).
- decrement_stock() subtracts unconditionally; the caller checks
  stock >= quantity first (OrderAssembler does). The products CHECK
  constraint still refuses to go negative, and that refusal is reported as
  InsufficientStock rather than a storage error.
- Quantities are positive ints. Anything else raises ValidationError
  (also a ValueError) before any write.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import InsufficientStock, ProductNotFound, ValidationError
from ..models import Product
from orderdesk.time_utils import utcnow
from .concurrency import lock_for_update


def require_positive_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"quantity must be a positive integer, got {quantity!r}")
    return quantity


class InventoryLedger:
    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: int, *, for_update: bool = False) -> Product:
        query = self.session.query(Product).filter(
            Product.id == product_id,
            Product.deleted_at.is_(None),
        )
        if for_update:
            query = lock_for_update(query)
        product = query.first()
        if product is None:
            raise ProductNotFound(f"Product {product_id} not found")
        return product

    def get_active_product_by_sku(self, sku: str, *, for_update: bool = False) -> Product:
        query = self.session.query(Product).filter(
            Product.sku == sku,
            Product.is_active.is_(True),
            Product.deleted_at.is_(None),
        )
        if for_update:
            query = lock_for_update(query)
        product = query.first()
        if product is None:
            raise ProductNotFound(f"Product {sku} not found", details={"sku": sku})
        return product

    def get_stock(self, product_id: int, *, for_update: bool = False) -> int:
        """Current stock for a product. No side effects."""
        return self.get_product(product_id, for_update=for_update).stock_quantity

    def decrement_stock(self, product_id: int, quantity: int) -> int:
        """Subtract quantity from stock and return the new level."""
        require_positive_quantity(quantity)
        try:
            result = self.session.execute(
                update(Product)
                .where(Product.id == product_id, Product.deleted_at.is_(None))
                .values(
                    stock_quantity=Product.stock_quantity - quantity,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session="fetch")
            )
        except IntegrityError as exc:
            raise InsufficientStock(
                "Insufficient stock",
                details={"product_id": product_id, "requested_quantity": quantity},
            ) from exc

        if not result.rowcount:
            raise ProductNotFound(f"Product {product_id} not found")
        return self.get_stock(product_id)

    def seed_product(
        self,
        *,
        sku: str,
        name: str,
        unit_price_cents: int,
        stock_quantity: int,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        specifications: Optional[dict[str, Any]] = None,
    ) -> tuple[Product, bool]:
        """
        Insert a catalogue product once (idempotent by SKU).

        Returns (product, created). An existing product is left untouched,
        including its stock.
        """
        existing = self.session.query(Product).filter(Product.sku == sku).first()
        if existing is not None:
            return existing, False

        if unit_price_cents < 0:
            raise ValueError("unit_price_cents must be >= 0")
        if stock_quantity < 0:
            raise ValueError("stock_quantity must be >= 0")

        product = Product(
            sku=sku,
            name=name,
            description=description,
            unit_price_cents=unit_price_cents,
            stock_quantity=stock_quantity,
            image_url=image_url,
            specifications=specifications,
            is_active=True,
        )
        self.session.add(product)
        self.session.flush()
        return product, True
