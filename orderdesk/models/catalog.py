from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Sellable product.

    Stock is only ever changed through InventoryLedger.decrement_stock; the
    CHECK constraint makes negative stock impossible at storage level.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("unit_price_cents >= 0", name="ck_products_price_non_negative"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_stock", "is_active", "stock_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    image_url = db.Column(db.String(512), nullable=True)
    # Free-form technical specifications (weight, materials, dimensions...)
    specifications = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "image_url": self.image_url,
            "specifications": self.specifications,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
