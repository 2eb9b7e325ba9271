from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from orderdesk.time_utils import to_utc_z, utcnow

CUSTOMER_STATUSES = ("active", "inactive", "blocked", "pending")
ADDRESS_PURPOSES = ("delivery", "billing", "both")

_LIVE_ROWS = text("deleted_at IS NULL")


class Customer(db.Model):
    """
    Checkout customer identity.

    WHY: A customer is reconciled from (email, tax_id) on every checkout.
    Each of the two fields resolves to at most one live (non-deleted) row;
    the partial unique indexes below are the storage-level backstop for the
    resolver's check-then-insert.

    Soft-deleted rows keep their values but free email/tax_id for reuse.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index(
            "uq_customers_email_live", "email", unique=True,
            sqlite_where=_LIVE_ROWS, postgresql_where=_LIVE_ROWS,
        ),
        db.Index(
            "uq_customers_tax_id_live", "tax_id", unique=True,
            sqlite_where=_LIVE_ROWS, postgresql_where=_LIVE_ROWS,
        ),
        db.Index("ix_customers_status", "status"),
        db.Index("ix_customers_created_at", "created_at"),
        db.CheckConstraint(
            "status IN ('active', 'inactive', 'blocked', 'pending')",
            name="ck_customers_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Opaque identifier safe to hand to external systems
    public_id = db.Column(db.String(36), nullable=False, unique=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    tax_id = db.Column(db.String(32), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active")
    email_verified = db.Column(db.Boolean, nullable=False, default=False)

    last_login_at = db.Column(db.DateTime, nullable=True)
    failed_login_attempts = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime, nullable=True)

    addresses = db.relationship(
        "Address",
        back_populates="customer",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "public_id": self.public_id,
            "name": self.name,
            "email": self.email,
            "tax_id": self.tax_id,
            "phone": self.phone,
            "status": self.status,
            "email_verified": self.email_verified,
            "last_login_at": to_utc_z(self.last_login_at),
            "failed_login_attempts": self.failed_login_attempts,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }

    def audit_snapshot(self) -> dict:
        """Fields recorded in audit entries (never the credential hash)."""
        return {
            "public_id": self.public_id,
            "name": self.name,
            "email": self.email,
            "tax_id": self.tax_id,
            "status": self.status,
            "deleted_at": to_utc_z(self.deleted_at),
        }


class Address(db.Model):
    """
    Shipping/billing address owned by exactly one customer.

    INVARIANT: At most one live address per customer has is_default = true.
    The partial unique index enforces it at storage level; AddressRecorder
    demotes prior defaults in the same transaction before inserting.
    """
    __tablename__ = "addresses"
    __table_args__ = (
        db.Index(
            "uq_addresses_one_default_per_customer", "customer_id", unique=True,
            sqlite_where=text("is_default = 1 AND deleted_at IS NULL"),
            postgresql_where=text("is_default IS TRUE AND deleted_at IS NULL"),
        ),
        db.Index("ix_addresses_postal_code", "postal_code"),
        db.CheckConstraint(
            "purpose IN ('delivery', 'billing', 'both')",
            name="ck_addresses_purpose",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    postal_code = db.Column(db.String(16), nullable=False)
    street = db.Column(db.String(255), nullable=False)
    number = db.Column(db.String(32), nullable=False)
    complement = db.Column(db.String(255), nullable=True)
    district = db.Column(db.String(128), nullable=False)
    city = db.Column(db.String(128), nullable=False)
    region = db.Column(db.String(64), nullable=False)
    country = db.Column(db.String(2), nullable=False, default="BR")

    purpose = db.Column(db.String(16), nullable=False, default="delivery")
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    validated = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime, nullable=True)

    customer = db.relationship("Customer", back_populates="addresses")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "postal_code": self.postal_code,
            "street": self.street,
            "number": self.number,
            "complement": self.complement,
            "district": self.district,
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "purpose": self.purpose,
            "is_default": self.is_default,
            "validated": self.validated,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
        }
