# Overview: Service-layer operations for customer identity; encapsulates business logic and database work.

"""
Identity Resolver

================================================================================
PURPOSE: Map an (email, tax_id) pair to exactly one live customer
================================================================================

RULES:
1. Email match with a different tax_id        -> IdentityConflict
2. No email match, tax_id match               -> IdentityConflict
3. Neither matches                            -> create customer + audit INSERT
4. Both match the same customer               -> return it, no mutation

Conflicting input is never merged into or overwritten onto an existing row.

CONCURRENCY:
The lookups and the insert run inside the caller's unit of work. On SQLite
the unit of work already holds the write lock (BEGIN IMMEDIATE); elsewhere
the lookups lock matching rows. Two writers that still race past the
lookups both hit the partial unique indexes on customers: the loser's flush
fails and is raised as ConcurrentRegistration, which TransactionCoordinator
retries from the top. On the retry rule 4 (or 1/2) applies.

================================================================================
"""

from __future__ import annotations

import re
import secrets
import uuid

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConcurrentRegistration, CustomerNotFound, IdentityConflict, ValidationError
from ..models import Customer
from orderdesk.time_utils import utcnow
from .audit_service import AuditRecorder, RequestContext
from .concurrency import lock_for_update


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def normalize_tax_id(tax_id: str | None) -> str:
    """Tax ids are compared as bare digits (punctuation is presentation)."""
    return re.sub(r"\D", "", tax_id or "")


def hash_provisional_credential(rounds: int = 12) -> str:
    """
    Hash a random throwaway secret.

    Checkout customers never see this credential; it only satisfies the
    non-null password_hash column until a real sign-up flow replaces it.
    """
    secret = secrets.token_urlsafe(16)
    hashed = bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


class IdentityResolver:
    def __init__(self, session: Session, audit: AuditRecorder, *, bcrypt_rounds: int = 12):
        self.session = session
        self.audit = audit
        self.bcrypt_rounds = bcrypt_rounds

    def _live(self, *criteria):
        query = self.session.query(Customer).filter(*criteria)
        return query.filter(Customer.deleted_at.is_(None))

    def get(self, customer_id: int, include_deleted: bool = False) -> Customer | None:
        query = self.session.query(Customer).filter(Customer.id == customer_id)
        if not include_deleted:
            query = query.filter(Customer.deleted_at.is_(None))
        return query.first()

    def get_by_email(self, email: str, *, lock: bool = False) -> Customer | None:
        query = self._live(Customer.email == normalize_email(email))
        if lock:
            query = lock_for_update(query)
        return query.first()

    def get_by_tax_id(self, tax_id: str, *, lock: bool = False) -> Customer | None:
        query = self._live(Customer.tax_id == normalize_tax_id(tax_id))
        if lock:
            query = lock_for_update(query)
        return query.first()

    def resolve(
        self,
        *,
        name: str,
        email: str,
        tax_id: str,
        phone: str | None = None,
        context: RequestContext | None = None,
    ) -> tuple[Customer, bool]:
        """
        Return (customer, created).

        Raises:
            ValidationError: email or tax_id empty after normalization
            IdentityConflict: email/tax_id bound to a different customer
            ConcurrentRegistration: lost an insert race (retryable)
        """
        email = normalize_email(email)
        tax_id = normalize_tax_id(tax_id)
        name = (name or "").strip()
        if not email or not tax_id:
            raise ValidationError("email and tax_id are required")

        by_email = self.get_by_email(email, lock=True)
        if by_email is not None:
            if by_email.tax_id != tax_id:
                raise IdentityConflict(
                    "Email already registered with a different tax id",
                    details={"field": "email"},
                )
            return by_email, False

        if self.get_by_tax_id(tax_id, lock=True) is not None:
            raise IdentityConflict(
                "Tax id already registered with a different email",
                details={"field": "tax_id"},
            )

        if not name:
            raise ValidationError("name is required for new customers")

        customer = Customer(
            public_id=str(uuid.uuid4()),
            name=name,
            email=email,
            tax_id=tax_id,
            password_hash=hash_provisional_credential(self.bcrypt_rounds),
            phone=(phone or "").strip() or None,
            status="active",
        )
        self.session.add(customer)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConcurrentRegistration(
                "Customer was registered concurrently",
                details={"email": email},
            ) from exc

        self.audit.record(
            table_name="customers",
            record_id=customer.id,
            action="INSERT",
            after={"name": customer.name, "email": customer.email, "tax_id": customer.tax_id},
            context=context,
        )
        return customer, True

    def soft_delete(
        self,
        customer_id: int,
        *,
        actor_id: int | None = None,
        context: RequestContext | None = None,
    ) -> Customer:
        """
        Hide a customer and free its email/tax_id for future registrations.

        Addresses and orders stay in place; orders are never deleted.
        """
        customer = lock_for_update(
            self.session.query(Customer).filter(Customer.id == customer_id)
        ).first()
        if customer is None or customer.deleted_at is not None:
            raise CustomerNotFound(f"Customer {customer_id} not found")

        before = customer.audit_snapshot()
        customer.deleted_at = utcnow()
        customer.status = "inactive"
        self.session.flush()

        self.audit.record(
            table_name="customers",
            record_id=customer.id,
            action="DELETE",
            before=before,
            after=customer.audit_snapshot(),
            actor_id=actor_id,
            context=context,
        )
        return customer
