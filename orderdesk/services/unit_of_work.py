# Overview: Transaction Coordinator; runs checkout components as one all-or-nothing unit of work.

"""
Transaction Coordinator

WHY: A checkout touches customers, addresses, products, orders, order items,
status events and audit entries. Either all of those writes commit, or none
do: a failure halfway through (conflicting identity, insufficient stock,
lost race, storage error) rolls back default-address demotions and stock
decrements along with everything else.

DESIGN:
- The coordinator owns exactly one Session, handed in by the caller. All
  components of a UnitOfWork share it; none of them commit.
- On SQLite every unit starts with BEGIN IMMEDIATE so writers are serialized.
  On other engines the components lock the rows they read (FOR UPDATE) and the
  partial unique indexes on customers catch what locking cannot (rows that do
  not exist yet).
- Lock/deadlock errors and ConcurrentRegistration are retried from the top
  with exponential backoff. Every retry starts from a rolled-back session.
- Failures leave as one typed OrderDeskError; raw SQLAlchemy errors never
  escape.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, TypeVar

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import (
    ConcurrentRegistration,
    IdentityConflict,
    InsufficientStock,
    OrderDeskError,
    StorageFailure,
)
from .address_service import AddressRecorder
from .audit_service import AuditRecorder
from .concurrency import RETRYABLE_ERRORS, begin_write, run_with_retry
from .identity_service import IdentityResolver
from .inventory_service import InventoryLedger
from .order_service import OrderAssembler
from .status_service import StatusHistorian

T = TypeVar("T")


class UnitOfWork:
    """The six pipeline components bound to one session."""

    def __init__(
        self,
        session: Session,
        *,
        order_number_prefix: str = "BSP",
        bcrypt_rounds: int = 12,
        number_generator: Callable[[str], str] | None = None,
    ):
        self.session = session
        self.audit = AuditRecorder(session)
        self.identity = IdentityResolver(session, self.audit, bcrypt_rounds=bcrypt_rounds)
        self.addresses = AddressRecorder(session)
        self.inventory = InventoryLedger(session)
        self.history = StatusHistorian(session, self.audit)
        self.orders = OrderAssembler(
            session,
            self.inventory,
            self.history,
            self.audit,
            order_number_prefix=order_number_prefix,
            number_generator=number_generator,
        )


def _translate_integrity_error(exc: IntegrityError) -> OrderDeskError:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    if (
        "uq_customers_" in message
        or "customers.email" in message
        or "customers.tax_id" in message
    ):
        return IdentityConflict("Email or tax id already registered")
    if "ck_products_stock_non_negative" in message or "stock_quantity" in message:
        return InsufficientStock("Insufficient stock")
    return StorageFailure(f"Integrity error: {message}")


class TransactionCoordinator:
    def __init__(
        self,
        session: Session,
        *,
        attempts: int = 3,
        backoff_base: float = 0.05,
        **component_options: Any,
    ):
        self.session = session
        self.attempts = attempts
        self.backoff_base = backoff_base
        self.component_options = component_options

    @classmethod
    def from_config(cls, session: Session, config: Mapping[str, Any], **overrides: Any) -> "TransactionCoordinator":
        options = {
            "order_number_prefix": config.get("ORDER_NUMBER_PREFIX", "BSP"),
            "bcrypt_rounds": config.get("BCRYPT_ROUNDS", 12),
        }
        options.update(overrides)
        return cls(session, **options)

    def _attempt(self, operation: Callable[[UnitOfWork], T]) -> T:
        if self.session.new or self.session.dirty or self.session.deleted:
            raise RuntimeError("A unit of work needs a session without pending changes")
        # Drop any read snapshot so the write lock sees the latest commits
        self.session.rollback()
        begin_write(self.session)

        uow = UnitOfWork(self.session, **self.component_options)
        try:
            result = operation(uow)
            self.session.commit()
        except BaseException:
            self.session.rollback()
            raise
        return result

    def run(self, operation: Callable[[UnitOfWork], T]) -> T:
        """
        Run operation(uow) and commit it atomically.

        Raises OrderDeskError subclasses (bad quantities surface as
        ValidationError). RuntimeError signals misuse: a session that
        already holds pending changes.
        """
        try:
            return run_with_retry(
                lambda: self._attempt(operation),
                session=self.session,
                attempts=self.attempts,
                backoff_base=self.backoff_base,
                retry_on=RETRYABLE_ERRORS + (ConcurrentRegistration,),
            )
        except ConcurrentRegistration as exc:
            raise IdentityConflict(
                "Customer registration conflicted with a concurrent checkout",
                details=exc.details,
            ) from exc
        except OrderDeskError:
            raise
        except IntegrityError as exc:
            translated = _translate_integrity_error(exc)
            if isinstance(translated, StorageFailure):
                current_app.logger.exception("Unit of work failed on an integrity error")
            raise translated from exc
        except SQLAlchemyError as exc:
            current_app.logger.exception("Unit of work could not commit")
            raise StorageFailure(f"Unit of work failed: {exc}") from exc
