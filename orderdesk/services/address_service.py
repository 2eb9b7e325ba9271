# Overview: Service-layer operations for addresses; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import Address, ADDRESS_PURPOSES


@dataclass(frozen=True)
class AddressFields:
    """Address payload as received from the checkout form."""
    postal_code: str
    street: str
    number: str
    district: Optional[str]
    city: str
    region: str
    complement: Optional[str] = None
    country: str = "BR"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class AddressRecorder:
    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        customer_id: int,
        fields: AddressFields,
        *,
        is_default: bool = False,
        purpose: str = "delivery",
    ) -> Address:
        """
        Append an address for a customer.

        When is_default is requested, every live address of the customer is
        demoted first, in the same transaction as the insert, so two defaults
        are never visible at once. Postal code format is not checked here.
        """
        if purpose not in ADDRESS_PURPOSES:
            raise ValidationError(
                f"Invalid address purpose '{purpose}'. Must be one of: {', '.join(ADDRESS_PURPOSES)}"
            )

        values = {key: _clean(value) for key, value in asdict(fields).items()}
        missing = [key for key in ("postal_code", "street", "number", "city", "region") if not values[key]]
        if missing:
            raise ValidationError("Missing address fields", details={"fields": missing})

        if is_default:
            self.session.execute(
                update(Address)
                .where(
                    Address.customer_id == customer_id,
                    Address.deleted_at.is_(None),
                    Address.is_default.is_(True),
                )
                .values(is_default=False)
                .execution_options(synchronize_session="fetch")
            )

        address = Address(
            customer_id=customer_id,
            postal_code=values["postal_code"],
            street=values["street"],
            number=values["number"],
            complement=values["complement"],
            # Optional on the storefront form
            district=values["district"] or "Not informed",
            city=values["city"],
            region=values["region"].upper(),
            country=values["country"] or "BR",
            purpose=purpose,
            is_default=is_default,
        )
        self.session.add(address)
        self.session.flush()
        return address

    def list_for_customer(self, customer_id: int) -> list[Address]:
        """Live addresses, default first, newest next."""
        return (
            self.session.query(Address)
            .filter(Address.customer_id == customer_id, Address.deleted_at.is_(None))
            .order_by(Address.is_default.desc(), Address.created_at.desc(), Address.id.desc())
            .all()
        )

    def get_default(self, customer_id: int) -> Address | None:
        return (
            self.session.query(Address)
            .filter(
                Address.customer_id == customer_id,
                Address.is_default.is_(True),
                Address.deleted_at.is_(None),
            )
            .first()
        )
