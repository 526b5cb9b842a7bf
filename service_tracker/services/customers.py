"""
Customer writes keyed by phone number.

Phones are stored as bare digits. Every write merges with
field-present-overwrites semantics: a non-empty candidate value replaces the
stored one, an empty or missing value never clears it.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from service_tracker.errors import ConflictError, NotFoundError, ValidationError
from service_tracker.models import ADDRESS_FIELDS, Address, Customer, CustomerFields
from service_tracker.services.data_layer import Store, StoreSession

logger = logging.getLogger(__name__)

PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def normalize_phone(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")


def validate_phone(phone: Optional[str]) -> str:
    digits = normalize_phone(phone)
    if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        raise ValidationError(
            f"Phone must have {PHONE_MIN_DIGITS}-{PHONE_MAX_DIGITS} digits, got '{phone or ''}'",
            reason="invalid_phone",
        )
    return digits


def validate_email(email: Optional[str]) -> Optional[str]:
    email = _clean(email)
    if email is not None and not EMAIL_RE.match(email):
        raise ValidationError(f"Invalid email '{email}'", reason="invalid_email")
    return email


def validate_candidate(fields: CustomerFields) -> CustomerFields:
    """Check and normalize a full candidate (name and phone required)."""
    name = _clean(fields.name)
    if name is None:
        raise ValidationError("Customer name is required", reason="missing_field")
    return CustomerFields(
        name=name,
        phone=validate_phone(fields.phone),
        email=validate_email(fields.email),
        address=Address(**{f: _clean(getattr(fields.address, f)) for f in ADDRESS_FIELDS}),
    )


def merge_customer(customer: Customer, fields: CustomerFields) -> Customer:
    for attr in ("name", "phone", "email"):
        value = _clean(getattr(fields, attr))
        if value is not None:
            setattr(customer, attr, value)
    for attr in ADDRESS_FIELDS:
        value = _clean(getattr(fields.address, attr))
        if value is not None:
            setattr(customer.address, attr, value)
    return customer


def upsert_customer(tx: StoreSession, fields: CustomerFields) -> tuple[Customer, bool]:
    """Create the customer for ``fields.phone`` or merge into the existing one."""
    candidate = validate_candidate(fields)
    existing = tx.find_customer_by_phone(candidate.phone)
    if existing is None:
        customer = tx.save_customer(
            Customer(
                name=candidate.name,
                phone=candidate.phone,
                email=candidate.email,
                address=candidate.address,
            )
        )
        logger.debug("Created customer %s (%s)", customer.id, customer.phone)
        return customer, True

    customer = tx.save_customer(merge_customer(existing, candidate))
    logger.debug("Updated customer %s (%s)", customer.id, customer.phone)
    return customer, False


# Direct CRUD used by the HTTP layer


def list_customers(store: Store, search: str | None = None) -> list[Customer]:
    with store.transaction() as tx:
        return tx.list_customers(search)


def get_customer(store: Store, customer_id: int) -> Customer:
    with store.transaction() as tx:
        customer = tx.get_customer(customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def create_customer(store: Store, fields: CustomerFields) -> Customer:
    candidate = validate_candidate(fields)
    with store.transaction() as tx:
        if tx.find_customer_by_phone(candidate.phone) is not None:
            raise ConflictError(f"Customer with phone {candidate.phone} already exists")
        customer = tx.save_customer(
            Customer(
                name=candidate.name,
                phone=candidate.phone,
                email=candidate.email,
                address=candidate.address,
            )
        )
    logger.info("Customer %s created", customer.id)
    return customer


def update_customer(store: Store, customer_id: int, fields: CustomerFields) -> Customer:
    if fields.name is not None and _clean(fields.name) is None:
        raise ValidationError("Customer name cannot be empty", reason="missing_field")
    changes = CustomerFields(
        name=fields.name,
        phone=validate_phone(fields.phone) if _clean(fields.phone) else None,
        email=validate_email(fields.email),
        address=fields.address,
    )
    with store.transaction() as tx:
        customer = tx.get_customer(customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        if changes.phone and changes.phone != customer.phone:
            other = tx.find_customer_by_phone(changes.phone)
            if other is not None:
                raise ConflictError(
                    f"Phone {changes.phone} already belongs to customer {other.id}"
                )
        customer = tx.save_customer(merge_customer(customer, changes))
    logger.info("Customer %s updated", customer_id)
    return customer


def delete_customer(store: Store, customer_id: int) -> None:
    """Delete a customer and, through the foreign key, all of its units."""
    with store.transaction() as tx:
        if not tx.delete_customer(customer_id):
            raise NotFoundError(f"Customer {customer_id} not found")
    logger.info("Customer %s deleted", customer_id)
