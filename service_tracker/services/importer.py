"""
Bulk CSV import of customers and their units.

Rows are applied strictly in file order, each in its own transaction.
A bad row is recorded in ``ImportResult.errors`` and skipped; it never
aborts or rolls back its neighbours. Only an unusable file as a whole
raises ``ImportStructureError``.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from service_tracker.errors import ImportStructureError, ServiceTrackerError, ValidationError
from service_tracker.models import (
    Address,
    CustomerFields,
    ImportResult,
    ImportRow,
    NextDateSource,
    RowError,
    Unit,
    UnitType,
)
from service_tracker.services import customers, units
from service_tracker.services.data_layer import Store, StoreSession

logger = logging.getLogger(__name__)

# CSV header -> ImportRow attribute
COLUMN_MAP = {
    "name": "name",
    "phone": "phone",
    "displayName": "display_name",
    "type": "type",
    "nextServiceDate": "next_service_date",
    "email": "email",
    "houseNumber": "house_number",
    "street": "street",
    "city": "city",
    "state": "state",
    "pincode": "pincode",
    "lastServiceDate": "last_service_date",
    "serviceIntervalDays": "service_interval_days",
}
REQUIRED_COLUMNS = ["name", "phone", "displayName", "type", "nextServiceDate"]
TEMPLATE_COLUMNS = [
    "name", "phone", "displayName", "type", "nextServiceDate", "email",
    "houseNumber", "street", "city", "state", "pincode", "lastServiceDate",
]
TEMPLATE_ROWS = [
    ["John Doe", "9876543210", "Living Room AC", "AC", "2023-04-15", "john@example.com",
     "123", "Main Street", "New York", "NY", "10001", "2023-01-15"],
    ["Jane Smith", "9876543211", "Backup Generator", "Generator", "2023-05-01", "jane@example.com",
     "456", "Elm Street", "Los Angeles", "CA", "90001", "2023-02-01"],
]


@dataclass
class ValidatedRow:
    customer: CustomerFields
    display_name: str
    type: UnitType
    next_service_date: date
    last_service_date: Optional[date]
    service_interval_days: Optional[int]


def import_template_csv() -> str:
    return pd.DataFrame(TEMPLATE_ROWS, columns=TEMPLATE_COLUMNS).to_csv(index=False)


def read_rows(data: bytes | str) -> list[ImportRow]:
    """Parse CSV text into ImportRows. Raises ImportStructureError for unusable input."""
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ImportStructureError("Import file is not valid UTF-8 text") from exc
    if not data.strip():
        raise ImportStructureError("Import file is empty")

    try:
        df = pd.read_csv(io.StringIO(data), dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError as exc:
        raise ImportStructureError("Import file is empty") from exc
    except pd.errors.ParserError as exc:
        raise ImportStructureError(f"Import file could not be parsed: {exc}") from exc

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ImportStructureError(f"Missing required columns: {', '.join(missing)}")
    if df.empty:
        raise ImportStructureError("Import file has a header but no data rows")

    known = [c for c in df.columns if c in COLUMN_MAP]
    # short rows come back as NaN even with keep_default_na=False
    df = df[known].rename(columns=COLUMN_MAP).fillna("")
    return [ImportRow(**record) for record in df.to_dict("records")]


def coerce_row(raw: ImportRow | Mapping[str, Any]) -> ImportRow:
    if isinstance(raw, ImportRow):
        return raw
    values = {}
    for key, value in raw.items():
        attr = COLUMN_MAP.get(key, key)
        if attr in ImportRow.__dataclass_fields__:
            values[attr] = "" if value is None else str(value)
    return ImportRow(**values)


def validate_row(row: ImportRow, today: date) -> ValidatedRow:
    """Check every field of a row before anything is written for it."""
    for column in REQUIRED_COLUMNS:
        if not str(getattr(row, COLUMN_MAP[column]) or "").strip():
            raise ValidationError(f"Missing required field '{column}'", reason="missing_field")

    unit_type = units.parse_unit_type(row.type)
    next_date = units.require_date(row.next_service_date, "nextServiceDate")
    last_date = units.optional_date(row.last_service_date, "lastServiceDate")
    units.check_not_future(last_date, today, "lastServiceDate")
    interval = units.optional_interval(row.service_interval_days)

    candidate = customers.validate_candidate(
        CustomerFields(
            name=row.name,
            phone=row.phone,
            email=row.email,
            address=Address(
                house_number=row.house_number,
                street=row.street,
                city=row.city,
                state=row.state,
                pincode=row.pincode,
            ),
        )
    )
    return ValidatedRow(
        customer=candidate,
        display_name=row.display_name.strip(),
        type=unit_type,
        next_service_date=next_date,
        last_service_date=last_date,
        service_interval_days=interval,
    )


def upsert_unit(tx: StoreSession, customer_id: int, row: ValidatedRow) -> tuple[Unit, bool]:
    """Create or update the unit keyed by (customer_id, display_name)."""
    unit = tx.find_unit(customer_id, row.display_name)
    created = unit is None
    if created:
        unit = Unit(
            customer_id=customer_id,
            display_name=row.display_name,
            type=row.type,
            next_service_date=row.next_service_date,
        )
    unit.type = row.type
    if row.last_service_date is not None:
        unit.last_service_date = row.last_service_date
    if row.service_interval_days is not None:
        unit.service_interval_days = row.service_interval_days
    # a date from the file is always a caller's choice
    unit.next_service_date = row.next_service_date
    unit.next_service_source = NextDateSource.EXPLICIT
    unit.needs_manual_scheduling = False
    return tx.save_unit(unit), created


def import_rows(
    store: Store,
    rows: Iterable[ImportRow | Mapping[str, Any]],
    today: date | None = None,
) -> ImportResult:
    today = today or date.today()
    result = ImportResult()

    for index, raw in enumerate(rows, start=1):
        try:
            row = validate_row(coerce_row(raw), today)
            with store.transaction() as tx:
                customer, customer_created = customers.upsert_customer(tx, row.customer)
                unit, unit_created = upsert_unit(tx, customer.id, row)
        except ServiceTrackerError as exc:
            result.errors.append(RowError(row=index, reason=exc.reason, message=exc.message))
            logger.warning("Import row %s skipped (%s): %s", index, exc.reason, exc.message)
            continue

        if customer_created:
            result.customers_created += 1
        else:
            result.customers_updated += 1
        if unit_created:
            result.units_created += 1
        else:
            result.units_updated += 1
        logger.debug(
            "Import row %s -> customer %s, unit %s (%s)",
            index,
            customer.id,
            unit.id,
            "created" if unit_created else "updated",
        )

    logger.info(
        "Import finished: customers %s created / %s updated, units %s created / %s updated, %s row errors",
        result.customers_created,
        result.customers_updated,
        result.units_created,
        result.units_updated,
        len(result.errors),
    )
    return result


def import_csv(
    store: Store,
    data: bytes | str,
    today: date | None = None,
    max_bytes: int | None = None,
) -> ImportResult:
    if max_bytes is not None and len(data) > max_bytes:
        raise ImportStructureError(f"Import file exceeds {max_bytes} bytes")
    return import_rows(store, read_rows(data), today=today)
