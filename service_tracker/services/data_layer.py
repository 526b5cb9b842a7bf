from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from service_tracker.errors import ConflictError
from service_tracker.models import (
    ADDRESS_FIELDS,
    Address,
    Customer,
    NextDateSource,
    Unit,
    UnitType,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    phone TEXT NOT NULL UNIQUE,
    email TEXT,
    house_number TEXT,
    street TEXT,
    area TEXT,
    city TEXT,
    state TEXT,
    pincode TEXT,
    country TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS units (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_id INTEGER NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
    display_name TEXT NOT NULL,
    type TEXT NOT NULL,
    service_interval_days INTEGER,
    last_service_date TEXT,
    next_service_date TEXT NOT NULL,
    next_service_source TEXT NOT NULL DEFAULT 'explicit',
    needs_manual_scheduling INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (customer_id, display_name)
);

CREATE INDEX IF NOT EXISTS idx_units_next_service_date ON units(next_service_date);
"""

CUSTOMER_COLUMNS = ("name", "phone", "email") + ADDRESS_FIELDS
UNIT_COLUMNS = (
    "customer_id",
    "display_name",
    "type",
    "service_interval_days",
    "last_service_date",
    "next_service_date",
    "next_service_source",
    "needs_manual_scheduling",
)


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _from_iso_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_customer(row: sqlite3.Row) -> Customer:
    return Customer(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        address=Address(**{name: row[name] for name in ADDRESS_FIELDS}),
        created_at=_from_iso_datetime(row["created_at"]),
        updated_at=_from_iso_datetime(row["updated_at"]),
    )


def _row_to_unit(row: sqlite3.Row) -> Unit:
    return Unit(
        id=row["id"],
        customer_id=row["customer_id"],
        display_name=row["display_name"],
        type=UnitType(row["type"]),
        service_interval_days=row["service_interval_days"],
        last_service_date=_from_iso_date(row["last_service_date"]),
        next_service_date=_from_iso_date(row["next_service_date"]),
        next_service_source=NextDateSource(row["next_service_source"]),
        needs_manual_scheduling=bool(row["needs_manual_scheduling"]),
        created_at=_from_iso_datetime(row["created_at"]),
        updated_at=_from_iso_datetime(row["updated_at"]),
    )


class StoreSession:
    """Reads and writes against one open transaction."""

    def __init__(self, con: sqlite3.Connection):
        self.con = con

    # Customers

    def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        row = self.con.execute("SELECT * FROM customers WHERE phone = ?", (phone,)).fetchone()
        return _row_to_customer(row) if row else None

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        row = self.con.execute("SELECT * FROM customers WHERE id = ?", (customer_id,)).fetchone()
        return _row_to_customer(row) if row else None

    def list_customers(self, search: str | None = None) -> list[Customer]:
        if search:
            term = f"%{search.strip()}%"
            cur = self.con.execute(
                "SELECT * FROM customers WHERE name LIKE ? OR phone LIKE ? ORDER BY name, id",
                (term, term),
            )
        else:
            cur = self.con.execute("SELECT * FROM customers ORDER BY name, id")
        return [_row_to_customer(row) for row in cur.fetchall()]

    def save_customer(self, customer: Customer) -> Customer:
        now = datetime.now()
        values = {
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
            **{name: getattr(customer.address, name) for name in ADDRESS_FIELDS},
        }
        try:
            if customer.id is None:
                cols = ", ".join(CUSTOMER_COLUMNS)
                marks = ", ".join("?" for _ in CUSTOMER_COLUMNS)
                cur = self.con.execute(
                    f"INSERT INTO customers ({cols}, created_at, updated_at) VALUES ({marks}, ?, ?)",
                    (*[values[c] for c in CUSTOMER_COLUMNS], now.isoformat(), now.isoformat()),
                )
                customer.id = cur.lastrowid
                customer.created_at = now
            else:
                assignments = ", ".join(f"{c} = ?" for c in CUSTOMER_COLUMNS)
                self.con.execute(
                    f"UPDATE customers SET {assignments}, updated_at = ? WHERE id = ?",
                    (*[values[c] for c in CUSTOMER_COLUMNS], now.isoformat(), customer.id),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Customer with phone {customer.phone} already exists"
            ) from exc
        customer.updated_at = now
        return customer

    def delete_customer(self, customer_id: int) -> bool:
        cur = self.con.execute("DELETE FROM customers WHERE id = ?", (customer_id,))
        return cur.rowcount > 0

    # Units

    def find_unit(self, customer_id: int, display_name: str) -> Optional[Unit]:
        row = self.con.execute(
            "SELECT * FROM units WHERE customer_id = ? AND display_name = ?",
            (customer_id, display_name),
        ).fetchone()
        return _row_to_unit(row) if row else None

    def get_unit(self, unit_id: int) -> Optional[Unit]:
        row = self.con.execute("SELECT * FROM units WHERE id = ?", (unit_id,)).fetchone()
        return _row_to_unit(row) if row else None

    def list_units(self) -> list[Unit]:
        cur = self.con.execute("SELECT * FROM units ORDER BY next_service_date, id")
        return [_row_to_unit(row) for row in cur.fetchall()]

    def list_units_for_customer(self, customer_id: int) -> list[Unit]:
        cur = self.con.execute(
            "SELECT * FROM units WHERE customer_id = ? ORDER BY next_service_date, id",
            (customer_id,),
        )
        return [_row_to_unit(row) for row in cur.fetchall()]

    def save_unit(self, unit: Unit) -> Unit:
        now = datetime.now()
        values = {
            "customer_id": unit.customer_id,
            "display_name": unit.display_name,
            "type": UnitType(unit.type).value,
            "service_interval_days": unit.service_interval_days,
            "last_service_date": _iso(unit.last_service_date),
            "next_service_date": _iso(unit.next_service_date),
            "next_service_source": NextDateSource(unit.next_service_source).value,
            "needs_manual_scheduling": int(unit.needs_manual_scheduling),
        }
        try:
            if unit.id is None:
                cols = ", ".join(UNIT_COLUMNS)
                marks = ", ".join("?" for _ in UNIT_COLUMNS)
                cur = self.con.execute(
                    f"INSERT INTO units ({cols}, created_at, updated_at) VALUES ({marks}, ?, ?)",
                    (*[values[c] for c in UNIT_COLUMNS], now.isoformat(), now.isoformat()),
                )
                unit.id = cur.lastrowid
                unit.created_at = now
            else:
                assignments = ", ".join(f"{c} = ?" for c in UNIT_COLUMNS)
                self.con.execute(
                    f"UPDATE units SET {assignments}, updated_at = ? WHERE id = ?",
                    (*[values[c] for c in UNIT_COLUMNS], now.isoformat(), unit.id),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Unit '{unit.display_name}' conflicts with an existing unit "
                f"or references a missing customer"
            ) from exc
        unit.updated_at = now
        return unit

    def delete_unit(self, unit_id: int) -> bool:
        cur = self.con.execute("DELETE FROM units WHERE id = ?", (unit_id,))
        return cur.rowcount > 0


class Store:
    """SQLite-backed customer/unit store. Opens one connection per transaction."""

    def __init__(self, db_path: Path | str, timeout: float = 10.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    def get_connection(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys = ON")
        return con

    def init_schema(self) -> None:
        con = self.get_connection()
        try:
            con.executescript(SCHEMA)
        finally:
            con.close()
        logger.debug("Schema ready at %s", self.db_path)

    def list_tables(self) -> list[str]:
        if not self.db_path.exists():
            return []
        con = self.get_connection()
        try:
            cur = con.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
            return [row[0] for row in cur.fetchall()]
        finally:
            con.close()

    def db_has_data(self) -> bool:
        if not {"customers", "units"}.issubset(set(self.list_tables())):
            return False
        with self.transaction() as tx:
            return tx.con.execute("SELECT EXISTS (SELECT 1 FROM customers)").fetchone()[0] == 1

    @contextmanager
    def transaction(self) -> Iterator[StoreSession]:
        """
        Run a unit of work under ``BEGIN IMMEDIATE``.

        The write lock is taken up front, so a lookup followed by an insert
        cannot interleave with another writer doing the same.
        """
        con = self.get_connection()
        try:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield StoreSession(con)
            except BaseException:
                con.execute("ROLLBACK")
                raise
            con.execute("COMMIT")
        finally:
            con.close()

    def load_frames(self) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Customers and units (with the owning customer's name) as DataFrames."""
        if not self.db_path.exists():
            return pd.DataFrame(), pd.DataFrame()
        con = self.get_connection()
        try:
            customers = pd.read_sql_query("SELECT * FROM customers", con)
            units = pd.read_sql_query(
                """
                SELECT u.*, c.name AS customer_name, c.phone AS customer_phone
                FROM units u JOIN customers c ON c.id = u.customer_id
                """,
                con,
            )
        finally:
            con.close()
        return customers, _normalize_dates(units)


def _normalize_dates(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    for col in ("last_service_date", "next_service_date"):
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], format="%Y-%m-%d", errors="coerce")
    return df
