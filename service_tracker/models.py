from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class UnitType(str, Enum):
    AC = "AC"
    HEATER = "Heater"
    MACHINE = "Machine"
    GENERATOR = "Generator"


class DueBucket(str, Enum):
    OVERDUE = "Overdue"
    DUE_TODAY = "DueToday"
    DUE_SOON = "DueSoon"
    SCHEDULED = "Scheduled"


class NextDateSource(str, Enum):
    DERIVED = "derived"
    EXPLICIT = "explicit"


ADDRESS_FIELDS = ("house_number", "street", "area", "city", "state", "pincode", "country")


@dataclass
class Address:
    house_number: Optional[str] = None
    street: Optional[str] = None
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None


@dataclass
class CustomerFields:
    """Candidate values for a customer write. None or "" means 'not supplied'."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Address = field(default_factory=Address)


@dataclass
class Customer:
    name: str
    phone: str
    email: Optional[str] = None
    address: Address = field(default_factory=Address)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class Unit:
    customer_id: int
    display_name: str
    type: UnitType
    next_service_date: date
    service_interval_days: Optional[int] = None
    last_service_date: Optional[date] = None
    next_service_source: NextDateSource = NextDateSource.EXPLICIT
    needs_manual_scheduling: bool = False
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class UnitFields:
    """Candidate values for a direct unit write. None means 'not supplied'."""

    customer_id: Optional[int] = None
    display_name: Optional[str] = None
    type: Optional[str] = None
    service_interval_days: Optional[int] = None
    last_service_date: Optional[date | str] = None
    next_service_date: Optional[date | str] = None


@dataclass(frozen=True)
class DueStatus:
    bucket: DueBucket
    days_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket.value, "days_remaining": self.days_remaining}


@dataclass
class ImportRow:
    """One parsed CSV record, raw strings as read from the file."""

    name: str = ""
    phone: str = ""
    display_name: str = ""
    type: str = ""
    next_service_date: str = ""
    email: str = ""
    house_number: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    last_service_date: str = ""
    service_interval_days: str = ""


@dataclass
class RowError:
    row: int
    reason: str
    message: str


@dataclass
class ImportResult:
    customers_created: int = 0
    customers_updated: int = 0
    units_created: int = 0
    units_updated: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def rows_applied(self) -> int:
        return self.units_created + self.units_updated

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["rows_applied"] = self.rows_applied
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
