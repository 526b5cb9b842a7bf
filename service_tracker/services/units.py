"""
Unit writes and the service-completion path.

A unit's next service date is either ``explicit`` (a caller chose it) or
``derived`` (last service date + interval). Only derived dates are ever
recomputed; an explicit date supplied in the same write always wins.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from service_tracker.errors import NotFoundError, ValidationError
from service_tracker.models import DueStatus, NextDateSource, Unit, UnitFields, UnitType
from service_tracker.services import recurrence
from service_tracker.services.data_layer import Store

logger = logging.getLogger(__name__)


def parse_unit_type(value: Any) -> UnitType:
    s = str(value or "").strip()
    try:
        return UnitType(s)
    except ValueError:
        allowed = ", ".join(t.value for t in UnitType)
        raise ValidationError(
            f"Unit type '{s}' is not one of {allowed}", reason="invalid_type"
        ) from None


def require_date(value: Any, label: str) -> date:
    parsed = recurrence.parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"{label} '{value or ''}' is not a valid YYYY-MM-DD date", reason="invalid_date"
        )
    return parsed


def optional_date(value: Any, label: str) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_date(value, label)


def check_not_future(value: Optional[date], today: date, label: str) -> None:
    if value is not None and value > today:
        raise ValidationError(
            f"{label} {value.isoformat()} is in the future", reason="future_date"
        )


def optional_interval(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    interval = recurrence.parse_interval(value)
    if interval is None or interval <= 0:
        raise ValidationError(
            f"Service interval '{value}' must be a positive number of days",
            reason="invalid_interval",
        )
    return interval


def require_name(value: Any) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError("Unit display name is required", reason="missing_field")
    return name


def _derive(unit: Unit) -> None:
    """Recompute a derived next date, or flag the unit when it cannot be derived."""
    computed = recurrence.next_service_date(unit.last_service_date, unit.service_interval_days)
    unit.next_service_source = NextDateSource.DERIVED
    if computed is None:
        unit.needs_manual_scheduling = True
    else:
        unit.next_service_date = computed
        unit.needs_manual_scheduling = False


def complete_service(
    store: Store, unit_id: int, service_date: Any, today: date | None = None
) -> Unit:
    """Register a completed service and roll the next service date forward."""
    today = today or date.today()
    if service_date is None or (isinstance(service_date, str) and not service_date.strip()):
        raise ValidationError("Service date is required", reason="missing_field")
    served = require_date(service_date, "Service date")
    check_not_future(served, today, "Service date")

    with store.transaction() as tx:
        unit = tx.get_unit(unit_id)
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        unit.last_service_date = served
        _derive(unit)
        unit = tx.save_unit(unit)

    if unit.needs_manual_scheduling:
        logger.info(
            "Service on unit %s recorded for %s; no interval set, next date needs manual scheduling",
            unit_id,
            served,
        )
    else:
        logger.info(
            "Service on unit %s recorded for %s; next service %s",
            unit_id,
            served,
            unit.next_service_date,
        )
    return unit


def create_unit(store: Store, fields: UnitFields, today: date | None = None) -> Unit:
    today = today or date.today()
    if fields.customer_id is None:
        raise ValidationError("Customer is required", reason="missing_field")
    name = require_name(fields.display_name)
    unit_type = parse_unit_type(fields.type)
    interval = optional_interval(fields.service_interval_days)
    last = optional_date(fields.last_service_date, "Last service date")
    check_not_future(last, today, "Last service date")
    explicit_next = optional_date(fields.next_service_date, "Next service date")

    if explicit_next is None:
        derived = recurrence.next_service_date(last, interval)
        if derived is None:
            raise ValidationError(
                "Next service date is required unless last service date and interval are given",
                reason="missing_field",
            )
        next_date, source = derived, NextDateSource.DERIVED
    else:
        next_date, source = explicit_next, NextDateSource.EXPLICIT

    with store.transaction() as tx:
        if tx.get_customer(fields.customer_id) is None:
            raise NotFoundError(f"Customer {fields.customer_id} not found")
        unit = tx.save_unit(
            Unit(
                customer_id=fields.customer_id,
                display_name=name,
                type=unit_type,
                service_interval_days=interval,
                last_service_date=last,
                next_service_date=next_date,
                next_service_source=source,
            )
        )
    logger.info("Unit %s created for customer %s", unit.id, unit.customer_id)
    return unit


def update_unit(
    store: Store, unit_id: int, fields: UnitFields, today: date | None = None
) -> Unit:
    today = today or date.today()
    with store.transaction() as tx:
        unit = tx.get_unit(unit_id)
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")

        if fields.customer_id is not None and fields.customer_id != unit.customer_id:
            if tx.get_customer(fields.customer_id) is None:
                raise NotFoundError(f"Customer {fields.customer_id} not found")
            unit.customer_id = fields.customer_id
        if fields.display_name is not None:
            unit.display_name = require_name(fields.display_name)
        if fields.type is not None:
            unit.type = parse_unit_type(fields.type)

        schedule_changed = False
        interval = optional_interval(fields.service_interval_days)
        if interval is not None and interval != unit.service_interval_days:
            unit.service_interval_days = interval
            schedule_changed = True
        last = optional_date(fields.last_service_date, "Last service date")
        check_not_future(last, today, "Last service date")
        if last is not None and last != unit.last_service_date:
            unit.last_service_date = last
            schedule_changed = True

        explicit_next = optional_date(fields.next_service_date, "Next service date")
        if explicit_next is not None:
            unit.next_service_date = explicit_next
            unit.next_service_source = NextDateSource.EXPLICIT
            unit.needs_manual_scheduling = False
        elif schedule_changed and unit.next_service_source == NextDateSource.DERIVED:
            _derive(unit)

        unit = tx.save_unit(unit)
    logger.info("Unit %s updated", unit_id)
    return unit


def get_unit(store: Store, unit_id: int) -> Unit:
    with store.transaction() as tx:
        unit = tx.get_unit(unit_id)
    if unit is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    return unit


def list_units(store: Store) -> list[Unit]:
    with store.transaction() as tx:
        return tx.list_units()


def list_units_for_customer(store: Store, customer_id: int) -> list[Unit]:
    with store.transaction() as tx:
        if tx.get_customer(customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        return tx.list_units_for_customer(customer_id)


def delete_unit(store: Store, unit_id: int) -> None:
    with store.transaction() as tx:
        if not tx.delete_unit(unit_id):
            raise NotFoundError(f"Unit {unit_id} not found")
    logger.info("Unit %s deleted", unit_id)


def unit_status(
    store: Store, unit_id: int, today: date | None = None, soon_days: int = 7
) -> DueStatus:
    unit = get_unit(store, unit_id)
    return recurrence.classify(unit.next_service_date, today or date.today(), soon_days)


def units_due(
    store: Store, window: str, today: date | None = None, soon_days: int = 7
) -> list[tuple[Unit, DueStatus]]:
    """
    Units inside a named window ('today', 'week', 'month') or strictly 'overdue'.

    The named windows overlap, so one unit can show up in all of them.
    Results are ordered most urgent first.
    """
    today = today or date.today()
    limit = None if window == "overdue" else recurrence.window_days(window)

    due = []
    for unit in list_units(store):
        status = recurrence.classify(unit.next_service_date, today, soon_days)
        if limit is None:
            selected = status.days_remaining < 0
        else:
            selected = recurrence.is_within(status.days_remaining, limit)
        if selected:
            due.append((unit, status))
    due.sort(key=lambda pair: (pair[1].days_remaining, pair[0].id))
    return due
