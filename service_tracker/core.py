# core.py - store wiring and headline numbers, no HTTP concerns

from datetime import date
from functools import lru_cache

from service_tracker.config import get_settings
from service_tracker.services import reporting
from service_tracker.services.data_layer import Store


@lru_cache
def get_store() -> Store:
    settings = get_settings()
    store = Store(settings.resolved_database_path, timeout=settings.sqlite_timeout_seconds)
    store.init_schema()
    return store


def get_kpis(store: Store, today: date | None = None) -> dict:
    """
    Headline counts for the dashboard.

    Returns a dict with:
    - customers_count
    - units_count
    - overdue_count
    - due_today / due_this_week / due_this_month (overlapping windows)
    - needs_manual_scheduling
    """
    customers, units = store.load_frames()
    dashboard = reporting.build_dashboard(
        customers, units, today or date.today(), get_settings().due_soon_days
    )
    return dashboard["kpis"]
