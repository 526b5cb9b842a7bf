from __future__ import annotations

import json
from datetime import date

import numpy as np
import pandas as pd

from service_tracker.models import DueBucket, UnitType
from service_tracker.services.recurrence import DUE_WINDOWS, bucket_for

UNIT_RECORD_COLUMNS = [
    "id",
    "customer_id",
    "customer_name",
    "customer_phone",
    "display_name",
    "type",
    "service_interval_days",
    "last_service_date",
    "next_service_date",
    "next_service_source",
    "needs_manual_scheduling",
    "days_remaining",
    "overdue_days",
    "bucket",
]


def annotate_due(units: pd.DataFrame, today: date, soon_days: int = 7) -> pd.DataFrame:
    """Add days_remaining, overdue_days and bucket columns to a units frame."""
    if units.empty:
        return units.assign(days_remaining=[], overdue_days=[], bucket=[])
    df = units.copy()
    today_ts = pd.Timestamp(today)
    df["days_remaining"] = (df["next_service_date"].dt.normalize() - today_ts).dt.days.astype(int)
    df["overdue_days"] = np.where(df["days_remaining"] < 0, -df["days_remaining"], 0)
    df["bucket"] = df["days_remaining"].map(lambda d: bucket_for(int(d), soon_days).value)
    return df


def sort_by_urgency(units: pd.DataFrame) -> pd.DataFrame:
    """Most overdue first, then the soonest due."""
    if units.empty:
        return units
    return units.sort_values(["days_remaining", "id"], kind="mergesort")


def _records(df: pd.DataFrame) -> list[dict]:
    if df.empty:
        return []
    out = df[[c for c in UNIT_RECORD_COLUMNS if c in df.columns]].copy()
    for col in ("last_service_date", "next_service_date"):
        out[col] = out[col].dt.strftime("%Y-%m-%d")
    out["needs_manual_scheduling"] = out["needs_manual_scheduling"].astype(bool)
    # to_json turns numpy scalars and NaN into plain JSON values
    return json.loads(out.to_json(orient="records"))


def build_dashboard(
    customers: pd.DataFrame, units: pd.DataFrame, today: date, soon_days: int = 7
) -> dict:
    df = sort_by_urgency(annotate_due(units, today, soon_days))

    bucket_counts = {b.value: 0 for b in DueBucket}
    type_counts = {t.value: 0 for t in UnitType}
    window_counts = {name: 0 for name in DUE_WINDOWS}
    manual = 0
    if not df.empty:
        bucket_counts.update({k: int(v) for k, v in df["bucket"].value_counts().items()})
        type_counts.update({k: int(v) for k, v in df["type"].value_counts().items()})
        # windows overlap, these counts do not sum to the unit total
        window_counts = {
            name: int(df["days_remaining"].le(days).sum())
            for name, days in DUE_WINDOWS.items()
        }
        manual = int(df["needs_manual_scheduling"].astype(bool).sum())

    return {
        "as_of": today.isoformat(),
        "kpis": {
            "customers_count": int(len(customers)),
            "units_count": int(len(df)),
            "overdue_count": bucket_counts[DueBucket.OVERDUE.value],
            "due_today": window_counts["today"],
            "due_this_week": window_counts["week"],
            "due_this_month": window_counts["month"],
            "needs_manual_scheduling": manual,
        },
        "buckets": bucket_counts,
        "by_type": type_counts,
        "units": _records(df),
    }
