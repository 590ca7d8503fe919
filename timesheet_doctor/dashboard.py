"""
Filtering, month selection and aggregates behind the dashboard views.

The record filter mirrors the interactive table: selection filters, a free
text search, per-column substring filters and a sort. ``compute_stats``
produces the KPI cards and the chart series from whatever survived the
filter.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import pandas as pd

from timesheet_doctor.models import RECORD_FIELDS, UNDEFINED_TYPE, WorkLog

NOT_AVAILABLE = "N/A"
NO_TYPE = "No Type"
INACTIVE_CATEGORY = "baja"
SEARCH_FIELDS = ("project", "description", "ticket_id", "internal_ticket_id")
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class RecordFilter:
    months: list[str] = field(default_factory=list)
    clients: list[str] = field(default_factory=list)
    consultants: list[str] = field(default_factory=list)
    record_types: list[str] = field(default_factory=list)
    consultant_types: list[str] = field(default_factory=list)
    search: str = ""
    column_filters: dict[str, str] = field(default_factory=dict)
    forced_ids: list[str] | None = None
    sort_key: str | None = None
    sort_descending: bool = False


def record_type_label(record: WorkLog) -> str:
    return record.record_type or NOT_AVAILABLE


def consultant_type_label(record: WorkLog) -> str:
    return record.consultant_type or UNDEFINED_TYPE


def _matches_selection(record: WorkLog, criteria: RecordFilter) -> bool:
    if criteria.months and record.month not in criteria.months:
        return False
    if criteria.clients and record.client not in criteria.clients:
        return False
    if criteria.consultants and record.consultant not in criteria.consultants:
        return False
    if criteria.record_types and record_type_label(record) not in criteria.record_types:
        return False
    if criteria.consultant_types:
        return consultant_type_label(record) in criteria.consultant_types
    # With no category selected, inactive consultants stay hidden.
    return (record.consultant_type or "").lower() != INACTIVE_CATEGORY


def _matches_search(record: WorkLog, term: str) -> bool:
    return any(term in (getattr(record, name) or "").lower() for name in SEARCH_FIELDS)


def _matches_columns(record: WorkLog, column_filters: dict[str, str]) -> bool:
    for name, value in column_filters.items():
        needle = (value or "").lower()
        if not needle:
            continue
        if needle not in str(getattr(record, name, "") or "").lower():
            return False
    return True


def _sort_value(record: WorkLog, key: str) -> Any:
    value = getattr(record, key, "")
    if isinstance(value, (int, float)):
        return value
    return str(value or "").lower()


def apply_filters(records: Sequence[WorkLog], criteria: RecordFilter) -> list[WorkLog]:
    """Return the records visible under ``criteria``, sorted when a sort key is set.

    A forced id set (alert drill-down) replaces the selection filters; the
    search and column filters still apply on top of it.
    """
    if criteria.forced_ids is not None:
        forced = set(criteria.forced_ids)
        result = [record for record in records if record.id in forced]
    else:
        result = [record for record in records if _matches_selection(record, criteria)]

    if criteria.search:
        term = criteria.search.lower()
        result = [record for record in result if _matches_search(record, term)]

    if criteria.column_filters:
        result = [record for record in result if _matches_columns(record, criteria.column_filters)]

    if criteria.sort_key:
        if criteria.sort_key not in RECORD_FIELDS:
            raise ValueError(f"Cannot sort by unknown field {criteria.sort_key!r}")
        result.sort(key=lambda record: _sort_value(record, criteria.sort_key), reverse=criteria.sort_descending)
    return result


def format_month_label(month: str) -> str:
    """``"2024-03"`` -> ``"March 2024"``; unreadable tokens come back unchanged."""
    clean = month[:-1] if month.endswith("-") else month
    parts = clean.split("-")
    if len(parts) < 2:
        return month
    year_match = LEADING_INT_RE.match(parts[0])
    month_match = LEADING_INT_RE.match(parts[1])
    if not year_match or not month_match:
        return month
    year = int(year_match.group(1))
    month_number = int(month_match.group(1))
    year += (month_number - 1) // 12
    month_number = (month_number - 1) % 12 + 1
    return f"{calendar.month_name[month_number]} {year}"


def available_months(records: Iterable[WorkLog]) -> list[dict[str, str]]:
    months = sorted({record.month for record in records}, reverse=True)
    return [{"value": month, "label": format_month_label(month)} for month in months]


def filter_options(records: Sequence[WorkLog]) -> dict[str, list[str]]:
    return {
        "clients": sorted({record.client for record in records}),
        "consultants": sorted({record.consultant for record in records}),
        "record_types": sorted({record_type_label(record) for record in records}),
        "consultant_types": sorted({consultant_type_label(record) for record in records}),
    }


def records_frame(records: Iterable[WorkLog]) -> pd.DataFrame:
    frame = pd.DataFrame([record.to_dict() for record in records], columns=list(RECORD_FIELDS))
    frame["hours"] = pd.to_numeric(frame["hours"], errors="coerce").fillna(0.0)
    return frame


def _empty_stats() -> dict[str, Any]:
    return {
        "kpi": {
            "total_hours": 0.0,
            "total_consultants": 0,
            "total_clients": 0,
            "top_client": NOT_AVAILABLE,
            "top_client_hours": 0.0,
            "top_consultant": NOT_AVAILABLE,
            "top_consultant_hours": 0.0,
            "bottom_consultant": NOT_AVAILABLE,
            "bottom_consultant_hours": 0.0,
        },
        "charts": {
            "by_client": [],
            "consultant_by_client": [],
            "active_clients": [],
            "monthly_trend": [],
        },
    }


def compute_stats(records: Sequence[WorkLog]) -> dict[str, Any]:
    """KPI values and chart series for the given (already filtered) records."""
    if not records:
        return _empty_stats()

    frame = records_frame(records)
    frame["month"] = frame["date"].str[:7]
    frame["type_key"] = frame["record_type"].where(frame["record_type"] != "", NO_TYPE)

    by_client = (
        frame.groupby("client", sort=False)["hours"]
        .sum()
        .sort_values(ascending=False, kind="stable")
    )
    active_clients = sorted(frame["client"].unique().tolist())

    pivot = frame.pivot_table(
        index="consultant",
        columns="client",
        values="hours",
        aggfunc="sum",
        fill_value=0.0,
        sort=False,
    ).reindex(columns=active_clients, fill_value=0.0)
    pivot["total"] = pivot.sum(axis=1)
    pivot = pivot.sort_values("total", ascending=False, kind="stable")

    consultant_rows = []
    for name, row in pivot.iterrows():
        entry = {"name": name, "total": float(row["total"])}
        entry.update({client: float(row[client]) for client in active_clients})
        consultant_rows.append(entry)

    trend_rows = []
    for month, group in frame.groupby("month", sort=True):
        entry = {"date": month, "hours": float(group["hours"].sum())}
        type_totals = group.groupby("type_key", sort=False)["hours"].sum()
        entry.update({type_key: float(value) for type_key, value in type_totals.items()})
        trend_rows.append(entry)

    top, bottom = consultant_rows[0], consultant_rows[-1]
    return {
        "kpi": {
            "total_hours": float(frame["hours"].sum()),
            "total_consultants": int(frame["consultant"].nunique()),
            "total_clients": int(frame["client"].nunique()),
            "top_client": str(by_client.index[0]),
            "top_client_hours": float(by_client.iloc[0]),
            "top_consultant": top["name"],
            "top_consultant_hours": top["total"],
            "bottom_consultant": bottom["name"],
            "bottom_consultant_hours": bottom["total"],
        },
        "charts": {
            "by_client": [{"name": str(name), "value": float(value)} for name, value in by_client.items()],
            "consultant_by_client": consultant_rows,
            "active_clients": active_clients,
            "monthly_trend": trend_rows,
        },
    }
