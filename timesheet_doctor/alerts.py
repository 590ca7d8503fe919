"""
Rule-based utilization alerts.

``evaluate_alerts`` groups the records per consultant and applies the
load-control rules against the selected month scope. The reference date is
always passed in, so the result depends only on the arguments.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Sequence

from timesheet_doctor.models import (
    SEVERITY_CRITICAL,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    SEVERITY_WEIGHT,
    UNDEFINED_TYPE,
    Alert,
    WorkLog,
)

logger = logging.getLogger(__name__)

FULL_TIME_DAILY_HOURS = 8
PART_TIME_DAILY_HOURS = 4
SHORTFALL_TOLERANCE = 2.0
CLOSING_FULL_TIME_MIN = 140.0
CLOSING_PART_TIME_MAX = 80.0
MIN_ACTIVITY_HOURS = 20.0
MAX_DAILY_HOURS = 12.0

LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass
class ConsultantLoad:
    """Per-consultant aggregation the rules are evaluated against."""

    name: str
    category: str
    hours: float = 0.0
    weekend_hours: float = 0.0
    weekend_ids: list[str] = field(default_factory=list)
    day_hours: dict[str, float] = field(default_factory=dict)
    day_ids: dict[str, list[str]] = field(default_factory=dict)
    all_ids: list[str] = field(default_factory=list)

    @property
    def is_full_time(self) -> bool:
        return "full" in self.category.lower() or self.category == UNDEFINED_TYPE

    @property
    def is_part_time(self) -> bool:
        return "part" in self.category.lower()

    def heavy_days(self) -> list[str]:
        return [day for day, hours in self.day_hours.items() if hours > MAX_DAILY_HOURS]


@dataclass(frozen=True)
class MonthScope:
    single_month: bool
    current_month: bool
    business_days: int

    @property
    def expected_full_time(self) -> int:
        return self.business_days * FULL_TIME_DAILY_HOURS

    @property
    def expected_part_time(self) -> int:
        return self.business_days * PART_TIME_DAILY_HOURS


def _leading_int(text: str) -> int | None:
    match = LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def calendar_date(value: str) -> date | None:
    """Read ``YYYY-MM-DD`` leniently, rolling out-of-range days and months over.

    ``2024-02-30`` lands on 1 March, the way a calendar constructor with
    overflowing components behaves. Anything unreadable returns ``None``.
    """
    parts = value.split("-")
    if len(parts) != 3:
        return None
    numbers = [_leading_int(part) for part in parts]
    if any(number is None for number in numbers):
        return None
    year, month, day = numbers
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    try:
        return date(year, month, 1) + timedelta(days=day - 1)
    except (ValueError, OverflowError):
        return None


def is_weekend(value: str) -> bool:
    parsed = calendar_date(value)
    return parsed is not None and parsed.weekday() >= 5


def business_days_elapsed(today: date) -> int:
    """Weekdays from the first of ``today``'s month through ``today``, inclusive."""
    return sum(
        1
        for day in range(1, today.day + 1)
        if date(today.year, today.month, day).weekday() < 5
    )


def resolve_scope(selected_months: Sequence[str], today: date) -> MonthScope:
    single_month = len(selected_months) == 1
    current_month = False
    business_days = 0
    if single_month:
        year, _, month = selected_months[0].partition("-")
        if year.isdigit() and month.isdigit() and (int(year), int(month)) == (today.year, today.month):
            current_month = True
            business_days = business_days_elapsed(today)
    return MonthScope(single_month, current_month, business_days)


def aggregate_by_consultant(records: Iterable[WorkLog]) -> dict[str, ConsultantLoad]:
    loads: dict[str, ConsultantLoad] = {}
    for record in records:
        load = loads.get(record.consultant)
        if load is None:
            load = ConsultantLoad(record.consultant, record.consultant_type or UNDEFINED_TYPE)
            loads[record.consultant] = load
        load.hours += record.hours
        load.all_ids.append(record.id)
        if load.category == UNDEFINED_TYPE and record.consultant_type:
            load.category = record.consultant_type

        if is_weekend(record.date):
            load.weekend_hours += record.hours
            load.weekend_ids.append(record.id)

        load.day_hours[record.date] = load.day_hours.get(record.date, 0.0) + record.hours
        load.day_ids.setdefault(record.date, []).append(record.id)
    return loads


def _load_control_alerts(load: ConsultantLoad, scope: MonthScope) -> list[Alert]:
    alerts: list[Alert] = []
    if not scope.single_month:
        return alerts

    if scope.current_month:
        expected = scope.expected_full_time
        if load.is_full_time and load.hours < expected and expected - load.hours > SHORTFALL_TOLERANCE:
            alerts.append(
                Alert(
                    severity=SEVERITY_CRITICAL,
                    title="Behind on logging (month to date)",
                    consultant=load.name,
                    detail=f"Should have {expected}hs by today. Missing {expected - load.hours:.1f}hs.",
                    metric_label=f"{load.hours:.1f} / {expected}hs",
                    related_record_ids=list(load.all_ids),
                )
            )
        expected = scope.expected_part_time
        if load.is_part_time and load.hours < expected and expected - load.hours > SHORTFALL_TOLERANCE:
            alerts.append(
                Alert(
                    severity=SEVERITY_WARNING,
                    title="Part-time behind on logging",
                    consultant=load.name,
                    detail=f"Should have {expected}hs.",
                    metric_label=f"{load.hours:.1f} / {expected}hs",
                    related_record_ids=list(load.all_ids),
                )
            )
        return alerts

    if load.is_full_time and load.hours < CLOSING_FULL_TIME_MIN:
        alerts.append(
            Alert(
                severity=SEVERITY_CRITICAL,
                title="Low utilization (month close)",
                consultant=load.name,
                detail=f"Closed the month under {CLOSING_FULL_TIME_MIN:.0f}hs.",
                metric_label=f"{load.hours:.0f}hs",
                related_record_ids=list(load.all_ids),
            )
        )
    if load.is_part_time and load.hours > CLOSING_PART_TIME_MAX:
        alerts.append(
            Alert(
                severity=SEVERITY_WARNING,
                title="Excess hours (part time)",
                consultant=load.name,
                detail=f"Went over the {CLOSING_PART_TIME_MAX:.0f}hs limit.",
                metric_label=f"+{load.hours - CLOSING_PART_TIME_MAX:.0f}hs",
                related_record_ids=list(load.all_ids),
            )
        )
    return alerts


def _consultant_alerts(load: ConsultantLoad, scope: MonthScope) -> list[Alert]:
    alerts = _load_control_alerts(load, scope)

    if not scope.current_month and load.hours < MIN_ACTIVITY_HOURS:
        alerts.append(
            Alert(
                severity=SEVERITY_CRITICAL,
                title="No significant activity",
                consultant=load.name,
                detail=f"Fewer than {MIN_ACTIVITY_HOURS:.0f}hs logged.",
                metric_label=f"{load.hours:.0f}hs",
                related_record_ids=list(load.all_ids),
            )
        )

    if load.weekend_hours > 0:
        alerts.append(
            Alert(
                severity=SEVERITY_INFO,
                title="Weekend work",
                consultant=load.name,
                detail="Logged hours on a Saturday or Sunday.",
                metric_label=f"{load.weekend_hours:.0f}hs",
                related_record_ids=list(load.weekend_ids),
            )
        )

    heavy_days = load.heavy_days()
    if heavy_days:
        alerts.append(
            Alert(
                severity=SEVERITY_WARNING,
                title=f"Excessive workday (>{MAX_DAILY_HOURS:.0f}hs)",
                consultant=load.name,
                detail=f"Found {len(heavy_days)} days with more than {MAX_DAILY_HOURS:.0f} hours.",
                metric_label=f"{len(heavy_days)} days",
                related_record_ids=[record_id for day in heavy_days for record_id in load.day_ids[day]],
            )
        )
    return alerts


def evaluate_alerts(
    records: Sequence[WorkLog],
    selected_months: Sequence[str],
    today: date,
) -> list[Alert]:
    """Return alerts for ``records`` ordered critical, warning, info.

    ``selected_months`` are ``YYYY-MM`` tokens of the active month filter and
    ``today`` is the reference date for the month-to-date rules.
    """
    if not records:
        return []

    scope = resolve_scope(selected_months, today)
    alerts: list[Alert] = []
    for load in aggregate_by_consultant(records).values():
        alerts.extend(_consultant_alerts(load, scope))

    alerts.sort(key=lambda alert: SEVERITY_WEIGHT[alert.severity], reverse=True)
    logger.info(
        "Evaluated %d consultants: %d alerts (single month=%s, current month=%s, business days=%d)",
        len({record.consultant for record in records}),
        len(alerts),
        scope.single_month,
        scope.current_month,
        scope.business_days,
    )
    return alerts


def alert_counts(alerts: Iterable[Alert]) -> dict[str, int]:
    counts = Counter(alert.severity for alert in alerts)
    return {severity: counts.get(severity, 0) for severity in SEVERITY_WEIGHT}
