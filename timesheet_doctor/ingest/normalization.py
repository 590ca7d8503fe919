from __future__ import annotations

import math
import re
import unicodedata
import uuid

from timesheet_doctor.ingest.headers import ColumnMap
from timesheet_doctor.models import FULL_TIME, NO_TASK, PART_TIME, UNDEFINED_TYPE, UNKNOWN, WorkLog

DIGITS_RE = re.compile(r"^\d+$")
LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
LEADING_FLOAT_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
WHITESPACE_RE = re.compile(r"\s")
VOWEL_RE = re.compile(r"[aeiou]")
NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
FUZZY_LENGTH = 50
MIN_ROW_TOKENS = 2

FULL_TIME_MARKERS = ("full time", "fulltime")
PART_TIME_MARKERS = ("part time", "parttime")


def repair_split_decimals(cols: list[str], expected_width: int) -> list[str]:
    """Merge adjacent all-digit tokens back into one decimal value.

    A comma-separated export of a comma-decimal sheet turns ``7,5`` into two
    fields. While the row is wider than the header, every pair of adjacent
    digit-only tokens is joined as ``int.frac``.
    """
    if len(cols) <= expected_width:
        return cols
    repaired = list(cols)
    k = 0
    while k < len(repaired) - 1:
        left = repaired[k].strip()
        right = repaired[k + 1].strip()
        if DIGITS_RE.match(left) and DIGITS_RE.match(right):
            repaired[k:k + 2] = [f"{left}.{right}"]
            if len(repaired) == expected_width:
                break
            continue
        k += 1
    return repaired


def strip_wrapping_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def column_value(cols: list[str], column_map: ColumnMap, name: str) -> str:
    idx = column_map.index_for(name)
    if idx is None or idx >= len(cols):
        return ""
    return strip_wrapping_quotes(cols[idx].strip())


def _leading_int(text: str) -> int | None:
    match = LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else None


def normalise_date(value: str) -> str:
    """Reshape day-first or year-first dates to ``YYYY-MM-DD``.

    Time-of-day suffixes are dropped. The four-digit part decides which end
    holds the year; anything else is returned trimmed but unchanged.
    """
    if not value:
        return ""
    clean = value.strip()
    if " " in clean:
        clean = clean.split(" ")[0]
    if "T" in clean:
        clean = clean.split("T")[0]

    if "/" in clean:
        separator = "/"
    elif "-" in clean:
        separator = "-"
    else:
        return clean

    parts = clean.split(separator)
    if len(parts) != 3:
        return clean
    numbers = [_leading_int(part) for part in parts]
    if any(number is None for number in numbers):
        return clean
    first, middle, last = numbers
    if first > 1000:
        return f"{first}-{middle:02d}-{last:02d}"
    if last > 1000:
        return f"{last}-{middle:02d}-{first:02d}"
    return clean


def parse_hours_value(value: str) -> float:
    """Parse the numeric prefix after turning the first comma into a point.

    Returns NaN when no number can be read; callers decide the coercion.
    """
    match = LEADING_FLOAT_RE.match(value.replace(",", ".", 1))
    if not match:
        return math.nan
    return float(match.group(1))


def coerce_hours(raw: float) -> float:
    if math.isnan(raw) or raw < 0:
        return 0.0
    return raw


def format_number(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == int(value):
        return str(int(value))
    return repr(value)


def infer_consultant_type(declared: str, raw_line: str) -> str:
    if declared:
        return declared
    lowered = raw_line.lower()
    if any(marker in lowered for marker in FULL_TIME_MARKERS):
        return FULL_TIME
    if any(marker in lowered for marker in PART_TIME_MARKERS):
        return PART_TIME
    return UNDEFINED_TYPE


def fuzzy_key(value: str, length: int = FUZZY_LENGTH) -> str:
    """Accent-, vowel- and punctuation-free prefix used for near-duplicate matching."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.lower())
    text = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    text = VOWEL_RE.sub("", text)
    text = NON_ALNUM_RE.sub("", text)
    return text[:length]


def record_fingerprint(record: WorkLog, raw_hours: float) -> str:
    parts = [
        record.date,
        format_number(raw_hours),
        fuzzy_key(record.consultant),
        fuzzy_key(record.client),
        fuzzy_key(record.record_type),
        fuzzy_key(record.ticket_id),
        fuzzy_key(record.internal_ticket_id),
    ]
    return WHITESPACE_RE.sub("", "|".join(parts))


def new_record_id(line_number: int) -> str:
    return f"{line_number}-{uuid.uuid4().hex[:9]}"


def normalise_row(
    cols: list[str],
    column_map: ColumnMap,
    raw_line: str,
    line_number: int,
) -> tuple[WorkLog, str] | None:
    """Build one record and its fingerprint, or ``None`` for unusable rows."""
    cols = repair_split_decimals(cols, column_map.width)
    if len(cols) < MIN_ROW_TOKENS:
        return None

    raw_hours = parse_hours_value(column_value(cols, column_map, "hours"))
    record = WorkLog(
        id=new_record_id(line_number),
        date=normalise_date(column_value(cols, column_map, "date")),
        consultant=column_value(cols, column_map, "consultant") or UNKNOWN,
        client=column_value(cols, column_map, "client") or UNKNOWN,
        project=column_value(cols, column_map, "project") or NO_TASK,
        hours=coerce_hours(raw_hours),
        description=column_value(cols, column_map, "description"),
        record_type=column_value(cols, column_map, "record_type"),
        ticket_id=column_value(cols, column_map, "ticket_id"),
        internal_ticket_id=column_value(cols, column_map, "internal_ticket_id"),
        department=column_value(cols, column_map, "department"),
        consultant_type=infer_consultant_type(
            column_value(cols, column_map, "consultant_type"), raw_line
        ),
    )
    return record, record_fingerprint(record, raw_hours)
