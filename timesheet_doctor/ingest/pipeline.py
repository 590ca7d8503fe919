"""
Ingestion entry points.

``ingest_records`` turns a whole CSV text blob into work-log records;
``ingest_team_config`` turns a team sheet into a name -> category mapping.
Both are total over their input: malformed rows degrade to defaults or are
skipped, and degenerate input yields an empty result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from timesheet_doctor.ingest.dedupe import FingerprintSet
from timesheet_doctor.ingest.headers import (
    TEAM_CATEGORY_FIELD,
    TEAM_NAME_FIELD,
    ColumnMap,
    find_header_index,
    normalize_header,
    resolve_columns,
)
from timesheet_doctor.ingest.normalization import normalise_row
from timesheet_doctor.ingest.tokenizer import (
    detect_config_separator,
    detect_data_separator,
    non_blank_lines,
    split_line,
)
from timesheet_doctor.models import WorkLog

logger = logging.getLogger(__name__)

BOM = "\ufeff"
MIN_DATA_LINES = 2


@dataclass
class IngestResult:
    records: list[WorkLog] = field(default_factory=list)
    separator: str | None = None
    column_map: ColumnMap | None = None
    data_rows: int = 0
    skipped_rows: int = 0
    duplicate_rows: int = 0

    def summary(self) -> dict:
        return {
            "separator": self.separator,
            "data_rows": self.data_rows,
            "records": len(self.records),
            "skipped_rows": self.skipped_rows,
            "duplicate_rows": self.duplicate_rows,
            "columns": self.column_map.describe() if self.column_map else {},
        }


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(BOM) else text


def parse_records(text: str) -> IngestResult:
    """Run the full pipeline and keep the bookkeeping alongside the records."""
    result = IngestResult()
    lines = non_blank_lines(_strip_bom(text or ""))
    if len(lines) < MIN_DATA_LINES:
        logger.info("No data rows found (%d non-blank lines)", len(lines))
        return result

    header_line = lines[0]
    separator = detect_data_separator(header_line)
    column_map = resolve_columns(split_line(header_line, separator))
    result.separator = separator
    result.column_map = column_map

    header_text = header_line.strip()
    seen = FingerprintSet()
    for line_number, line in enumerate(lines[1:], start=1):
        row_text = line.strip()
        if _strip_bom(row_text) == header_text:
            logger.debug("Ignored repeated header at row %d", line_number)
            continue
        result.data_rows += 1
        normalised = normalise_row(split_line(row_text, separator), column_map, row_text, line_number)
        if normalised is None:
            result.skipped_rows += 1
            logger.debug("Skipped row %d: fewer than 2 fields", line_number)
            continue
        record, fingerprint = normalised
        if not seen.admit(fingerprint):
            logger.debug("Dropped duplicate row %d (%s)", line_number, fingerprint)
            continue
        result.records.append(record)

    result.duplicate_rows = seen.dropped
    logger.info(
        "Ingested %d records from %d rows (%d skipped, %d duplicates, separator %r)",
        len(result.records),
        result.data_rows,
        result.skipped_rows,
        result.duplicate_rows,
        separator,
    )
    return result


def ingest_records(text: str) -> list[WorkLog]:
    return parse_records(text).records


def _clean_config_value(value: str) -> str:
    value = value.strip()
    for quote in ('"', "'"):
        if value.startswith(quote):
            value = value[1:]
        if value.endswith(quote):
            value = value[:-1]
    return value.strip()


def ingest_team_config(text: str) -> dict[str, str]:
    """Read a two-column team sheet into ``{consultant name: category}``.

    Rows missing either value are skipped; a repeated name keeps its last
    category.
    """
    lines = non_blank_lines(_strip_bom(text or ""))
    if not lines:
        return {}

    separator = detect_config_separator(lines)
    headers = [normalize_header(token) for token in split_line(lines[0], separator)]
    name_idx = find_header_index(headers, TEAM_NAME_FIELD)
    category_idx = find_header_index(headers, TEAM_CATEGORY_FIELD)
    if name_idx is None:
        name_idx = TEAM_NAME_FIELD.fallback
    if category_idx is None:
        category_idx = TEAM_CATEGORY_FIELD.fallback

    config: dict[str, str] = {}
    needed = max(name_idx, category_idx)
    for line in lines[1:]:
        cols = split_line(line, separator)
        if len(cols) <= needed:
            continue
        name = _clean_config_value(cols[name_idx])
        category = _clean_config_value(cols[category_idx])
        if name and category:
            config[name] = category
    logger.info("Loaded %d team configuration entries", len(config))
    return config
