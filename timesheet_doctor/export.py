from __future__ import annotations

import io
from pathlib import Path
from typing import Sequence

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from timesheet_doctor.ingest.normalization import format_number
from timesheet_doctor.models import SEVERITY_CRITICAL, SEVERITY_WARNING, Alert, WorkLog

EXPORT_HEADERS = [
    "Date",
    "Consultant",
    "Record Type",
    "Client",
    "Client Ticket",
    "Internal Ticket",
    "Task",
    "Description",
    "Hours",
    "Consultant Type",
]
ALERT_HEADERS = ["Severity", "Consultant", "Title", "Detail", "Metric", "Records"]
BOM = "\ufeff"

FILL_CRITICAL = PatternFill("solid", fgColor="F8CBAD")
FILL_WARNING = PatternFill("solid", fgColor="FFF2CC")


def _quote(value: object) -> str:
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def _export_row(record: WorkLog) -> list[str]:
    return [
        record.date,
        record.consultant,
        record.record_type,
        record.client,
        record.ticket_id,
        record.internal_ticket_id,
        record.project,
        record.description,
        format_number(record.hours).replace(".", ",", 1),
        record.consultant_type,
    ]


def records_to_csv(records: Sequence[WorkLog]) -> str:
    """Semicolon CSV for spreadsheet tools in comma-decimal locales.

    Every field is quoted, hours use a decimal comma and the text starts
    with a UTF-8 byte order mark so Excel picks the right encoding.
    """
    lines = [";".join(EXPORT_HEADERS)]
    lines.extend(";".join(_quote(value) for value in _export_row(record)) for record in records)
    return BOM + "\n".join(lines)


def _cell_value(value: object) -> object:
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _append(ws, row: list) -> None:
    ws.append([_cell_value(value) for value in row])


def _style_sheet(ws, col_widths: list[int], header_color: str) -> None:
    fill = PatternFill("solid", fgColor=header_color)
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=False)
    ws.freeze_panes = "A2"
    for i, width in enumerate(col_widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    widths = [max(min_width, min(max_width, len(str(v)) + 2)) for v in rows[0]]
    for row in rows[1 : sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def build_workbook(records: Sequence[WorkLog], alerts: Sequence[Alert] = ()) -> openpyxl.Workbook:
    wb = openpyxl.Workbook()

    ws1 = wb.active
    ws1.title = "Work Logs"
    rows_for_width: list[list] = [EXPORT_HEADERS]
    ws1.append(EXPORT_HEADERS)
    for record in records:
        row_out = [
            record.date,
            record.consultant,
            record.record_type,
            record.client,
            record.ticket_id,
            record.internal_ticket_id,
            record.project,
            record.description,
            record.hours,
            record.consultant_type,
        ]
        _append(ws1, row_out)
        rows_for_width.append(row_out)
    _style_sheet(ws1, _infer_col_widths(rows_for_width), "1565C0")
    for cell in ws1["H"][1:]:
        cell.alignment = Alignment(wrap_text=True, vertical="top")

    ws2 = wb.create_sheet("Alerts")
    alert_rows_for_width: list[list] = [ALERT_HEADERS]
    ws2.append(ALERT_HEADERS)
    for alert in alerts:
        row_out = [
            alert.severity,
            alert.consultant,
            alert.title,
            alert.detail,
            alert.metric_label,
            len(alert.related_record_ids),
        ]
        _append(ws2, row_out)
        alert_rows_for_width.append(row_out)
        if alert.severity in (SEVERITY_CRITICAL, SEVERITY_WARNING):
            fill = FILL_CRITICAL if alert.severity == SEVERITY_CRITICAL else FILL_WARNING
            ws2.cell(ws2.max_row, 1).fill = fill
    _style_sheet(ws2, _infer_col_widths(alert_rows_for_width), "E53935")
    return wb


def write_workbook(records: Sequence[WorkLog], alerts: Sequence[Alert], output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    build_workbook(records, alerts).save(output_path)


def workbook_bytes(records: Sequence[WorkLog], alerts: Sequence[Alert] = ()) -> bytes:
    buffer = io.BytesIO()
    build_workbook(records, alerts).save(buffer)
    return buffer.getvalue()
