from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import openpyxl

from timesheet_doctor.export import (
    ALERT_HEADERS,
    EXPORT_HEADERS,
    build_workbook,
    records_to_csv,
    workbook_bytes,
    write_workbook,
)
from timesheet_doctor.ingest import ingest_records
from timesheet_doctor.models import Alert, WorkLog

RECORDS = [
    WorkLog(
        id="1-a",
        date="2024-03-04",
        consultant="Ana Pérez",
        client="Acme",
        project='Soporte "urgente"',
        hours=7.5,
        record_type="Proyecto",
        ticket_id="ACM-11",
        internal_ticket_id="INT-2",
        consultant_type="Full Time",
    ),
    WorkLog(id="2-b", date="2024-03-05", consultant="Bruno", client="Globex", hours=8.0),
]
ALERTS = [
    Alert("critical", "No significant activity", "Bruno", "Fewer than 20hs logged.", "8hs", ["2-b"]),
    Alert("info", "Weekend work", "Ana Pérez", "Logged hours on a Saturday or Sunday.", "3hs", ["1-a"]),
]


class CsvExportTests(unittest.TestCase):
    def test_layout(self):
        text = records_to_csv(RECORDS)
        self.assertTrue(text.startswith("\ufeff"))
        lines = text[1:].split("\n")
        self.assertEqual(lines[0], ";".join(EXPORT_HEADERS))
        self.assertEqual(
            lines[1],
            '"2024-03-04";"Ana Pérez";"Proyecto";"Acme";"ACM-11";"INT-2";'
            '"Soporte ""urgente""";"";"7,5";"Full Time"',
        )
        self.assertTrue(lines[2].endswith('"8";"Undefined"'))
        self.assertEqual(len(lines), 3)

    def test_empty_export_has_only_the_header(self):
        self.assertEqual(records_to_csv([]), "\ufeff" + ";".join(EXPORT_HEADERS))

    def test_export_reads_back_through_ingestion(self):
        reread = ingest_records(records_to_csv(RECORDS))
        without_ids = [{k: v for k, v in record.to_dict().items() if k != "id"} for record in reread]
        expected = [{k: v for k, v in record.to_dict().items() if k != "id"} for record in RECORDS]
        self.assertEqual(without_ids, expected)
        self.assertEqual(reread[0].ticket_id, "ACM-11")
        self.assertEqual(reread[0].project, 'Soporte "urgente"')


class WorkbookExportTests(unittest.TestCase):
    def test_sheets_and_values(self):
        wb = build_workbook(RECORDS, ALERTS)
        self.assertEqual(wb.sheetnames, ["Work Logs", "Alerts"])
        logs = wb["Work Logs"]
        self.assertEqual([cell.value for cell in logs[1]], EXPORT_HEADERS)
        self.assertEqual(logs.cell(2, 9).value, 7.5)
        self.assertEqual(logs.max_row, 3)
        self.assertEqual(logs.freeze_panes, "A2")

        alerts = wb["Alerts"]
        self.assertEqual([cell.value for cell in alerts[1]], ALERT_HEADERS)
        self.assertEqual(alerts.cell(2, 1).value, "critical")
        self.assertEqual(alerts.cell(2, 6).value, 1)

    def test_write_and_reload(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "report.xlsx"
            write_workbook(RECORDS, ALERTS, path)
            wb = openpyxl.load_workbook(path)
            self.assertEqual(wb["Work Logs"].cell(3, 2).value, "Bruno")

    def test_control_characters_are_dropped_from_cells(self):
        record = WorkLog(id="3-c", date="2024-03-06", consultant="Ana\x07", client="Acme", description="line\x0bbreak")
        alert = Alert("info", "Weekend work", "Ana\x07", "detail\x1f", "2hs", ["3-c"])
        wb = build_workbook([record], [alert])
        self.assertEqual(wb["Work Logs"].cell(2, 8).value, "linebreak")
        self.assertEqual(wb["Work Logs"].cell(2, 2).value, "Ana")
        self.assertEqual(wb["Alerts"].cell(2, 4).value, "detail")
        self.assertTrue(workbook_bytes([record], [alert]).startswith(b"PK"))

    def test_workbook_bytes_is_a_zip(self):
        self.assertTrue(workbook_bytes(RECORDS).startswith(b"PK"))


if __name__ == "__main__":
    unittest.main()
