from __future__ import annotations

import contextlib
import io
import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import openpyxl

from timesheet_doctor import __version__, cli

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "timesheet_doctor.cli"]
SAMPLE = "sample-data/timesheet_mess.csv"
TEAM = "sample-data/team_config.csv"
CLEARED_ENV = (
    "GEMINI_API_KEY",
    "TIMESHEET_DOCTOR_CONFIG",
    "TIMESHEET_DOCTOR_DATA_URL",
    "TIMESHEET_DOCTOR_TEAM_URL",
    "TIMESHEET_DOCTOR_LOG_LEVEL",
)


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = {key: value for key, value in os.environ.items() if key not in CLEARED_ENV}
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class TimesheetDoctorCliTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.home = Path(self.tmp.name)
        self.env = {"HOME": str(self.home)}

    def tearDown(self):
        self.tmp.cleanup()

    def cli(self, *args: str) -> subprocess.CompletedProcess[str]:
        return run_cli(*args, env=self.env)

    def test_version(self):
        proc = self.cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), __version__)

    def test_missing_command_is_a_usage_error(self):
        proc = self.cli()
        self.assertEqual(proc.returncode, 1)

    def test_ingest_sample_json(self):
        proc = self.cli("ingest", SAMPLE, "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["contract"]["name"], "timesheet_doctor.ingest_summary")
        summary = payload["summary"]
        self.assertEqual(summary["separator"], ",")
        self.assertEqual(summary["data_rows"], 15)
        self.assertEqual(summary["records"], 13)
        self.assertEqual(summary["duplicate_rows"], 1)
        self.assertEqual(summary["skipped_rows"], 1)
        self.assertEqual(summary["excluded_records"], 0)
        self.assertEqual([item["value"] for item in payload["months"]], ["2024-04", "2024-03"])

    def test_ingest_with_team_sheet_excludes_external_consultants(self):
        proc = self.cli("ingest", SAMPLE, "--team-config", TEAM, "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["summary"]["excluded_records"], 1)
        self.assertEqual(payload["run_summary"]["metrics"]["records"], 12)

    def test_ingest_human_summary(self):
        proc = self.cli("ingest", SAMPLE)
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertIn("Records: 13", proc.stderr)
        self.assertIn("Duplicates dropped: 1", proc.stderr)

    def test_ingest_writes_csv_and_refuses_to_overwrite(self):
        out = self.home / "normalized.csv"
        proc = self.cli("ingest", SAMPLE, "-o", str(out))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        text = out.read_text(encoding="utf-8")
        self.assertTrue(text.startswith("\ufeffDate;Consultant;"))
        self.assertIn('"7,5"', text)

        proc = self.cli("ingest", SAMPLE, "-o", str(out))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)

    def test_ingest_rejects_unknown_output_type(self):
        proc = self.cli("ingest", SAMPLE, "-o", str(self.home / "out.txt"))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Unsupported output type", proc.stderr)

    def test_ingest_missing_file_returns_exit_2(self):
        proc = self.cli("ingest", "sample-data/does_not_exist.csv")
        self.assertEqual(proc.returncode, 2)
        self.assertIn("File not found", proc.stderr)

    def test_ingest_header_only_file_returns_exit_2(self):
        path = self.home / "empty.csv"
        path.write_text("Fecha;Cliente;Horas;Consultor\n", encoding="utf-8")
        proc = self.cli("ingest", str(path))
        self.assertEqual(proc.returncode, 2)
        self.assertIn("No usable rows", proc.stderr)

    def test_ingest_without_input_or_config(self):
        proc = self.cli("ingest")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("No input given", proc.stderr)

    def test_alerts_for_closed_month_return_exit_3(self):
        proc = self.cli(
            "alerts", SAMPLE,
            "--team-config", TEAM,
            "--month", "2024-03",
            "--today", "2024-04-18",
            "--json",
        )
        self.assertEqual(proc.returncode, 3, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["counts"], {"critical": 5, "warning": 1, "info": 1})
        severities = [alert["severity"] for alert in payload["alerts"]]
        self.assertEqual(severities, sorted(severities, key=["critical", "warning", "info"].index))
        weekend = [alert for alert in payload["alerts"] if alert["title"] == "Weekend work"]
        self.assertEqual(len(weekend), 1)
        self.assertEqual(weekend[0]["consultant"], "Bruno Díaz")
        self.assertEqual(len(weekend[0]["related_record_ids"]), 1)

    def test_alerts_write_workbook(self):
        out = self.home / "alerts.xlsx"
        proc = self.cli(
            "alerts", SAMPLE, "--team-config", TEAM,
            "--month", "2024-03", "--today", "2024-04-18",
            "-o", str(out), "-q",
        )
        self.assertEqual(proc.returncode, 3, proc.stderr)
        wb = openpyxl.load_workbook(out)
        self.assertEqual(wb["Alerts"].max_row, 8)

    def test_alerts_reject_csv_output_and_bad_month(self):
        proc = self.cli("alerts", SAMPLE, "-o", str(self.home / "alerts.csv"))
        self.assertEqual(proc.returncode, 1)
        proc = self.cli("alerts", SAMPLE, "--month", "03-2024")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("expected YYYY-MM", proc.stderr)
        proc = self.cli("alerts", SAMPLE, "--today", "yesterday")
        self.assertEqual(proc.returncode, 1)

    def test_report_json(self):
        proc = self.cli("report", SAMPLE, "--team-config", TEAM, "--today", "2024-04-18", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["records_in_view"], 11)
        kpi = payload["stats"]["kpi"]
        self.assertAlmostEqual(kpi["total_hours"], 60.5)
        self.assertEqual(kpi["top_client"], "Acme")
        self.assertEqual(kpi["top_consultant"], "Ana Pérez")
        self.assertEqual(kpi["bottom_consultant"], "Bruno Díaz")

    def test_report_filters_by_client(self):
        proc = self.cli("report", SAMPLE, "--client", "Globex", "--today", "2024-04-18", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["records_in_view"], 3)
        self.assertEqual(payload["stats"]["charts"]["active_clients"], ["Globex"])

    def test_team_with_override(self):
        proc = self.cli("team", TEAM, "--override", "Diego Ruiz=Full Time", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        entries = {item["name"]: item for item in payload["entries"]}
        self.assertEqual(entries["Diego Ruiz"], {"name": "Diego Ruiz", "category": "Full Time", "provenance": "manual"})
        self.assertEqual(entries["Ana Pérez"]["provenance"], "sheet")
        self.assertEqual(payload["categories"], ["Baja", "Full Time", "Part Time"])

    def test_team_rejects_malformed_override(self):
        proc = self.cli("team", TEAM, "--override", "Diego Ruiz")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("NAME=CATEGORY", proc.stderr)

    def test_narrative_without_api_key_returns_exit_4(self):
        proc = self.cli("narrative", SAMPLE)
        self.assertEqual(proc.returncode, 4)
        self.assertIn("API key is missing", proc.stderr)

    def test_config_init_then_refuse_overwrite(self):
        path = self.home / "settings.json"
        proc = self.cli("config", "init", "--path", str(path))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        settings = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(settings["excluded_categories"], ["Externo", "SSFF"])

        proc = self.cli("config", "init", "--path", str(path))
        self.assertEqual(proc.returncode, 1)
        self.assertIn("Refusing to overwrite", proc.stderr)

    def test_settings_file_supplies_the_source(self):
        path = self.home / "settings.json"
        path.write_text(json.dumps({"data_url": str(ROOT / SAMPLE)}), encoding="utf-8")
        proc = self.cli("ingest", "--config", str(path), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["summary"]["records"], 13)

    def test_invalid_settings_file_returns_exit_1(self):
        path = self.home / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        proc = self.cli("ingest", SAMPLE, "--config", str(path))
        self.assertEqual(proc.returncode, 1)


class NarrativeOutputTests(unittest.TestCase):
    ANALYSIS = {"summary": "Stable month.", "risks": ["Client concentration"], "recommendations": ["Hire"]}

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.config = Path(self.tmp.name) / "settings.json"
        self.config.write_text("{}", encoding="utf-8")
        env = mock.patch.dict(os.environ, {}, clear=True)
        env.start()
        self.addCleanup(env.stop)
        analysis = mock.patch.object(cli, "request_analysis", return_value=self.ANALYSIS)
        analysis.start()
        self.addCleanup(analysis.stop)

    def run_main(self, *args: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = cli.main(["narrative", str(ROOT / SAMPLE), "--config", str(self.config), *args])
        return code, stdout.getvalue(), stderr.getvalue()

    def test_human_output_goes_to_stderr(self):
        code, stdout, stderr = self.run_main()
        self.assertEqual(code, 0, stderr)
        self.assertEqual(stdout, "")
        self.assertIn("Stable month.", stderr)
        self.assertIn("- Client concentration", stderr)

    def test_quiet_silences_human_output(self):
        code, stdout, stderr = self.run_main("-q")
        self.assertEqual(code, 0, stderr)
        self.assertEqual(stdout, "")
        self.assertNotIn("Stable month.", stderr)

    def test_json_goes_to_stdout(self):
        code, stdout, _ = self.run_main("--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout), self.ANALYSIS)


if __name__ == "__main__":
    unittest.main()
