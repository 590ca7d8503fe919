from __future__ import annotations

import argparse
import json
import re
import sys
from datetime import date
from pathlib import Path
from typing import Any

from timesheet_doctor import __version__ as TOOL_VERSION
from timesheet_doctor.alerts import alert_counts, evaluate_alerts
from timesheet_doctor.contracts import build_contract, build_run_summary
from timesheet_doctor.dashboard import RecordFilter, apply_filters, available_months, compute_stats
from timesheet_doctor.export import records_to_csv, write_workbook
from timesheet_doctor.ingest import IngestResult, ingest_team_config, parse_records
from timesheet_doctor.loader import SourceError, load_source
from timesheet_doctor.logging_utils import configure_logging
from timesheet_doctor.models import SEVERITY_CRITICAL, WorkLog
from timesheet_doctor.narrative import NarrativeError, request_analysis
from timesheet_doctor.settings import (
    DEFAULT_CONFIG_PATH,
    Settings,
    SettingsError,
    load_settings,
    save_settings,
)
from timesheet_doctor.team_config import TeamConfig, parse_override_args

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_CRITICAL_ALERTS = 3
EXIT_NARRATIVE_FAILED = 4

MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
EXPORT_SUFFIXES = {".json", ".csv", ".xlsx"}


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class TimesheetDoctorArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def safe_output_path(raw: str | None) -> Path | None:
    if not raw:
        return None
    path = Path(raw)
    if path.suffix.lower() not in EXPORT_SUFFIXES:
        raise CliError(
            f"Unsupported output type '{path.suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(EXPORT_SUFFIXES))}",
            EXIT_COMMAND_ERROR,
        )
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def classify_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, NarrativeError):
        return EXIT_NARRATIVE_FAILED
    if isinstance(exc, SettingsError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (SourceError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


# ══════════════════════════════════════════════════════════════════════════
# SHARED LOADING
# ══════════════════════════════════════════════════════════════════════════

def setup(args: argparse.Namespace) -> Settings:
    settings = load_settings(getattr(args, "config", None))
    level = "DEBUG" if getattr(args, "verbose", False) else settings.log_level
    configure_logging(level)
    return settings


def resolve_source(args: argparse.Namespace, settings: Settings) -> str:
    source = getattr(args, "input", None) or settings.data_url
    if not source:
        raise CliError(
            "No input given. Pass a CSV path or URL, or set data_url in the config file.",
            EXIT_COMMAND_ERROR,
        )
    return source


def build_team_config(args: argparse.Namespace, settings: Settings) -> TeamConfig:
    team = TeamConfig()
    team_source = getattr(args, "team_config", None) or settings.team_config_url
    if team_source:
        team.load_base(ingest_team_config(load_source(team_source, timeout=settings.request_timeout)))
    for name, category in settings.team_overrides.items():
        team.set_override(name, category)
    try:
        cli_overrides = parse_override_args(getattr(args, "override", None) or [])
    except ValueError as exc:
        raise CliError(str(exc), EXIT_COMMAND_ERROR) from exc
    for name, category in cli_overrides.items():
        team.set_override(name, category)
    return team


def load_records(
    args: argparse.Namespace,
    settings: Settings,
) -> tuple[str, IngestResult, list[WorkLog]]:
    """Read the source, ingest it and apply the team configuration."""
    source = resolve_source(args, settings)
    result = parse_records(load_source(source, timeout=settings.request_timeout))
    if not result.records:
        raise CliError(f"No usable rows found in {source}", EXIT_PARSE_FAILED)
    team = build_team_config(args, settings)
    records = team.apply(result.records, settings.excluded_categories)
    return source, result, records


def parse_months(values: list[str] | None) -> list[str]:
    months = list(values or [])
    for month in months:
        if not MONTH_RE.match(month):
            raise CliError(f"Invalid --month {month!r}; expected YYYY-MM", EXIT_COMMAND_ERROR)
    return months


def parse_today(value: str | None) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise CliError(f"Invalid --today {value!r}; expected YYYY-MM-DD", EXIT_COMMAND_ERROR) from exc


def record_filter_from_args(args: argparse.Namespace) -> RecordFilter:
    return RecordFilter(
        months=parse_months(getattr(args, "month", None)),
        clients=list(getattr(args, "client", None) or []),
        consultants=list(getattr(args, "consultant", None) or []),
    )


def write_output(
    path: Path,
    payload: dict[str, Any],
    records: list[WorkLog],
    alerts: list | None = None,
) -> None:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        write_text(path, records_to_csv(records))
    elif suffix == ".xlsx":
        write_workbook(records, alerts or [], path)
    else:
        write_json(path, {**payload, "records": [record.to_dict() for record in records]})


# ══════════════════════════════════════════════════════════════════════════
# RENDERING
# ══════════════════════════════════════════════════════════════════════════

def render_ingest_text(payload: dict[str, Any]) -> str:
    summary = payload["summary"]
    lines = [
        "timesheet-doctor ingest",
        f"Source: {payload['source']}",
        f"Separator: {summary['separator']!r}",
        f"Data rows: {summary['data_rows']}",
        f"Records: {summary['records']}",
        f"Skipped rows: {summary['skipped_rows']}",
        f"Duplicates dropped: {summary['duplicate_rows']}",
        f"Excluded by category: {summary['excluded_records']}",
        f"Months: {', '.join(item['value'] for item in payload['months']) or '[none]'}",
    ]
    absent = [name for name, info in summary["columns"].items() if info["source"] == "absent"]
    if absent:
        lines.append(f"Columns not found: {', '.join(absent)}")
    return "\n".join(lines) + "\n"


def render_alerts_text(payload: dict[str, Any]) -> str:
    counts = payload["counts"]
    lines = [
        "timesheet-doctor alerts",
        f"Source: {payload['source']}",
        f"Months: {', '.join(payload['selected_months']) or '[all]'}",
        f"Reference date: {payload['today']}",
        f"Critical: {counts['critical']}  Warning: {counts['warning']}  Info: {counts['info']}",
    ]
    for alert in payload["alerts"]:
        lines.append(
            f"- [{alert['severity']}] {alert['consultant']}: {alert['title']} "
            f"({alert['metric_label']}) {alert['detail']}"
        )
    return "\n".join(lines) + "\n"


def render_report_text(payload: dict[str, Any]) -> str:
    kpi = payload["stats"]["kpi"]
    lines = [
        "timesheet-doctor report",
        f"Source: {payload['source']}",
        f"Records in view: {payload['records_in_view']}",
        f"Total hours: {kpi['total_hours']:.1f}",
        f"Consultants: {kpi['total_consultants']}",
        f"Clients: {kpi['total_clients']}",
        f"Top client: {kpi['top_client']} ({kpi['top_client_hours']:.1f} hs)",
        f"Top consultant: {kpi['top_consultant']} ({kpi['top_consultant_hours']:.1f} hs)",
        f"Lowest load: {kpi['bottom_consultant']} ({kpi['bottom_consultant_hours']:.1f} hs)",
    ]
    by_client = payload["stats"]["charts"]["by_client"]
    if by_client:
        lines.append("Hours by client:")
        lines.extend(f"- {item['name']}: {item['value']:.1f}" for item in by_client)
    counts = payload["alert_counts"]
    lines.append(f"Alerts: {counts['critical']} critical, {counts['warning']} warning, {counts['info']} info")
    return "\n".join(lines) + "\n"


# ══════════════════════════════════════════════════════════════════════════
# PARSER
# ══════════════════════════════════════════════════════════════════════════

def add_common_arguments(parser: argparse.ArgumentParser, *, input_required: bool = False) -> None:
    if input_required:
        parser.add_argument("input", help="CSV path or published sheet URL")
    else:
        parser.add_argument("input", nargs="?", default=None, help="CSV path or published sheet URL (default: data_url from config)")
    parser.add_argument("--team-config", dest="team_config", help="Team sheet path or URL (consultant -> category)")
    parser.add_argument("--override", action="append", metavar="NAME=CATEGORY", help="Manual category override; repeatable")
    parser.add_argument("--config", help="Settings JSON path")
    parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--month", action="append", metavar="YYYY-MM", help="Restrict to a month; repeatable")
    parser.add_argument("--client", action="append", help="Restrict to a client; repeatable")
    parser.add_argument("--consultant", action="append", help="Restrict to a consultant; repeatable")


def build_parser() -> argparse.ArgumentParser:
    parser = TimesheetDoctorArgumentParser(
        prog="timesheet-doctor",
        description="Timesheet CSV normalization and utilization alerts.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Normalize a timesheet export and summarize it.")
    add_common_arguments(ingest)
    ingest.add_argument("-o", "--out", dest="output", help="Write records to .csv, .xlsx or .json")

    alerts = subparsers.add_parser("alerts", help="Evaluate utilization alerts.")
    add_common_arguments(alerts)
    add_filter_arguments(alerts)
    alerts.add_argument("--today", help="Reference date YYYY-MM-DD (default: today)")
    alerts.add_argument("-o", "--out", dest="output", help="Write alerts to .json or .xlsx")

    report = subparsers.add_parser("report", help="KPIs, aggregates and alerts for a filtered view.")
    add_common_arguments(report)
    add_filter_arguments(report)
    report.add_argument("--today", help="Reference date YYYY-MM-DD (default: today)")
    report.add_argument("-o", "--out", dest="output", help="Write the report to .json, .csv or .xlsx")

    team = subparsers.add_parser("team", help="Show the resolved consultant categories.")
    team.add_argument("source", nargs="?", default=None, help="Team sheet path or URL (default: team_config_url from config)")
    team.add_argument("--override", action="append", metavar="NAME=CATEGORY", help="Manual category override; repeatable")
    team.add_argument("--config", help="Settings JSON path")
    team.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    team.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    team.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    narrative = subparsers.add_parser("narrative", help="Ask the text-generation service for an executive summary.")
    add_common_arguments(narrative)
    add_filter_arguments(narrative)

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter settings file.")
    config_init.add_argument("--path", default=str(DEFAULT_CONFIG_PATH), help="Settings output path")

    subparsers.add_parser("version", help="Print version")
    return parser


# ══════════════════════════════════════════════════════════════════════════
# COMMANDS
# ══════════════════════════════════════════════════════════════════════════

def run_ingest(args: argparse.Namespace) -> int:
    try:
        settings = setup(args)
        output_path = safe_output_path(args.output)
        source, result, records = load_records(args, settings)
        summary = result.summary()
        summary["excluded_records"] = len(result.records) - len(records)
        contract = build_contract("timesheet_doctor.ingest_summary")
        payload = {
            "contract": contract,
            "schema_version": contract["version"],
            "tool_version": TOOL_VERSION,
            "source": source,
            "summary": summary,
            "months": available_months(records),
            "run_summary": build_run_summary(
                command="ingest",
                source=source,
                output_path=str(output_path) if output_path else None,
                metrics={
                    "records": len(records),
                    "duplicates_dropped": result.duplicate_rows,
                    "rows_skipped": result.skipped_rows,
                },
            ),
        }
        if output_path:
            write_output(output_path, payload, records)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_ingest_text(payload).rstrip(), quiet=args.quiet)
            if output_path:
                emit_human(f"Records written: {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_alerts(args: argparse.Namespace) -> int:
    try:
        settings = setup(args)
        output_path = safe_output_path(args.output)
        if output_path and output_path.suffix.lower() == ".csv":
            raise CliError("Alerts can be written to .json or .xlsx only.", EXIT_COMMAND_ERROR)
        record_filter = record_filter_from_args(args)
        today = parse_today(args.today)
        source, _, records = load_records(args, settings)
        visible = apply_filters(records, record_filter)
        alerts = evaluate_alerts(visible, record_filter.months, today)
        counts = alert_counts(alerts)
        contract = build_contract("timesheet_doctor.alerts")
        payload = {
            "contract": contract,
            "schema_version": contract["version"],
            "tool_version": TOOL_VERSION,
            "source": source,
            "selected_months": record_filter.months,
            "today": today.isoformat(),
            "counts": counts,
            "alerts": [alert.to_dict() for alert in alerts],
            "run_summary": build_run_summary(
                command="alerts",
                source=source,
                output_path=str(output_path) if output_path else None,
                metrics={"records_in_view": len(visible), "alerts": len(alerts)},
            ),
        }
        if output_path:
            if output_path.suffix.lower() == ".xlsx":
                write_workbook(visible, alerts, output_path)
            else:
                write_json(output_path, payload)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_alerts_text(payload).rstrip(), quiet=args.quiet)
            if output_path:
                emit_human(f"Alerts written: {output_path}", quiet=args.quiet)
        return EXIT_CRITICAL_ALERTS if counts[SEVERITY_CRITICAL] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_report(args: argparse.Namespace) -> int:
    try:
        settings = setup(args)
        output_path = safe_output_path(args.output)
        record_filter = record_filter_from_args(args)
        today = parse_today(args.today)
        source, _, records = load_records(args, settings)
        visible = apply_filters(records, record_filter)
        alerts = evaluate_alerts(visible, record_filter.months, today)
        contract = build_contract("timesheet_doctor.report")
        payload = {
            "contract": contract,
            "schema_version": contract["version"],
            "tool_version": TOOL_VERSION,
            "source": source,
            "filters": {
                "months": record_filter.months,
                "clients": record_filter.clients,
                "consultants": record_filter.consultants,
            },
            "records_in_view": len(visible),
            "available_months": available_months(records),
            "stats": compute_stats(visible),
            "alert_counts": alert_counts(alerts),
            "alerts": [alert.to_dict() for alert in alerts],
            "run_summary": build_run_summary(
                command="report",
                source=source,
                output_path=str(output_path) if output_path else None,
                metrics={"records_in_view": len(visible), "alerts": len(alerts)},
            ),
        }
        if output_path:
            write_output(output_path, payload, visible, alerts)
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_report_text(payload).rstrip(), quiet=args.quiet)
            if output_path:
                emit_human(f"Report written: {output_path}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_team(args: argparse.Namespace) -> int:
    try:
        settings = setup(args)
        args.team_config = args.source
        if not (args.source or settings.team_config_url or settings.team_overrides or args.override):
            raise CliError(
                "No team sheet given. Pass a path or URL, or set team_config_url in the config file.",
                EXIT_COMMAND_ERROR,
            )
        team = build_team_config(args, settings)
        entries = [
            {"name": name, "category": category, "provenance": team.provenance(name)}
            for name, category in sorted(team.merged().items())
        ]
        payload = {"entries": entries, "categories": team.categories()}
        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            lines = ["timesheet-doctor team", f"Consultants: {len(entries)}"]
            lines.extend(f"- {item['name']}: {item['category']} ({item['provenance']})" for item in entries)
            emit_human("\n".join(lines), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_narrative(args: argparse.Namespace) -> int:
    try:
        settings = setup(args)
        record_filter = record_filter_from_args(args)
        _, _, records = load_records(args, settings)
        stats = compute_stats(apply_filters(records, record_filter))
        analysis = request_analysis(
            stats,
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            timeout=settings.request_timeout,
        )
        if args.json:
            maybe_emit_json_stdout(analysis, True)
        else:
            lines = ["timesheet-doctor narrative", "", analysis["summary"]]
            if analysis["risks"]:
                lines.extend(["", "Risks:"])
                lines.extend(f"- {item}" for item in analysis["risks"])
            if analysis["recommendations"]:
                lines.extend(["", "Recommendations:"])
                lines.extend(f"- {item}" for item in analysis["recommendations"])
            emit_human("\n".join(lines), quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    save_settings(Settings(), config_path)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "ingest":
            return run_ingest(args)
        if args.command == "alerts":
            return run_alerts(args)
        if args.command == "report":
            return run_report(args)
        if args.command == "team":
            return run_team(args)
        if args.command == "narrative":
            return run_narrative(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
