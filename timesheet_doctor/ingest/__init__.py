from timesheet_doctor.ingest.pipeline import (
    IngestResult,
    ingest_records,
    ingest_team_config,
    parse_records,
)

__all__ = ["IngestResult", "ingest_records", "ingest_team_config", "parse_records"]
