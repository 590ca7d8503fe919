from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

UNKNOWN = "Unknown"
NO_TASK = "No Task"
UNDEFINED_TYPE = "Undefined"
FULL_TIME = "Full Time"
PART_TIME = "Part Time"

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"
SEVERITY_WEIGHT = {SEVERITY_CRITICAL: 3, SEVERITY_WARNING: 2, SEVERITY_INFO: 1}

RECORD_FIELDS = (
    "id",
    "date",
    "consultant",
    "client",
    "project",
    "hours",
    "description",
    "record_type",
    "ticket_id",
    "internal_ticket_id",
    "department",
    "consultant_type",
)


@dataclass
class WorkLog:
    """One normalized timesheet entry."""

    id: str
    date: str
    consultant: str = UNKNOWN
    client: str = UNKNOWN
    project: str = NO_TASK
    hours: float = 0.0
    description: str = ""
    record_type: str = ""
    ticket_id: str = ""
    internal_ticket_id: str = ""
    department: str = ""
    consultant_type: str = UNDEFINED_TYPE

    @property
    def month(self) -> str:
        return self.date[:7]

    def with_consultant_type(self, consultant_type: str) -> "WorkLog":
        return replace(self, consultant_type=consultant_type)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Alert:
    severity: str
    title: str
    consultant: str
    detail: str
    metric_label: str
    related_record_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
