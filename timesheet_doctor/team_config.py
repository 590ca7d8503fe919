from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from timesheet_doctor.models import WorkLog

DEFAULT_EXCLUDED_CATEGORIES = ("Externo", "SSFF")


@dataclass
class TeamConfig:
    """Consultant -> category mapping kept as two layers.

    ``base`` holds what was loaded from the team sheet; ``overrides`` holds
    manual edits. Lookups consult overrides first, so manual edits always
    win without losing track of where a value came from.
    """

    base: dict[str, str] = field(default_factory=dict)
    overrides: dict[str, str] = field(default_factory=dict)

    def load_base(self, mapping: dict[str, str]) -> None:
        """Merge a freshly loaded sheet over the existing base layer."""
        self.base.update(mapping)

    def set_override(self, name: str, category: str) -> None:
        if category:
            self.overrides[name] = category
        else:
            self.overrides.pop(name, None)

    def category_for(self, name: str) -> str | None:
        if name in self.overrides:
            return self.overrides[name]
        return self.base.get(name)

    def provenance(self, name: str) -> str | None:
        if name in self.overrides:
            return "manual"
        if name in self.base:
            return "sheet"
        return None

    def merged(self) -> dict[str, str]:
        return {**self.base, **self.overrides}

    def categories(self) -> list[str]:
        return sorted({value for value in self.merged().values() if value and value.strip()})

    def apply(
        self,
        records: Iterable[WorkLog],
        excluded_categories: Iterable[str] = DEFAULT_EXCLUDED_CATEGORIES,
    ) -> list[WorkLog]:
        """Return records with configured categories applied.

        Records whose resulting category is excluded are left out.
        """
        excluded = set(excluded_categories)
        applied: list[WorkLog] = []
        for record in records:
            category = self.category_for(record.consultant)
            if category:
                record = record.with_consultant_type(category)
            if record.consultant_type in excluded:
                continue
            applied.append(record)
        return applied


def parse_override_args(values: Iterable[str]) -> dict[str, str]:
    """Parse ``NAME=CATEGORY`` pairs from the command line."""
    overrides: dict[str, str] = {}
    for value in values:
        name, sep, category = value.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=CATEGORY, got {value!r}")
        overrides[name.strip()] = category.strip()
    return overrides
