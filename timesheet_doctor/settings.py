"""User settings: a JSON file plus environment overrides."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from timesheet_doctor.team_config import DEFAULT_EXCLUDED_CATEGORIES

CONFIG_ENV = "TIMESHEET_DOCTOR_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".timesheet-doctor.json"

ENV_OVERRIDES = {
    "data_url": "TIMESHEET_DOCTOR_DATA_URL",
    "team_config_url": "TIMESHEET_DOCTOR_TEAM_URL",
    "gemini_api_key": "GEMINI_API_KEY",
    "log_level": "TIMESHEET_DOCTOR_LOG_LEVEL",
}


class SettingsError(ValueError):
    """Raised when a settings file exists but cannot be used."""


@dataclass
class Settings:
    data_url: str | None = None
    team_config_url: str | None = None
    team_overrides: dict[str, str] = field(default_factory=dict)
    excluded_categories: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_CATEGORIES))
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    request_timeout: float = 60.0
    log_level: str = "WARNING"

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        payload = asdict(self)
        if not include_secrets:
            payload.pop("gemini_api_key", None)
        return payload


def resolve_config_path(explicit: str | Path | None = None) -> Path | None:
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV)
    if from_env:
        return Path(from_env)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise SettingsError(f"Config file not found: {path}") from exc
    except (OSError, json.JSONDecodeError) as exc:
        raise SettingsError(f"Could not read config file {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise SettingsError(f"Config file {path} must contain a JSON object")
    return payload


def _coerce(payload: dict[str, Any], path: Path | None) -> Settings:
    known = {item.name for item in fields(Settings)}
    unknown = sorted(set(payload) - known)
    if unknown:
        raise SettingsError(f"Unknown settings in {path}: {', '.join(unknown)}")

    values = dict(payload)
    overrides = values.get("team_overrides", {})
    if not isinstance(overrides, dict):
        raise SettingsError("team_overrides must be an object of name -> category")
    values["team_overrides"] = {str(name): str(category) for name, category in overrides.items()}

    excluded = values.get("excluded_categories", list(DEFAULT_EXCLUDED_CATEGORIES))
    if not isinstance(excluded, list):
        raise SettingsError("excluded_categories must be a list")
    values["excluded_categories"] = [str(item) for item in excluded]

    if "request_timeout" in values:
        try:
            values["request_timeout"] = float(values["request_timeout"])
        except (TypeError, ValueError) as exc:
            raise SettingsError("request_timeout must be a number of seconds") from exc
    return Settings(**values)


def load_settings(path: str | Path | None = None) -> Settings:
    """Read settings from ``path`` (or the default locations) and the environment."""
    config_path = resolve_config_path(path)
    payload = _read_config_file(config_path) if config_path else {}
    settings = _coerce(payload, config_path)

    for name, env_name in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            setattr(settings, name, value)
    return settings


def save_settings(settings: Settings, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(settings.to_dict(include_secrets=True), indent=2, ensure_ascii=False, sort_keys=True)
    path.write_text(payload + "\n", encoding="utf-8")
    return path
