from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from timesheet_doctor import settings as settings_module
from timesheet_doctor.settings import Settings, SettingsError, load_settings, save_settings


class SettingsTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        env = mock.patch.dict(os.environ, {}, clear=True)
        env.start()
        self.addCleanup(env.stop)
        default = mock.patch.object(settings_module, "DEFAULT_CONFIG_PATH", self.root / "absent.json")
        default.start()
        self.addCleanup(default.stop)

    def tearDown(self):
        self.tmp.cleanup()

    def write_config(self, payload) -> Path:
        path = self.root / "config.json"
        path.write_text(payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8")
        return path

    def test_defaults_without_file_or_environment(self):
        settings = load_settings()
        self.assertIsNone(settings.data_url)
        self.assertEqual(settings.excluded_categories, ["Externo", "SSFF"])
        self.assertEqual(settings.request_timeout, 60.0)
        self.assertEqual(settings.log_level, "WARNING")

    def test_file_values(self):
        path = self.write_config({
            "data_url": "https://example.com/logs.csv",
            "team_overrides": {"Ana": "Part Time"},
            "excluded_categories": ["Externo"],
            "request_timeout": "15",
        })
        settings = load_settings(path)
        self.assertEqual(settings.data_url, "https://example.com/logs.csv")
        self.assertEqual(settings.team_overrides, {"Ana": "Part Time"})
        self.assertEqual(settings.excluded_categories, ["Externo"])
        self.assertEqual(settings.request_timeout, 15.0)

    def test_config_path_from_environment(self):
        path = self.write_config({"gemini_model": "other-model"})
        with mock.patch.dict(os.environ, {"TIMESHEET_DOCTOR_CONFIG": str(path)}):
            self.assertEqual(load_settings().gemini_model, "other-model")

    def test_environment_overrides_file(self):
        path = self.write_config({"data_url": "https://example.com/a.csv", "gemini_api_key": "from-file"})
        with mock.patch.dict(os.environ, {"TIMESHEET_DOCTOR_DATA_URL": "https://example.com/b.csv", "GEMINI_API_KEY": "from-env"}):
            settings = load_settings(path)
        self.assertEqual(settings.data_url, "https://example.com/b.csv")
        self.assertEqual(settings.gemini_api_key, "from-env")

    def test_invalid_files(self):
        with self.assertRaisesRegex(SettingsError, "not found"):
            load_settings(self.root / "missing.json")
        with self.assertRaises(SettingsError):
            load_settings(self.write_config("{broken"))
        with self.assertRaisesRegex(SettingsError, "JSON object"):
            load_settings(self.write_config("[]"))
        with self.assertRaisesRegex(SettingsError, "Unknown settings"):
            load_settings(self.write_config({"colour": "blue"}))
        with self.assertRaises(SettingsError):
            load_settings(self.write_config({"excluded_categories": "Externo"}))
        with self.assertRaises(SettingsError):
            load_settings(self.write_config({"request_timeout": "soon"}))

    def test_save_then_load(self):
        settings = Settings(team_config_url="https://example.com/team.csv", gemini_api_key="k")
        path = save_settings(settings, self.root / "nested" / "config.json")
        self.assertTrue(path.read_text(encoding="utf-8").endswith("\n"))
        self.assertEqual(load_settings(path), settings)

    def test_to_dict_hides_the_api_key(self):
        settings = Settings(gemini_api_key="secret")
        self.assertNotIn("gemini_api_key", settings.to_dict())
        self.assertEqual(settings.to_dict(include_secrets=True)["gemini_api_key"], "secret")


if __name__ == "__main__":
    unittest.main()
