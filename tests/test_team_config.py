from __future__ import annotations

import unittest

from timesheet_doctor.models import WorkLog
from timesheet_doctor.team_config import DEFAULT_EXCLUDED_CATEGORIES, TeamConfig, parse_override_args


def log(record_id, consultant, consultant_type="Undefined"):
    return WorkLog(id=record_id, date="2024-03-01", consultant=consultant, hours=8, consultant_type=consultant_type)


class TeamConfigTests(unittest.TestCase):
    def setUp(self):
        self.team = TeamConfig()
        self.team.load_base({"Ana": "Full Time", "Bruno": "Part Time", "Diego": "Externo"})

    def test_overrides_win_over_the_sheet(self):
        self.team.set_override("Bruno", "Full Time")
        self.assertEqual(self.team.category_for("Bruno"), "Full Time")
        self.assertEqual(self.team.provenance("Bruno"), "manual")
        self.assertEqual(self.team.provenance("Ana"), "sheet")
        self.assertIsNone(self.team.provenance("Nadie"))
        self.assertIsNone(self.team.category_for("Nadie"))

    def test_reloading_the_sheet_keeps_overrides(self):
        self.team.set_override("Ana", "Part Time")
        self.team.load_base({"Ana": "Full Time", "Carla": "Full Time"})
        self.assertEqual(self.team.category_for("Ana"), "Part Time")
        self.assertEqual(self.team.category_for("Carla"), "Full Time")

    def test_clearing_an_override_restores_the_sheet_value(self):
        self.team.set_override("Ana", "Part Time")
        self.team.set_override("Ana", "")
        self.assertEqual(self.team.category_for("Ana"), "Full Time")
        self.assertEqual(self.team.provenance("Ana"), "sheet")

    def test_merged_and_categories(self):
        self.team.set_override("Eva", "Baja")
        self.assertEqual(self.team.merged()["Eva"], "Baja")
        self.assertEqual(self.team.categories(), ["Baja", "Externo", "Full Time", "Part Time"])

    def test_apply_sets_categories_and_drops_excluded(self):
        records = [log("1", "Ana"), log("2", "Diego"), log("3", "Zoe", "Part Time")]
        applied = self.team.apply(records)
        self.assertEqual([record.id for record in applied], ["1", "3"])
        self.assertEqual(applied[0].consultant_type, "Full Time")
        self.assertEqual(applied[1].consultant_type, "Part Time")
        # Inputs are not mutated
        self.assertEqual(records[0].consultant_type, "Undefined")

    def test_apply_with_custom_exclusions(self):
        records = [log("1", "Ana"), log("2", "Diego")]
        applied = self.team.apply(records, excluded_categories=["Full Time"])
        self.assertEqual([record.id for record in applied], ["2"])

    def test_declared_type_can_be_excluded_without_a_mapping(self):
        applied = TeamConfig().apply([log("1", "Sofía", "SSFF")])
        self.assertEqual(applied, [])
        self.assertIn("SSFF", DEFAULT_EXCLUDED_CATEGORIES)


class OverrideArgsTests(unittest.TestCase):
    def test_parses_pairs(self):
        self.assertEqual(
            parse_override_args(["Ana Pérez=Part Time", " Bruno = Full Time ", "Carla="]),
            {"Ana Pérez": "Part Time", "Bruno": "Full Time", "Carla": ""},
        )

    def test_rejects_malformed_pairs(self):
        with self.assertRaises(ValueError):
            parse_override_args(["Ana"])
        with self.assertRaises(ValueError):
            parse_override_args(["=Full Time"])


if __name__ == "__main__":
    unittest.main()
