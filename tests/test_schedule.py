"""Tests for the static schedule table."""

import unittest
import sys
from pathlib import Path

import pandas as pd

# Add src to path so we can import commutetrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from commutetrack.errors import DataInconsistencyError, ErrorKind
from commutetrack.schedule import StaticSchedule
from commutetrack.static_data import SCHEDULE_ROWS


class TestStaticSchedule(unittest.TestCase):

    def setUp(self):
        self.schedule = StaticSchedule.from_rows(SCHEDULE_ROWS)

    def test_transit_minutes_sums_run_times(self):
        self.assertEqual(self.schedule.transit_minutes("F", "F20", "F25"), 7)
        self.assertEqual(self.schedule.transit_minutes("F", "F20", "F18"), 18)
        self.assertEqual(self.schedule.transit_minutes("C", "A41", "A23"), 12)

    def test_transit_minutes_either_direction(self):
        self.assertEqual(self.schedule.transit_minutes("F", "F25", "F20"), 7)

    def test_stop_not_on_line(self):
        self.assertIsNone(self.schedule.transit_minutes("F", "F20", "A23"))
        self.assertIsNone(self.schedule.transit_minutes("X", "F20", "F25"))

    def test_direction_from_sequence(self):
        self.assertEqual(self.schedule.direction("F", "F20", "F25"), 1)
        self.assertEqual(self.schedule.direction("F", "F25", "F20"), 0)
        self.assertIsNone(self.schedule.direction("F", "F20", "F20"))
        self.assertIsNone(self.schedule.direction("F", "F20", "A23"))

    def test_longest_run(self):
        self.assertEqual(self.schedule.longest_run("F"), 44)
        self.assertEqual(self.schedule.longest_run("C"), 22)
        self.assertIsNone(self.schedule.longest_run("X"))

    def test_rows_sorted_by_sequence(self):
        rows = [("G", "F26", 2, 3), ("G", "F24", 1, 0)]
        schedule = StaticSchedule.from_rows(rows)
        self.assertEqual(schedule.direction("G", "F24", "F26"), 1)
        self.assertEqual(schedule.transit_minutes("G", "F24", "F26"), 3)

    def test_missing_columns(self):
        with self.assertRaises(DataInconsistencyError) as ctx:
            StaticSchedule(pd.DataFrame({"line": ["F"], "stop_id": ["F20"]}))
        self.assertIn("run_minutes", str(ctx.exception))
        self.assertEqual(ctx.exception.kind, ErrorKind.DATA_INCONSISTENCY)


if __name__ == "__main__":
    unittest.main()
