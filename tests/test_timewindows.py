from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from timewindows import (  # noqa: E402
    Window,
    intersect,
    minutes_since_day_start,
    minutes_to_datetime,
    minutes_to_time,
    overlaps,
    parse_date_str,
    parse_time_label,
    time_to_minutes,
)


class TimeLabelTests(unittest.TestCase):
    def test_round_trip_examples(self) -> None:
        self.assertEqual(minutes_to_time(570), "09:30")
        self.assertEqual(time_to_minutes("09:30"), 570)
        self.assertEqual(minutes_to_time(0), "00:00")
        self.assertEqual(time_to_minutes("17:00"), 1020)

    def test_malformed_labels(self) -> None:
        self.assertIsNone(parse_time_label("9.30"))
        self.assertIsNone(parse_time_label(""))
        self.assertIsNone(parse_time_label(None))
        self.assertIsNone(parse_time_label("10:75"))
        with self.assertRaises(ValueError):
            time_to_minutes("noon")

    def test_parse_date(self) -> None:
        self.assertEqual(parse_date_str("2030-01-07"), datetime.date(2030, 1, 7))
        with self.assertRaises(ValueError):
            parse_date_str("07/01/2030")


class WindowArithmeticTests(unittest.TestCase):
    def test_touching_segments_do_not_overlap(self) -> None:
        self.assertFalse(overlaps(540, 600, 600, 660))
        self.assertTrue(overlaps(540, 601, 600, 660))
        self.assertTrue(overlaps(600, 660, 540, 601))

    def test_window_contains_is_inclusive_of_edges(self) -> None:
        window = Window(540, 1020)
        self.assertTrue(window.contains(540, 1020))
        self.assertFalse(window.contains(530, 600))
        self.assertFalse(window.contains(1000, 1030))
        self.assertEqual(window.label(), "09:00-17:00")

    def test_intersect(self) -> None:
        self.assertEqual(intersect(Window(540, 1020), Window(600, 1200)), Window(600, 1020))
        self.assertIsNone(intersect(Window(540, 600), Window(600, 660)))
        self.assertIsNone(intersect(Window(540, 600), None))

    def test_datetime_offsets(self) -> None:
        date_ = datetime.date(2030, 1, 7)
        moment = minutes_to_datetime(date_, 615)
        self.assertEqual(moment, datetime.datetime(2030, 1, 7, 10, 15))
        self.assertEqual(minutes_since_day_start(moment, date_), 615)
        aware = moment.replace(tzinfo=datetime.timezone.utc)
        self.assertEqual(minutes_since_day_start(aware, date_), 615)


if __name__ == "__main__":
    unittest.main()
