from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from availability import (  # noqa: E402
    DayAvailability,
    effective_window,
    resolve_business_window,
    resolve_worker_window,
    segment_hits_breaks,
    weekday_key,
)
from models import BreakRange, Worker  # noqa: E402
from settings import (  # noqa: E402
    build_default_settings,
    day_key,
    is_business_closed_all_day,
    is_closed_date,
    normalize_settings,
    site_now,
)
from timewindows import Window  # noqa: E402

MONDAY = datetime.date(2030, 1, 7)
FRIDAY = datetime.date(2030, 1, 11)
SATURDAY = datetime.date(2030, 1, 12)


def _settings(**overrides):
    settings = build_default_settings()
    settings.update(overrides)
    return normalize_settings(settings)


class SettingsNormalizationTests(unittest.TestCase):
    def test_defaults_are_applied(self) -> None:
        settings = normalize_settings({})
        self.assertEqual(settings["timezone"], "Asia/Jerusalem")
        self.assertEqual(settings["slot_minutes"], 15)
        self.assertEqual(sorted(settings["days"].keys()), ["0", "1", "2", "3", "4", "5", "6"])
        self.assertFalse(settings["days"]["6"]["enabled"])
        self.assertEqual(settings["closed_dates"], [])

    def test_camel_case_payload(self) -> None:
        settings = normalize_settings(
            {"slotMinutes": 30, "closedDates": [{"date": "2030-01-07", "label": "Holiday"}, {"date": "bad"}]}
        )
        self.assertEqual(settings["slot_minutes"], 30)
        self.assertEqual(settings["closed_dates"], [{"date": "2030-01-07", "label": "Holiday"}])

    def test_missing_weekday_in_stored_map_is_closed(self) -> None:
        settings = normalize_settings({"days": {"1": {"enabled": True, "start": "10:00", "end": "18:00"}}})
        self.assertTrue(settings["days"]["1"]["enabled"])
        self.assertFalse(settings["days"]["2"]["enabled"])

    def test_malformed_breaks_are_dropped(self) -> None:
        with self.assertLogs("settings", level="WARNING"):
            settings = normalize_settings(
                {
                    "days": {
                        "1": {
                            "enabled": True,
                            "start": "09:00",
                            "end": "17:00",
                            "breaks": [{"start": "12:00", "end": "12:30"}, {"start": "14:00", "end": "13:00"}],
                        }
                    }
                }
            )
        self.assertEqual(settings["days"]["1"]["breaks"], [{"start": "12:00", "end": "12:30"}])

    def test_day_keys_start_on_sunday(self) -> None:
        self.assertEqual(day_key(MONDAY), "1")
        self.assertEqual(day_key(SATURDAY), "6")
        self.assertEqual(weekday_key(MONDAY), "mon")
        self.assertEqual(weekday_key(datetime.date(2030, 1, 6)), "sun")

    def test_site_now_is_local_and_naive(self) -> None:
        moment = datetime.datetime(2030, 1, 7, 7, 0, tzinfo=datetime.timezone.utc)
        local = site_now({"timezone": "Asia/Jerusalem"}, now=moment)
        self.assertIsNone(local.tzinfo)
        self.assertEqual(local, datetime.datetime(2030, 1, 7, 9, 0))


class BusinessWindowTests(unittest.TestCase):
    def test_weekday_hours(self) -> None:
        settings = _settings()
        self.assertEqual(resolve_business_window(settings, MONDAY), Window(540, 1020))
        self.assertEqual(resolve_business_window(settings, FRIDAY), Window(540, 780))
        self.assertIsNone(resolve_business_window(settings, SATURDAY))

    def test_closed_date_has_no_window(self) -> None:
        settings = _settings(closed_dates=[{"date": "2030-01-07", "label": "Holiday"}])
        self.assertTrue(is_closed_date(settings, "2030-01-07"))
        self.assertTrue(is_business_closed_all_day(settings, MONDAY))
        self.assertIsNone(resolve_business_window(settings, MONDAY))

    def test_malformed_hours_read_as_closed(self) -> None:
        settings = _settings()
        settings["days"]["1"]["end"] = "08:00"
        with self.assertLogs("availability", level="WARNING"):
            self.assertIsNone(resolve_business_window(settings, MONDAY))


class WorkerWindowTests(unittest.TestCase):
    def test_worker_without_schedule_follows_business(self) -> None:
        worker = Worker(id="w1", name="Avi", services=("פן",))
        self.assertEqual(resolve_worker_window(worker, MONDAY, Window(540, 1020)), Window(540, 1020))

    def test_worker_schedule_is_intersected(self) -> None:
        worker = Worker.from_dict(
            {"id": "w1", "name": "Avi", "availability": [{"day": "mon", "open": "12:00", "close": "20:00"}]}
        )
        own = resolve_worker_window(worker, MONDAY, Window(540, 1020))
        self.assertEqual(own, Window(720, 1200))
        self.assertEqual(effective_window(Window(540, 1020), own), Window(720, 1020))

    def test_weekday_missing_from_schedule_means_off(self) -> None:
        worker = Worker.from_dict(
            {"id": "w1", "name": "Avi", "availability": [{"day": "tue", "open": "09:00", "close": "17:00"}]}
        )
        self.assertIsNone(resolve_worker_window(worker, MONDAY, Window(540, 1020)))

    def test_numeric_day_keys_are_accepted(self) -> None:
        worker = Worker.from_dict(
            {"id": "w1", "name": "Avi", "availability": [{"day": 1, "open": "10:00", "close": "14:00"}]}
        )
        self.assertEqual(resolve_worker_window(worker, MONDAY, Window(540, 1020)), Window(600, 840))

    def test_break_overlap(self) -> None:
        breaks = [BreakRange(start="12:00", end="12:30")]
        self.assertEqual(segment_hits_breaks(690, 735, breaks), Window(720, 750))
        self.assertIsNone(segment_hits_breaks(660, 720, breaks))
        self.assertIsNone(segment_hits_breaks(750, 800, breaks))

    def test_day_availability_collects_everything(self) -> None:
        settings = _settings()
        settings["days"]["1"]["breaks"] = [{"start": "12:00", "end": "12:30"}]
        workers = [
            Worker(id="w1", name="Avi", services=("פן",)),
            Worker.from_dict(
                {
                    "id": "w2",
                    "name": "Bob",
                    "availability": [
                        {"day": "mon", "open": "09:00", "close": "13:00", "breaks": [{"start": "10:00", "end": "10:15"}]}
                    ],
                }
            ),
        ]
        day = DayAvailability(settings, workers, MONDAY)
        self.assertTrue(day.is_open)
        self.assertEqual(day.breaks, [BreakRange(start="12:00", end="12:30")])
        self.assertEqual(day.worker_windows, {"w1": Window(540, 1020), "w2": Window(540, 780)})
        self.assertEqual(day.worker_breaks["w2"], [BreakRange(start="10:00", end="10:15")])
        self.assertEqual(day.worker_breaks["w1"], [])


if __name__ == "__main__":
    unittest.main()
