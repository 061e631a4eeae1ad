from __future__ import annotations

import unittest
from unittest.mock import patch
from zoneinfo import ZoneInfo

from hrflow.services.attendance_times import determine_attendance_flag, format_display_time
from hrflow.settings import Settings


class FormatDisplayTimeTests(unittest.TestCase):
    def test_utc_iso_timestamp_is_rendered_in_twelve_hour_form(self) -> None:
        self.assertEqual(format_display_time("2024-03-01T09:15:00Z", tz=ZoneInfo("UTC")), "09:15 AM")

    def test_aware_timestamp_is_converted_to_the_attendance_zone(self) -> None:
        value = format_display_time("2024-03-01T03:15:00+00:00", tz=ZoneInfo("Asia/Dhaka"))
        self.assertEqual(value, "09:15 AM")

    def test_naive_timestamp_is_taken_as_local_time(self) -> None:
        self.assertEqual(format_display_time("2024-03-01T18:05:00", tz=ZoneInfo("Asia/Dhaka")), "06:05 PM")

    def test_values_without_iso_marker_pass_through(self) -> None:
        self.assertEqual(format_display_time("09:15 AM"), "09:15 AM")
        self.assertEqual(format_display_time("late morning"), "late morning")
        self.assertEqual(format_display_time(""), "")
        self.assertIsNone(format_display_time(None))

    def test_unparseable_iso_shaped_value_passes_through(self) -> None:
        self.assertEqual(format_display_time("2024-13-45Tnonsense"), "2024-13-45Tnonsense")


class AttendanceFlagTests(unittest.TestCase):
    def test_in_time_within_grace_is_present(self) -> None:
        with patch("hrflow.services.attendance_times.get_settings", return_value=Settings()):
            self.assertEqual(determine_attendance_flag("09:15 AM"), "P")
            self.assertEqual(determine_attendance_flag("08:40 AM"), "P")

    def test_in_time_after_grace_is_delayed(self) -> None:
        with patch("hrflow.services.attendance_times.get_settings", return_value=Settings()):
            self.assertEqual(determine_attendance_flag("09:16 AM"), "D")
            self.assertEqual(determine_attendance_flag("01:00 PM"), "D")

    def test_office_start_and_grace_come_from_settings(self) -> None:
        settings = Settings(attendance_office_start="10:00", attendance_grace_minutes=0)
        with patch("hrflow.services.attendance_times.get_settings", return_value=settings):
            self.assertEqual(determine_attendance_flag("09:59 AM"), "P")
            self.assertEqual(determine_attendance_flag("10:01 AM"), "D")

    def test_unreadable_in_time_defaults_to_present(self) -> None:
        self.assertEqual(determine_attendance_flag("sometime"), "P")
        self.assertEqual(determine_attendance_flag(None), "P")


if __name__ == "__main__":
    unittest.main()
