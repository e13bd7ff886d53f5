"""Unit tests for quiet-hours arithmetic."""
from datetime import datetime, time, timezone

from followups.quiet_hours import in_quiet_hours, quiet_hours_resume_at


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestInQuietHours:
    def test_wrapping_window(self):
        start, end = time(22, 0), time(8, 0)

        assert in_quiet_hours(time(23, 30), start, end)
        assert in_quiet_hours(time(2, 0), start, end)
        assert not in_quiet_hours(time(12, 0), start, end)

    def test_bounds_are_inclusive_at_minute_precision(self):
        start, end = time(22, 0), time(8, 0)

        assert in_quiet_hours(time(22, 0), start, end)
        assert in_quiet_hours(time(8, 0, 59), start, end)
        assert not in_quiet_hours(time(8, 1), start, end)

    def test_same_day_window(self):
        start, end = time(12, 0), time(14, 0)

        assert in_quiet_hours(time(13, 0), start, end)
        assert not in_quiet_hours(time(15, 0), start, end)


class TestResumeAt:
    def test_early_morning_resumes_same_day(self):
        resume = quiet_hours_resume_at(_utc(2026, 3, 10, 2, 0), time(22, 0), time(8, 0), "UTC")

        assert resume == _utc(2026, 3, 10, 8, 5)

    def test_late_evening_resumes_next_day(self):
        resume = quiet_hours_resume_at(_utc(2026, 3, 10, 23, 0), time(22, 0), time(8, 0), "UTC")

        assert resume == _utc(2026, 3, 11, 8, 5)

    def test_outside_window_returns_none(self):
        assert quiet_hours_resume_at(_utc(2026, 3, 10, 12, 0), time(22, 0), time(8, 0), "UTC") is None

    def test_unset_window_returns_none(self):
        assert quiet_hours_resume_at(_utc(2026, 3, 10, 2, 0), None, time(8, 0), "UTC") is None

    def test_window_is_local_to_the_instance_timezone(self):
        # 10:00 UTC is 07:00 in São Paulo (UTC-3, no DST in 2026)
        resume = quiet_hours_resume_at(
            _utc(2026, 3, 10, 10, 0), time(22, 0), time(8, 0), "America/Sao_Paulo"
        )

        assert resume == _utc(2026, 3, 10, 11, 5)

    def test_unknown_timezone_falls_back_to_utc(self):
        resume = quiet_hours_resume_at(_utc(2026, 3, 10, 2, 0), time(22, 0), time(8, 0), "Mars/Olympus")

        assert resume == _utc(2026, 3, 10, 8, 5)
