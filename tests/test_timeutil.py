"""Tests for timestamp normalization and duration helpers."""

import logging
import time
from datetime import date, datetime, timedelta, timezone

import pytest

from tasktimer.timeutil import (
    MS_PER_DAY,
    calculate_duration,
    format_duration,
    get_day_range,
    normalize_timestamp,
    start_of_day,
    to_ms,
)

# 2025-01-25T10:00:00Z
NOW = 1_737_799_200_000


class TestNormalizeTimestamp:
    """Tests for normalize_timestamp."""

    def test_none_stays_none(self):
        assert normalize_timestamp(None, now=NOW) is None

    def test_aware_datetime(self):
        dt = datetime(2025, 1, 25, 10, 0, 0, tzinfo=timezone.utc)
        assert normalize_timestamp(dt, now=NOW) == NOW

    def test_naive_datetime_is_utc(self):
        assert normalize_timestamp(datetime(2025, 1, 25, 10, 0, 0), now=NOW) == NOW

    def test_offset_datetime(self):
        dt = datetime(2025, 1, 25, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert normalize_timestamp(dt, now=NOW) == NOW

    def test_date_is_local_midnight(self):
        expected = to_ms(datetime(2025, 1, 25).astimezone())
        assert normalize_timestamp(date(2025, 1, 25), now=NOW) == expected

    def test_recent_milliseconds_unchanged(self):
        value = NOW - 3_600_000
        assert normalize_timestamp(value, now=NOW) == value

    def test_float_milliseconds_truncated(self):
        result = normalize_timestamp(NOW - 0.5, now=NOW)
        assert result == NOW - 1
        assert isinstance(result, int)

    def test_old_timestamp_is_still_a_valid_instant(self):
        # 2000-01-01T00:00:00Z, outside the recent window but representable
        assert normalize_timestamp(946_684_800_000, now=NOW) == 946_684_800_000

    def test_negative_timestamp(self):
        assert normalize_timestamp(-5, now=NOW) == -5

    def test_far_future_timestamp(self):
        assert normalize_timestamp(10**15, now=NOW) == 10**15

    def test_oversized_integer_salvages_leading_digits(self):
        """A 19-digit value keeps its first 13 digits when they are recent."""
        value = int(str(NOW - 100_000) + "123456")
        assert normalize_timestamp(value, now=NOW) == NOW - 100_000

    def test_oversized_integer_with_stale_prefix_falls_back(self, caplog):
        value = int("1000000000000" + "123456")
        with caplog.at_level(logging.WARNING, logger="tasktimer.timeutil"):
            assert normalize_timestamp(value, now=NOW) == NOW
        assert "Could not normalize timestamp" in caplog.text

    def test_huge_integer_salvages_leading_digits(self):
        """Integers too long to render as strings still keep their prefix."""
        value = (NOW - 100_000) * 10**5000
        assert normalize_timestamp(value, now=NOW) == NOW - 100_000

    def test_nan_and_infinity_fall_back_to_now(self):
        assert normalize_timestamp(float("nan"), now=NOW) == NOW
        assert normalize_timestamp(float("inf"), now=NOW) == NOW
        assert normalize_timestamp(float("-inf"), now=NOW) == NOW

    def test_bool_falls_back_to_now(self):
        assert normalize_timestamp(True, now=NOW) == NOW

    def test_iso_string(self):
        assert normalize_timestamp("2025-01-25T10:00:00Z", now=NOW) == NOW

    def test_numeric_string(self):
        assert normalize_timestamp(str(NOW), now=NOW) == NOW

    def test_garbage_string_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tasktimer.timeutil"):
            assert normalize_timestamp("not a date", now=NOW) == NOW
        assert "not a date" in caplog.text

    def test_defaults_to_wall_clock(self):
        before = to_ms(datetime.now(timezone.utc))
        result = normalize_timestamp("garbage")
        after = to_ms(datetime.now(timezone.utc))
        assert before - 1 <= result <= after + 1

    @pytest.mark.parametrize(
        "value",
        [
            0,
            -1,
            0.5,
            -(10**30),
            10**30,
            10**400,
            10**5000,
            1e300,
            -1e300,
            "",
            "   ",
            "1e400",
            "nan",
            "-123",
            object(),
            [1, 2],
        ],
        ids=lambda value: type(value).__name__,
    )
    def test_never_raises(self, value):
        result = normalize_timestamp(value, now=NOW)
        assert isinstance(result, int)


class TestCalculateDuration:
    """Tests for calculate_duration."""

    def test_closed_interval(self):
        assert calculate_duration(NOW - 3_600_000, NOW, now=NOW) == 3_600_000

    def test_open_interval_runs_to_now(self):
        assert calculate_duration(NOW - 90_000, None, now=NOW) == 90_000

    def test_end_before_start_is_zero(self):
        assert calculate_duration(NOW, NOW - 1000, now=NOW) == 0

    def test_start_in_future_is_zero(self):
        assert calculate_duration(NOW + 60_000, None, now=NOW) == 0

    def test_missing_start_is_zero(self):
        assert calculate_duration(None, NOW, now=NOW) == 0

    def test_mixed_representations(self):
        start = datetime(2025, 1, 25, 9, 0, 0, tzinfo=timezone.utc)
        assert calculate_duration(start, "2025-01-25T10:00:00Z", now=NOW) == 3_600_000

    @pytest.mark.parametrize(
        "start,end",
        [(NOW, 0), (10**30, NOW), (float("nan"), NOW), (-5, -10), ("junk", NOW - 1)],
    )
    def test_never_negative(self, start, end):
        assert calculate_duration(start, end, now=NOW) >= 0


class TestFormatDuration:
    """Tests for format_duration."""

    def test_zero(self):
        assert format_duration(0) == "00:00:00"

    def test_hours_minutes_seconds(self):
        assert format_duration(3_723_000) == "01:02:03"

    def test_drops_milliseconds(self):
        assert format_duration(59_999) == "00:00:59"

    def test_more_than_a_day(self):
        assert format_duration(25 * 3_600_000) == "25:00:00"

    def test_negative_clamped(self):
        assert format_duration(-5000) == "00:00:00"


class TestDayBoundaries:
    """Tests for start_of_day and get_day_range."""

    def test_start_of_day_is_local_midnight(self):
        midnight = start_of_day(NOW)
        assert midnight <= NOW
        assert NOW - midnight < MS_PER_DAY
        local = datetime.fromtimestamp(midnight / 1000, tz=timezone.utc).astimezone()
        assert (local.hour, local.minute, local.second) == (0, 0, 0)

    def test_day_range_for_date(self):
        start, end = get_day_range(datetime(2025, 1, 25, 15, 30))
        start_local = datetime.fromtimestamp(start / 1000, tz=timezone.utc).astimezone()
        end_local = datetime.fromtimestamp(end / 1000, tz=timezone.utc).astimezone()
        assert start_local.strftime("%Y-%m-%d %H:%M") == "2025-01-25 00:00"
        assert end_local.strftime("%Y-%m-%d %H:%M") == "2025-01-26 00:00"

    def test_day_range_accepts_date(self):
        assert get_day_range(date(2025, 1, 25)) == get_day_range(datetime(2025, 1, 25, 8, 0))

    def test_day_range_defaults_to_today(self):
        start, end = get_day_range()
        now = to_ms(datetime.now(timezone.utc))
        assert start <= now < end


@pytest.fixture
def eastern_tz(monkeypatch):
    """Run a test with US Eastern local time (POSIX rule, no tzdata needed)."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "EST5EDT,M3.2.0,M11.1.0")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


class TestDaylightSavingDays:
    """Day boundaries on days when the UTC offset changes."""

    # 2025-03-09T05:00:00Z, midnight EST on the spring-forward day
    SPRING_MIDNIGHT = 1_741_496_400_000
    # 2025-03-10T04:00:00Z, midnight EDT the next day
    SPRING_NEXT_MIDNIGHT = 1_741_579_200_000

    def test_start_of_day_uses_offset_at_midnight(self, eastern_tz):
        noon_edt = to_ms(datetime(2025, 3, 9, 16, 0, tzinfo=timezone.utc))
        assert start_of_day(noon_edt) == self.SPRING_MIDNIGHT

    def test_day_range_spring_forward(self, eastern_tz):
        start, end = get_day_range(datetime(2025, 3, 9, 12, 0))
        assert start == self.SPRING_MIDNIGHT
        assert end == self.SPRING_NEXT_MIDNIGHT
        assert end - start == 23 * 3_600_000

    def test_day_range_fall_back(self, eastern_tz):
        start, end = get_day_range(date(2025, 11, 2))
        # 2025-11-02T04:00:00Z (EDT) to 2025-11-03T05:00:00Z (EST)
        assert start == 1_762_056_000_000
        assert end - start == 25 * 3_600_000

    def test_aware_datetime_uses_local_day(self, eastern_tz):
        # 03:00 UTC on Mar 10 is still Mar 9 in New York
        day = datetime(2025, 3, 10, 3, 0, tzinfo=timezone.utc)
        assert get_day_range(day) == (self.SPRING_MIDNIGHT, self.SPRING_NEXT_MIDNIGHT)
