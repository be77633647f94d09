"""Unit tests for the scheduling clock."""

import random
from datetime import datetime, time, timezone
from unittest.mock import MagicMock

import pytest

from chase_core.domain.errors import ConfigError
from chase_core.domain.services.scheduling import (
    next_chase_at,
    parse_hhmm,
    skip_weekend,
    validate_business_hours,
)


def fixed_rng(offset: int) -> MagicMock:
    """Randomness source that always returns the given minute offset."""
    rng = MagicMock(spec=random.Random)
    rng.randrange.return_value = offset
    return rng


# 2026-10-19 is a Monday
MONDAY = datetime(2026, 10, 19, 14, 30)
FRIDAY = datetime(2026, 10, 23, 14, 30)


class TestNextChaseAt:
    """Tests for next_chase_at."""

    def test_adds_cadence_days(self):
        result = next_chase_at(MONDAY, 7, True, "09:00", "17:30", fixed_rng(0))
        assert result == datetime(2026, 10, 26, 9, 0)

    def test_time_is_in_first_half_of_window(self):
        rng = random.Random(1234)
        for _ in range(200):
            result = next_chase_at(MONDAY, 1, False, "09:00", "17:00", rng)
            assert time(9, 0) <= result.time() < time(13, 0)

    def test_random_offset_is_bounded_by_half_window(self):
        rng = fixed_rng(17)
        result = next_chase_at(MONDAY, 2, False, "09:00", "17:30", rng)

        rng.randrange.assert_called_once_with(255)
        assert result == datetime(2026, 10, 21, 9, 17)

    def test_skips_weekend(self):
        result = next_chase_at(FRIDAY, 1, True, "09:00", "17:30", fixed_rng(0))
        assert result.date().isoformat() == "2026-10-26"

    def test_sunday_landing_moves_to_monday(self):
        result = next_chase_at(FRIDAY, 2, True, "09:00", "17:30", fixed_rng(0))
        assert result.date().isoformat() == "2026-10-26"

    def test_weekend_kept_when_not_skipping(self):
        result = next_chase_at(FRIDAY, 1, False, "09:00", "17:30", fixed_rng(0))
        assert result.date().isoformat() == "2026-10-24"

    def test_same_seed_gives_same_schedule(self):
        first = next_chase_at(MONDAY, 7, True, "09:00", "17:30", random.Random(7))
        second = next_chase_at(MONDAY, 7, True, "09:00", "17:30", random.Random(7))
        assert first == second

    def test_business_hours_in_practice_timezone(self):
        """09:00 in London during summer time is 08:00 UTC."""
        summer = datetime(2026, 7, 6, 10, 0)
        result = next_chase_at(summer, 7, True, "09:00", "17:30", fixed_rng(0), tz="Europe/London")
        assert result == datetime(2026, 7, 13, 8, 0)

    def test_aware_input_returns_naive_utc(self):
        aware = datetime(2026, 10, 19, 14, 30, tzinfo=timezone.utc)
        result = next_chase_at(aware, 7, True, "09:00", "17:30", fixed_rng(0))
        assert result.tzinfo is None
        assert result == datetime(2026, 10, 26, 9, 0)

    def test_one_minute_window(self):
        result = next_chase_at(MONDAY, 1, False, "09:00", "09:01", fixed_rng(0))
        assert result == datetime(2026, 10, 20, 9, 0)

    @pytest.mark.parametrize("cadence", [0, -1, True, 1.5])
    def test_invalid_cadence_raises(self, cadence):
        with pytest.raises(ConfigError):
            next_chase_at(MONDAY, cadence, True, "09:00", "17:30", fixed_rng(0))

    @pytest.mark.parametrize(
        "start,end",
        [("17:30", "09:00"), ("09:00", "09:00"), ("9am", "17:30"), ("09:00", "25:00"), ("", "17:00")],
    )
    def test_invalid_business_hours_raise(self, start, end):
        with pytest.raises(ConfigError):
            next_chase_at(MONDAY, 7, True, start, end, fixed_rng(0))

    def test_unknown_timezone_raises(self):
        with pytest.raises(ConfigError):
            next_chase_at(MONDAY, 7, True, "09:00", "17:30", fixed_rng(0), tz="Mars/Olympus")


class TestHelpers:
    """Tests for business-hours helpers."""

    def test_parse_hhmm(self):
        assert parse_hhmm("09:05") == time(9, 5)
        assert parse_hhmm("9:30") == time(9, 30)

    def test_validate_business_hours_returns_times(self):
        assert validate_business_hours("08:00", "18:00") == (time(8, 0), time(18, 0))

    def test_skip_weekend_leaves_weekdays(self):
        assert skip_weekend(MONDAY.date()) == MONDAY.date()
