"""
Due-date calculator tests.

Pure functions, no database rows needed:
    - compute_due_date for hours / days / days+hours offsets
    - shift_if_weekend (Sunday → Monday, only when enabled)
    - due_date_for_step combining both
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from fms.core.exceptions import ValidationError
from fms.services.due_dates import compute_due_date, due_date_for_step, shift_if_weekend

# Monday
START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
SUNDAY = datetime(2024, 1, 7, 9, 0, tzinfo=timezone.utc)


def _step(offset_value=0, offset_unit="days", offset_days=None, offset_hours=None):
    return SimpleNamespace(
        offset_value=offset_value,
        offset_unit=offset_unit,
        offset_days=offset_days,
        offset_hours=offset_hours,
    )


class TestComputeDueDate:
    @pytest.mark.parametrize("value,unit,expected", [
        (0, "hours", START),
        (5, "hours", START + timedelta(hours=5)),
        (30, "hours", START + timedelta(hours=30)),
        (1, "days", START + timedelta(days=1)),
        (3, "days", START + timedelta(days=3)),
    ])
    def test_single_unit_offsets(self, value, unit, expected):
        assert compute_due_date(START, value, unit) == expected

    def test_days_plus_hours(self):
        due = compute_due_date(START, offset_unit="days+hours", offset_days=2, offset_hours=6)
        assert due == START + timedelta(hours=54)

    def test_days_plus_hours_missing_parts_count_as_zero(self):
        assert compute_due_date(START, offset_unit="days+hours", offset_days=1) == START + timedelta(days=1)
        assert compute_due_date(START, offset_unit="days+hours", offset_hours=4) == START + timedelta(hours=4)

    def test_none_offset_value_is_zero(self):
        assert compute_due_date(START, None, "days") == START

    def test_unknown_unit_rejected(self):
        with pytest.raises(ValidationError) as exc:
            compute_due_date(START, 1, "weeks")
        assert "offset_unit" in exc.value.details

    def test_negative_offset_rejected(self):
        with pytest.raises(ValidationError):
            compute_due_date(START, -1, "days")
        with pytest.raises(ValidationError) as exc:
            compute_due_date(START, offset_unit="days+hours", offset_days=1, offset_hours=-2)
        assert exc.value.details == {"offset_hours": "must not be negative"}

    def test_missing_anchor_rejected(self):
        with pytest.raises(ValidationError):
            compute_due_date(None, 1, "days")


class TestWeekendShift:
    def test_sunday_moves_to_monday(self):
        assert shift_if_weekend(SUNDAY, True) == SUNDAY + timedelta(days=1)

    def test_time_of_day_kept(self):
        shifted = shift_if_weekend(SUNDAY.replace(hour=23, minute=30), True)
        assert (shifted.weekday(), shifted.hour, shifted.minute) == (0, 23, 30)

    def test_disabled_rule_keeps_sunday(self):
        assert shift_if_weekend(SUNDAY, False) == SUNDAY

    @pytest.mark.parametrize("days", range(6))
    def test_weekdays_untouched(self, days):
        day = START + timedelta(days=days)
        assert shift_if_weekend(day, True) == day

    def test_saturday_not_shifted(self):
        saturday = SUNDAY - timedelta(days=1)
        assert shift_if_weekend(saturday, True) == saturday

    def test_custom_weekend_day(self):
        saturday = SUNDAY - timedelta(days=1)
        assert shift_if_weekend(saturday, True, weekend_day=5) == SUNDAY
        assert shift_if_weekend(SUNDAY, True, weekend_day=5) == SUNDAY

    def test_none_passes_through(self):
        assert shift_if_weekend(None, True) is None


class TestDueDateForStep:
    def test_offset_landing_on_sunday_shifted(self):
        due = due_date_for_step(START, _step(6, "days"), skip_weekend=True)
        assert due == START + timedelta(days=7)
        assert due.weekday() == 0

    def test_offset_landing_on_sunday_without_rule(self):
        due = due_date_for_step(START, _step(6, "days"), skip_weekend=False)
        assert due == SUNDAY

    def test_days_plus_hours_step(self):
        step = _step(offset_unit="days+hours", offset_days=1, offset_hours=12)
        assert due_date_for_step(START, step) == START + timedelta(hours=36)

    def test_anchor_timezone_preserved(self):
        due = due_date_for_step(START, _step(2, "hours"))
        assert due.tzinfo is not None
        assert due.utcoffset() == timedelta(0)
