"""
Tests for recurrence expansion.

Tests cover:
- DAILY / WEEKLY / MONTHLY stepping with interval
- WEEKLY days_of_week (0 = Sunday) emitting several instances per week
- end_date, max_instances and the hard cap, whichever comes first
- exception_dates skipped without counting toward max_instances
- MONTHLY day_of_month clamped to the month's last day
- INVALID_PATTERN for malformed patterns; empty list when end_date precedes start
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from booking_engines.recurrence import (
    RecurrenceExpander,
    calendar_weekday,
    expand_recurrence,
)
from booking_kernel.domain.recurrence import Frequency
from booking_kernel.domain.values import TimeWindow
from booking_kernel.exceptions import InvalidPatternError
from tests.factories import at, make_pattern, window


def starts(windows):
    return [w.start for w in windows]


class TestCalendarWeekday:

    def test_sunday_is_zero(self):
        assert calendar_weekday(date(2025, 1, 5)) == 0

    def test_monday_is_one(self):
        assert calendar_weekday(date(2025, 1, 6)) == 1

    def test_saturday_is_six(self):
        assert calendar_weekday(date(2025, 1, 11)) == 6


class TestDaily:

    def test_every_day_until_end_date_inclusive(self):
        result = expand_recurrence(window(at(6, 9)), make_pattern(end_date=date(2025, 1, 10)))

        assert starts(result) == [at(d, 9) for d in range(6, 11)]

    def test_interval_skips_days(self):
        result = expand_recurrence(
            window(at(6, 9)), make_pattern(end_date=date(2025, 1, 12), interval=3),
        )

        assert starts(result) == [at(6, 9), at(9, 9), at(12, 9)]

    def test_each_instance_keeps_base_duration(self):
        base = TimeWindow(at(6, 9), at(6, 10, 30))
        result = expand_recurrence(base, make_pattern(end_date=date(2025, 1, 8)))

        assert all(w.duration == timedelta(minutes=90) for w in result)

    def test_max_instances_stops_early(self):
        result = expand_recurrence(window(at(6, 9)), make_pattern(max_instances=3))
        assert len(result) == 3

    def test_hard_cap_applies_without_max_instances(self):
        result = expand_recurrence(
            window(at(6, 9)), make_pattern(end_date=date(2030, 1, 1)), hard_cap=365,
        )
        assert len(result) == 365

    def test_expander_uses_configured_hard_cap(self):
        expander = RecurrenceExpander(hard_cap=10)
        result = expander.expand(window(at(6, 9)), make_pattern(end_date=date(2026, 1, 1)))
        assert len(result) == 10

    def test_exception_dates_do_not_count_toward_max_instances(self):
        result = expand_recurrence(
            window(at(6, 9)),
            make_pattern(max_instances=3, exception_dates={date(2025, 1, 7)}),
        )

        assert starts(result) == [at(6, 9), at(8, 9), at(9, 9)]


class TestWeekly:

    def test_monday_and_wednesday_for_three_weeks(self):
        """Base Monday 2025-01-06, days {Mon, Wed}, end 2025-01-20 -> 6 instances."""
        base = TimeWindow(at(6, 9), at(6, 10))
        pattern = make_pattern(
            frequency=Frequency.WEEKLY, days_of_week={1, 3}, end_date=date(2025, 1, 20),
        )

        result = expand_recurrence(base, pattern)

        assert len(result) == 6
        assert [w.start.date().day for w in result] == [6, 8, 13, 15, 20, 22]
        for w in result:
            assert (w.start.hour, w.end.hour) == (9, 10)

    def test_without_days_repeats_base_weekday(self):
        result = expand_recurrence(
            window(at(6, 9)),
            make_pattern(frequency=Frequency.WEEKLY, end_date=date(2025, 1, 27)),
        )

        assert starts(result) == [at(6, 9), at(13, 9), at(20, 9), at(27, 9)]

    def test_every_other_week(self):
        result = expand_recurrence(
            window(at(6, 9)),
            make_pattern(frequency=Frequency.WEEKLY, interval=2, end_date=date(2025, 2, 3)),
        )

        assert starts(result) == [at(6, 9), at(20, 9), at(3, 9, month=2)]

    def test_days_before_base_weekday_fall_in_following_week(self):
        """Base Wednesday with days {Mon}: first instance is the next Monday."""
        result = expand_recurrence(
            window(at(8, 9)),
            make_pattern(
                frequency=Frequency.WEEKLY, days_of_week={1}, end_date=date(2025, 1, 14),
            ),
        )

        assert starts(result) == [at(13, 9)]

    def test_output_is_strictly_ascending(self):
        result = expand_recurrence(
            window(at(6, 9)),
            make_pattern(
                frequency=Frequency.WEEKLY, days_of_week={0, 2, 4, 6}, end_date=date(2025, 3, 1),
            ),
        )

        assert starts(result) == sorted(starts(result))
        assert len(set(starts(result))) == len(result)


class TestMonthly:

    def test_same_day_each_month(self):
        result = expand_recurrence(
            window(at(15, 9)),
            make_pattern(frequency=Frequency.MONTHLY, end_date=date(2025, 4, 30)),
        )

        assert [w.start.month for w in result] == [1, 2, 3, 4]
        assert all(w.start.day == 15 for w in result)

    def test_day_31_clamps_to_last_day_of_month(self):
        base = window(datetime(2025, 1, 31, 9, tzinfo=timezone.utc))
        result = expand_recurrence(
            base, make_pattern(frequency=Frequency.MONTHLY, end_date=date(2025, 4, 30)),
        )

        assert [w.start.date() for w in result] == [
            date(2025, 1, 31), date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30),
        ]

    def test_day_of_month_override(self):
        result = expand_recurrence(
            window(at(6, 9)),
            make_pattern(frequency=Frequency.MONTHLY, day_of_month=20, end_date=date(2025, 3, 31)),
        )

        assert [w.start.date() for w in result] == [
            date(2025, 1, 20), date(2025, 2, 20), date(2025, 3, 20),
        ]

    def test_day_of_month_before_base_day_starts_next_month(self):
        result = expand_recurrence(
            window(at(20, 9)),
            make_pattern(frequency=Frequency.MONTHLY, day_of_month=5, end_date=date(2025, 3, 31)),
        )

        assert [w.start.date() for w in result] == [date(2025, 2, 5), date(2025, 3, 5)]

    def test_quarterly_interval(self):
        result = expand_recurrence(
            window(at(10, 9)),
            make_pattern(frequency=Frequency.MONTHLY, interval=3, end_date=date(2025, 12, 31)),
        )

        assert [w.start.month for w in result] == [1, 4, 7, 10]


class TestBoundariesAndValidation:

    def test_end_date_before_start_yields_empty_list(self):
        result = expand_recurrence(window(at(6, 9)), make_pattern(end_date=date(2025, 1, 5)))
        assert result == []

    def test_end_date_equal_to_start_date_yields_base_only(self):
        result = expand_recurrence(window(at(6, 9)), make_pattern(end_date=date(2025, 1, 6)))
        assert starts(result) == [at(6, 9)]

    @pytest.mark.parametrize("interval", [0, -1])
    def test_non_positive_interval_is_invalid(self, interval):
        with pytest.raises(InvalidPatternError) as exc_info:
            expand_recurrence(window(at(6, 9)), make_pattern(interval=interval))
        assert exc_info.value.code == "INVALID_PATTERN"

    def test_empty_days_of_week_is_invalid(self):
        with pytest.raises(InvalidPatternError):
            expand_recurrence(
                window(at(6, 9)), make_pattern(frequency=Frequency.WEEKLY, days_of_week=set()),
            )

    def test_weekday_out_of_range_is_invalid(self):
        with pytest.raises(InvalidPatternError):
            expand_recurrence(
                window(at(6, 9)), make_pattern(frequency=Frequency.WEEKLY, days_of_week={7}),
            )

    def test_days_of_week_on_daily_pattern_is_invalid(self):
        with pytest.raises(InvalidPatternError):
            expand_recurrence(window(at(6, 9)), make_pattern(days_of_week={1}))

    def test_day_of_month_on_weekly_pattern_is_invalid(self):
        with pytest.raises(InvalidPatternError):
            expand_recurrence(
                window(at(6, 9)), make_pattern(frequency=Frequency.WEEKLY, day_of_month=3),
            )

    def test_zero_max_instances_is_invalid(self):
        with pytest.raises(InvalidPatternError):
            expand_recurrence(window(at(6, 9)), make_pattern(max_instances=0))

    def test_expansion_is_deterministic(self):
        pattern = make_pattern(frequency=Frequency.WEEKLY, days_of_week={1, 5}, max_instances=20)
        assert expand_recurrence(window(at(6, 9)), pattern) == expand_recurrence(
            window(at(6, 9)), pattern,
        )
