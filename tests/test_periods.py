from datetime import date

import pytest

from periods import limit_period, month_bounds, next_occurrence, period_containing


@pytest.mark.parametrize(
    "interval, expected",
    [
        ("daily", date(2024, 1, 31)),
        ("weekly", date(2024, 2, 6)),
        ("monthly", date(2024, 2, 29)),
        ("yearly", date(2025, 1, 30)),
        (None, date(2024, 2, 29)),
        ("fortnightly", date(2024, 2, 29)),
    ],
)
def test_next_occurrence(interval, expected):
    assert next_occurrence(date(2024, 1, 30), interval) == expected


def test_weekly_limit_period_is_seven_days_inclusive():
    assert limit_period(date(2024, 1, 15), "weekly") == (date(2024, 1, 15), date(2024, 1, 21))


def test_monthly_limit_period_ends_the_day_before_next_month():
    assert limit_period(date(2024, 1, 1), "monthly") == (date(2024, 1, 1), date(2024, 1, 31))
    assert limit_period(date(2024, 1, 31), "monthly") == (date(2024, 1, 31), date(2024, 2, 28))


def test_month_end_anchor_does_not_drift():
    assert limit_period(date(2024, 1, 31), "monthly", 2) == (date(2024, 3, 31), date(2024, 4, 29))


def test_unknown_period_type():
    with pytest.raises(ValueError):
        limit_period(date(2024, 1, 1), "daily")


def test_period_containing_today():
    assert period_containing(date(2024, 1, 1), "weekly", date(2024, 1, 20)) == (
        date(2024, 1, 15),
        date(2024, 1, 21),
    )
    assert period_containing(date(2024, 1, 10), "monthly", date(2024, 3, 9)) == (
        date(2024, 2, 10),
        date(2024, 3, 9),
    )


def test_month_bounds_leap_year():
    assert month_bounds(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert month_bounds(2023, 12) == (date(2023, 12, 1), date(2023, 12, 31))
