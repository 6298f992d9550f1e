"""Calendar arithmetic for limit periods and recurring expenses."""
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

RECURRING_INTERVALS = {
    "daily": relativedelta(days=+1),
    "weekly": relativedelta(weeks=+1),
    "monthly": relativedelta(months=+1),
    "yearly": relativedelta(years=+1),
}

PERIOD_STEPS = {
    "weekly": lambda n: relativedelta(weeks=+n),
    "monthly": lambda n: relativedelta(months=+n),
}


def next_occurrence(current: date, interval) -> date:
    """Date of the next instance of a recurring expense.

    An unknown or missing interval is treated as monthly.
    """
    return current + RECURRING_INTERVALS.get(interval, RECURRING_INTERVALS["monthly"])


def limit_period(start: date, period_type: str, index: int = 0):
    """Return the inclusive (start, end) of the ``index``-th period after ``start``.

    Steps are computed from ``start`` rather than chained, so for one
    ``start`` a month-end day is kept where the month allows
    (Jan 31 -> Feb 29 -> Mar 31).
    """
    try:
        step = PERIOD_STEPS[period_type]
    except KeyError:
        raise ValueError(f"Unknown period type: {period_type!r}")
    period_start = start + step(index)
    period_end = start + step(index + 1) - timedelta(days=1)
    return period_start, period_end


def period_containing(start: date, period_type: str, today: date):
    """The period of ``period_type`` anchored at ``start`` that contains ``today``.

    Returns the first period when ``today`` is before ``start``.
    """
    index = 0
    period_start, period_end = limit_period(start, period_type, index)
    while period_end < today:
        index += 1
        period_start, period_end = limit_period(start, period_type, index)
    return period_start, period_end


def month_bounds(year: int, month: int):
    first = date(year, month, 1)
    return first, first + relativedelta(months=+1) - timedelta(days=1)
