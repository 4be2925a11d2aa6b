"""
Module: royalty_engines.period_generator
Responsibility:
    Convenience generators and naming helpers built on
    royalty_engines.periods: date-range and trailing period lists,
    current/previous/next period lookup, period identifiers and their
    parser, and simple searching and sorting of period lists.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  "Today" is always an
    argument; callers pass clock.today().

Invariants enforced:
    - parse_period_identifier(period_identifier(p)) == p for monthly,
      quarterly and custom periods.
    - Generated lists are contiguous and chronologically ordered.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from datetime import date
from typing import Any

from royalty_engines.periods import (
    Period,
    PeriodFrequency,
    PeriodType,
    add_months,
    generate_monthly_periods,
    generate_quarterly_periods,
    month_end,
    month_start,
    period_display_name,
    quarter_end,
    quarter_of,
    quarter_start,
)

_MONTHLY_ID = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTERLY_ID = re.compile(r"^(\d{4})-Q([1-4])$")
_CUSTOM_ID = re.compile(r"^(\d{4}-\d{2}-\d{2})_to_(\d{4}-\d{2}-\d{2})$")


def _period_containing(day: date, frequency: PeriodFrequency) -> Period:
    if PeriodFrequency(frequency) == PeriodFrequency.MONTHLY:
        return Period(month_start(day), month_end(day), PeriodType.MONTHLY)
    return Period(quarter_start(day), quarter_end(day), PeriodType.QUARTERLY)


def generate_periods_for_date_range(
    start: date,
    end: date,
    frequency: PeriodFrequency,
) -> Iterator[Period]:
    """Every whole month or quarter touching [start, end], in order."""
    frequency = PeriodFrequency(frequency)
    period = _period_containing(start, frequency)
    while period.start <= end:
        yield period
        period = _period_containing(add_months(period.start, frequency.months), frequency)


def generate_trailing_periods(
    count: int,
    frequency: PeriodFrequency,
    end_date: date,
) -> list[Period]:
    """The ``count`` periods ending with the one containing end_date, oldest first."""
    frequency = PeriodFrequency(frequency)
    return [
        _period_containing(add_months(end_date, -i * frequency.months), frequency)
        for i in range(count - 1, -1, -1)
    ]


def generate_year_to_date_periods(
    year: int,
    frequency: PeriodFrequency,
    today: date,
) -> list[Period]:
    """Periods of ``year`` up to today, or the full year for past years."""
    end = today if today.year == year else date(year, 12, 31)
    return list(generate_periods_for_date_range(date(year, 1, 1), end, frequency))


def current_period(frequency: PeriodFrequency, on: date) -> Period:
    return _period_containing(on, frequency)


def previous_period(frequency: PeriodFrequency, on: date) -> Period:
    frequency = PeriodFrequency(frequency)
    return _period_containing(add_months(on, -frequency.months), frequency)


def next_period(frequency: PeriodFrequency, on: date) -> Period:
    frequency = PeriodFrequency(frequency)
    return _period_containing(add_months(on, frequency.months), frequency)


def period_identifier(period: Period) -> str:
    """'2025-01', '2025-Q1' or '2025-01-05_to_2025-02-04'."""
    if period.period_type == PeriodType.MONTHLY:
        return f"{period.start.year:04d}-{period.start.month:02d}"
    if period.period_type == PeriodType.QUARTERLY:
        return f"{period.start.year:04d}-Q{quarter_of(period.start)}"
    return f"{period.start.isoformat()}_to_{period.end.isoformat()}"


def parse_period_identifier(identifier: str) -> Period | None:
    """Inverse of period_identifier; None for anything unrecognised."""
    match = _MONTHLY_ID.match(identifier)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            return None
        first = date(year, month, 1)
        return Period(first, month_end(first), PeriodType.MONTHLY)

    match = _QUARTERLY_ID.match(identifier)
    if match:
        first = date(int(match.group(1)), (int(match.group(2)) - 1) * 3 + 1, 1)
        return Period(first, quarter_end(first), PeriodType.QUARTERLY)

    match = _CUSTOM_ID.match(identifier)
    if match:
        try:
            start = date.fromisoformat(match.group(1))
            end = date.fromisoformat(match.group(2))
        except ValueError:
            return None
        return Period(start, end, PeriodType.CUSTOM)

    return None


def readable_period_name(period: Period) -> str:
    return period_display_name(period.start, period.end)


def batch_create_periods_for_year(
    year: int,
    frequency: PeriodFrequency,
) -> list[dict[str, Any]]:
    """Period rows for a year, ready for display or seeding."""
    if PeriodFrequency(frequency) == PeriodFrequency.MONTHLY:
        periods: Iterable[Period] = generate_monthly_periods(year)
    else:
        periods = generate_quarterly_periods(year)
    return [
        {
            "identifier": period_identifier(p),
            "period_start": p.start,
            "period_end": p.end,
            "period_type": p.period_type.value,
            "display_name": readable_period_name(p),
        }
        for p in periods
    ]


def is_date_in_period(day: date, period: Period) -> bool:
    return period.contains(day)


def find_period_for_date(day: date, periods: Iterable[Period]) -> Period | None:
    return next((p for p in periods if p.contains(day)), None)


def sort_periods(periods: Sequence[Period], order: str = "ASC") -> list[Period]:
    if order not in ("ASC", "DESC"):
        raise ValueError(f"order must be 'ASC' or 'DESC', got {order!r}")
    return sorted(periods, key=lambda p: p.start, reverse=order == "DESC")
