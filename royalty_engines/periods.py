"""
Module: royalty_engines.periods
Responsibility:
    Date-range arithmetic for royalty periods: validation, inclusive
    overlap and adjacency tests, run non-overlap checks, inclusive day
    counts for proration, and canonical monthly, quarterly and fiscal
    period generation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  No clock access: every
    date is passed in.

Invariants enforced:
    - Periods are closed intervals [start, end]; both boundary days count.
    - overlap_days(...) <= period_days(period) and is 0 for disjoint ranges.
    - Generated periods are contiguous and non-overlapping: each period
      starts the day after the previous one ends.

Failure modes:
    - InvalidPeriodError when end <= start.
    - OverlappingRunError from check_no_overlap.
    - ValueError on an out-of-range fiscal start month/day.

Audit relevance:
    Run periods can never overlap, so no license day is ever billed twice.
    The overlap test here is the single definition used both at run
    creation and in tests.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Protocol

from royalty_kernel.exceptions import InvalidPeriodError, OverlappingRunError


class PeriodType(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    CUSTOM = "CUSTOM"


class PeriodFrequency(str, Enum):
    """Frequencies usable for generated periods."""

    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"

    @property
    def months(self) -> int:
        return 1 if self is PeriodFrequency.MONTHLY else 3


@dataclass(frozen=True)
class Period:
    """A closed date range [start, end]."""

    start: date
    end: date
    period_type: PeriodType = PeriodType.CUSTOM

    @property
    def days(self) -> int:
        return period_days(self.start, self.end)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class FiscalStart(Protocol):
    """Anything carrying a fiscal year start month (1-12) and day."""

    start_month: int
    start_day: int


class HasPeriod(Protocol):
    id: Any
    period_start: date
    period_end: date


# ---------------------------------------------------------------------------
# Validation and comparison
# ---------------------------------------------------------------------------


def validate_period(start: date, end: date) -> None:
    """Raise InvalidPeriodError unless end falls strictly after start."""
    if end < start:
        raise InvalidPeriodError(start, end, "period end must be after period start")
    if end == start:
        raise InvalidPeriodError(start, end, "period start and end cannot be the same")


def periods_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """
    Inclusive overlap test.

    True when either boundary of one period lies within the other, or one
    period contains the other.  Sharing a single boundary day overlaps.
    """
    return a_start <= b_end and b_start <= a_end


def periods_are_adjacent(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True when one period ends the day before the other starts."""
    one_day = timedelta(days=1)
    return a_end + one_day == b_start or b_end + one_day == a_start


def check_no_overlap(
    existing_runs: Iterable[HasPeriod],
    new_start: date,
    new_end: date,
    exclude_run_id: Any = None,
) -> None:
    """
    Reject a candidate period that overlaps any existing run.

    Args:
        existing_runs: Objects exposing id, period_start and period_end.
        exclude_run_id: Run to ignore (the run being edited).

    Raises:
        OverlappingRunError naming the first overlapping run.
    """
    for run in existing_runs:
        if exclude_run_id is not None and run.id == exclude_run_id:
            continue
        if periods_overlap(run.period_start, run.period_end, new_start, new_end):
            raise OverlappingRunError(
                existing_run_id=str(run.id),
                existing_start=run.period_start,
                existing_end=run.period_end,
                requested_start=new_start,
                requested_end=new_end,
            )


# ---------------------------------------------------------------------------
# Day counts
# ---------------------------------------------------------------------------


def period_days(start: date, end: date) -> int:
    """Inclusive number of days in [start, end]; 0 if end < start."""
    return max(0, (end - start).days + 1)


def overlap_days(
    entity_start: date,
    entity_end: date,
    period_start: date,
    period_end: date,
) -> int:
    """Days of [entity_start, entity_end] that fall inside the period."""
    effective_start = max(entity_start, period_start)
    effective_end = min(entity_end, period_end)
    if effective_start > effective_end:
        return 0
    return period_days(effective_start, effective_end)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def quarter_start(day: date) -> date:
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def quarter_end(day: date) -> date:
    return month_end(add_months(quarter_start(day), 2))


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_monthly_periods(year: int) -> Iterator[Period]:
    """The twelve calendar months of ``year``, lazily."""
    for month in range(1, 13):
        first = date(year, month, 1)
        yield Period(first, month_end(first), PeriodType.MONTHLY)


def generate_quarterly_periods(year: int) -> Iterator[Period]:
    """The four calendar quarters of ``year``, lazily."""
    for quarter in range(4):
        first = date(year, quarter * 3 + 1, 1)
        yield Period(first, quarter_end(first), PeriodType.QUARTERLY)


def fiscal_year_start(fiscal_year: int, fiscal_config: FiscalStart) -> date:
    """
    First day of ``fiscal_year``.

    A fiscal year starting on January 1 is the calendar year.  Any other
    start names the fiscal year after the calendar year it ends in, so
    fiscal 2025 with a July 1 start runs 2024-07-01 to 2025-06-30.
    """
    month, day = fiscal_config.start_month, fiscal_config.start_day
    if not 1 <= month <= 12:
        raise ValueError(f"fiscal start month must be 1-12, got {month}")
    if not 1 <= day <= 31:
        raise ValueError(f"fiscal start day must be 1-31, got {day}")
    anchor_year = fiscal_year if (month, day) == (1, 1) else fiscal_year - 1
    last = calendar.monthrange(anchor_year, month)[1]
    return date(anchor_year, month, min(day, last))


def generate_fiscal_periods(
    fiscal_year: int,
    fiscal_config: FiscalStart,
    frequency: PeriodFrequency = PeriodFrequency.MONTHLY,
) -> Iterator[Period]:
    """
    Contiguous periods covering one fiscal year, lazily.

    Each period starts ``frequency`` months after the fiscal year start
    (day clamped to the month length) and ends the day before the next
    period starts.
    """
    frequency = PeriodFrequency(frequency)
    anchor = fiscal_year_start(fiscal_year, fiscal_config)
    period_type = PeriodType(frequency.value)
    step = frequency.months
    count = 12 // step
    for i in range(count):
        start = add_months(anchor, i * step)
        next_start = add_months(anchor, (i + 1) * step)
        yield Period(start, next_start - timedelta(days=1), period_type)


def detect_period_type(start: date, end: date) -> PeriodType:
    if start == month_start(start) and end == month_end(start):
        return PeriodType.MONTHLY
    if start == quarter_start(start) and end == quarter_end(start):
        return PeriodType.QUARTERLY
    return PeriodType.CUSTOM


def period_display_name(start: date, end: date) -> str:
    """'January 2025', 'Q1 2025' or 'Jan 05, 2025 - Feb 04, 2025'."""
    period_type = detect_period_type(start, end)
    if period_type == PeriodType.MONTHLY:
        return f"{calendar.month_name[start.month]} {start.year}"
    if period_type == PeriodType.QUARTERLY:
        return f"Q{quarter_of(start)} {start.year}"
    return f"{start.strftime('%b %d, %Y')} - {end.strftime('%b %d, %Y')}"
