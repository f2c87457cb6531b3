"""Recurrence utility functions: occurrence calculation and series termination."""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from tasklane.models.recurrence import (
    DailyRule,
    EndType,
    MonthlyRule,
    WeeklyRule,
    YearlyRule,
)

AnyRule = DailyRule | WeeklyRule | MonthlyRule | YearlyRule

WEEKDAY_ABBREVIATIONS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

FREQUENCY_UNITS = {
    "daily": "days",
    "weekly": "weeks",
    "monthly": "months",
    "yearly": "years",
}


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + months
    return total // 12, total % 12 + 1


def _monthly_date(rule: MonthlyRule, year: int, month: int) -> date:
    last = _days_in_month(year, month)
    day = last if rule.is_last_day else min(rule.month_day, last)
    return date(year, month, day)


def _yearly_date(rule: YearlyRule, year: int) -> date:
    day = min(rule.year_day, _days_in_month(year, rule.year_month))
    return date(year, rule.year_month, day)


def _daily(rule: DailyRule, anchor: date, count: int) -> list[date]:
    return [anchor + timedelta(days=n * rule.interval) for n in range(1, count + 1)]


def _weekly(rule: WeeklyRule, anchor: date, count: int) -> list[date]:
    offset = min((day - anchor.weekday()) % 7 for day in rule.weekdays)
    first = anchor + timedelta(days=offset)
    return [first + timedelta(weeks=n * rule.interval) for n in range(count)]


def _monthly(rule: MonthlyRule, anchor: date, count: int) -> list[date]:
    year, month = anchor.year, anchor.month
    if _monthly_date(rule, year, month) < anchor:
        year, month = _add_months(year, month, rule.interval)
    occurrences = []
    for n in range(count):
        y, m = _add_months(year, month, n * rule.interval)
        occurrences.append(_monthly_date(rule, y, m))
    return occurrences


def _yearly(rule: YearlyRule, anchor: date, count: int) -> list[date]:
    year = anchor.year
    if _yearly_date(rule, year) < anchor:
        year += rule.interval
    return [_yearly_date(rule, year + n * rule.interval) for n in range(count)]


_CALCULATORS = {
    "daily": _daily,
    "weekly": _weekly,
    "monthly": _monthly,
    "yearly": _yearly,
}


def compute_occurrences(rule: AnyRule, anchor: date | datetime, count: int) -> list[date]:
    """Compute the next ``count`` occurrences of a rule on or after ``anchor``.

    Daily rules step ``interval`` days from the anchor. Weekly rules start on the
    first matching weekday (Monday=0) on or after the anchor and then step whole
    weeks. Monthly and yearly rules place the target day in the anchor's
    month/year, advance one interval if that lands before the anchor, and clamp
    the day to the length of every month they visit.

    Args:
        rule: Validated recurrence rule
        anchor: Reference date (the date part of a datetime is used)
        count: Number of occurrences to return

    Returns:
        Strictly increasing list of dates, all >= anchor
    """
    if count <= 0:
        return []
    return _CALCULATORS[rule.frequency](rule, _as_date(anchor), count)


def next_occurrence(rule: AnyRule, anchor: date | datetime) -> date:
    """Return the first occurrence of a rule on or after ``anchor``."""
    return compute_occurrences(rule, anchor, 1)[0]


def should_continue(rule: AnyRule, candidate: date | datetime) -> bool:
    """Decide whether a series may still produce ``candidate``.

    ``after_count`` compares the completions already recorded on the rule
    (not counting the one about to fire) with ``end_after_count``;
    ``on_date`` accepts candidates up to and including ``end_on_date``.
    """
    if rule.end_type is EndType.AFTER_COUNT:
        return rule.completed_count < rule.end_after_count
    if rule.end_type is EndType.ON_DATE:
        return _as_date(candidate) <= rule.end_on_date
    return True


def preview_occurrences(rule: AnyRule, anchor: date | datetime, count: int) -> list[date]:
    """Upcoming occurrences, cut off where the series would terminate.

    Each preview step counts as one more completion of the series.
    """
    previews = []
    current = rule
    for candidate in compute_occurrences(rule, anchor, count):
        if not should_continue(current, candidate):
            break
        previews.append(candidate)
        current = current.with_completion(candidate)
    return previews


def describe_rule(rule: AnyRule) -> str:
    """Convert a rule to a short human-readable description.

    Examples: "Daily", "Every 2 weeks on Wed", "Monthly on the last day",
    "Yearly on Feb 29 (5x)".
    """
    if rule.interval == 1:
        description = rule.frequency.capitalize()
    else:
        description = f"Every {rule.interval} {FREQUENCY_UNITS[rule.frequency]}"

    if isinstance(rule, WeeklyRule):
        days = ", ".join(WEEKDAY_ABBREVIATIONS[d] for d in sorted(rule.weekdays))
        description += f" on {days}"
    elif isinstance(rule, MonthlyRule):
        if rule.is_last_day:
            description += " on the last day"
        else:
            description += f" on day {rule.month_day}"
    elif isinstance(rule, YearlyRule):
        description += f" on {calendar.month_abbr[rule.year_month]} {rule.year_day}"

    if rule.end_type is EndType.ON_DATE:
        description += f" until {rule.end_on_date.isoformat()}"
    elif rule.end_type is EndType.AFTER_COUNT:
        description += f" ({rule.end_after_count}x)"

    return description
