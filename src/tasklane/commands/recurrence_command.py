"""Command 'recurrence' of tasklane - preview and describe recurrence rules."""

from datetime import date, datetime
from typing import Any, List, Optional

import typer

from tasklane.config import get_config_manager
from tasklane.models import parse_rule
from tasklane.utils.recurrence import describe_rule, preview_occurrences
from tasklane.utils.ui.console import get_console
from tasklane.utils.ui.formatters import format_info, format_output

from .decorators import AppError, command_wrapper

app = typer.Typer(help="Preview and describe recurrence rules", no_args_is_help=True)

_DATE_FORMATS = ["%Y-%m-%d"]


def build_rule(
    frequency: str,
    *,
    interval: int = 1,
    rule_type: str = "scheduled",
    weekdays: Optional[List[str]] = None,
    month_day: Optional[str] = None,
    month: Optional[int] = None,
    day: Optional[int] = None,
    end_after: Optional[int] = None,
    end_on: Optional[date] = None,
    completed: int = 0,
):
    """Build and validate a rule from command-line options."""
    data: dict[str, Any] = {
        "type": rule_type,
        "frequency": frequency.lower(),
        "interval": interval,
        "completed_count": completed,
    }
    if weekdays:
        data["weekdays"] = [w for value in weekdays for w in value.split(",") if w]
    if month_day is not None:
        data["month_day"] = month_day.strip().lower()
    if month is not None:
        data["year_month"] = month
    if day is not None:
        data["year_day"] = day
    if end_after is not None and end_on is not None:
        raise AppError("Use either --end-after or --end-on, not both", exit_code=2)
    if end_after is not None:
        data.update(end_type="after_count", end_after_count=end_after)
    elif end_on is not None:
        data.update(end_type="on_date", end_on_date=end_on)
    return parse_rule(data)


def _as_date(value: Optional[datetime]) -> Optional[date]:
    return value.date() if value is not None else None


@app.command("preview")
@command_wrapper
def preview_command(
    frequency: str = typer.Option(..., "--frequency", "-f", help="daily, weekly, monthly or yearly"),
    interval: int = typer.Option(1, "--interval", "-i", help="Repeat every N periods"),
    weekday: Optional[List[str]] = typer.Option(
        None, "--weekday", "-w", help="Weekday for weekly rules (mon, tue, ... or 0-6)"
    ),
    month_day: Optional[str] = typer.Option(None, "--month-day", help="Day of month (1-31 or 'last')"),
    month: Optional[int] = typer.Option(None, "--month", help="Month for yearly rules (1-12)"),
    day: Optional[int] = typer.Option(None, "--day", help="Day for yearly rules (1-31)"),
    start: Optional[datetime] = typer.Option(
        None, "--from", formats=_DATE_FORMATS, help="Anchor date (default: today)"
    ),
    count: Optional[int] = typer.Option(None, "--count", "-n", help="Number of dates to show"),
    end_after: Optional[int] = typer.Option(None, "--end-after", help="End after N repeats"),
    end_on: Optional[datetime] = typer.Option(
        None, "--end-on", formats=_DATE_FORMATS, help="End on this date (inclusive)"
    ),
    completed: int = typer.Option(0, "--completed", help="Repeats already completed"),
    output: str = typer.Option("table", "--output", "-o", help="Output format (table, json, yaml)"),
) -> None:
    """Show the upcoming dates of a recurrence rule.

    The list stops early where the series would end.
    """
    rule = build_rule(
        frequency,
        interval=interval,
        weekdays=weekday,
        month_day=month_day,
        month=month,
        day=day,
        end_after=end_after,
        end_on=_as_date(end_on),
        completed=completed,
    )
    if count is None:
        count = get_config_manager().get("recurrence.preview_count")
    anchor = _as_date(start) or date.today()

    dates = preview_occurrences(rule, anchor, count)
    if not dates:
        format_info(f"{describe_rule(rule)}: series has ended")
        return

    rows = [
        {"n": n, "date": d.isoformat(), "weekday": d.strftime("%A")}
        for n, d in enumerate(dates, start=1)
    ]
    if output == "table":
        format_info(describe_rule(rule))
    format_output(rows, output)


@app.command("describe")
@command_wrapper
def describe_command(
    frequency: str = typer.Option(..., "--frequency", "-f", help="daily, weekly, monthly or yearly"),
    interval: int = typer.Option(1, "--interval", "-i", help="Repeat every N periods"),
    weekday: Optional[List[str]] = typer.Option(None, "--weekday", "-w", help="Weekday for weekly rules"),
    month_day: Optional[str] = typer.Option(None, "--month-day", help="Day of month (1-31 or 'last')"),
    month: Optional[int] = typer.Option(None, "--month", help="Month for yearly rules (1-12)"),
    day: Optional[int] = typer.Option(None, "--day", help="Day for yearly rules (1-31)"),
    end_after: Optional[int] = typer.Option(None, "--end-after", help="End after N repeats"),
    end_on: Optional[datetime] = typer.Option(
        None, "--end-on", formats=_DATE_FORMATS, help="End on this date (inclusive)"
    ),
) -> None:
    """Print a human-readable summary of a recurrence rule."""
    rule = build_rule(
        frequency,
        interval=interval,
        weekdays=weekday,
        month_day=month_day,
        month=month,
        day=day,
        end_after=end_after,
        end_on=_as_date(end_on),
    )
    get_console().print(describe_rule(rule))
