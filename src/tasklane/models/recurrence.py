"""Recurrence rule models.

A rule is a tagged union keyed by ``frequency``. Each variant only carries
the fields its frequency needs, so callers never have to check whether a
weekly rule happens to have a ``month_day``.
"""

from __future__ import annotations

import calendar
from datetime import date, time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

LAST_DAY = "last"

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

# Longest possible length of each month (February counted in a leap year).
_MAX_MONTH_DAYS = {m: calendar.monthrange(2024, m)[1] for m in range(1, 13)}


class RecurrenceType(str, Enum):
    """When the next occurrence of a series is created."""

    AFTER_COMPLETION = "after_completion"
    SCHEDULED = "scheduled"


class EndType(str, Enum):
    """How a series terminates."""

    NEVER = "never"
    AFTER_COUNT = "after_count"
    ON_DATE = "on_date"


def parse_weekday(value: Any) -> int:
    """Convert a weekday given as int (Monday=0) or name/abbreviation to an int."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid weekday: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        name = value.strip().lower()
        if name.isdigit():
            return int(name)
        for index, full in enumerate(WEEKDAY_NAMES):
            if len(name) >= 2 and full.startswith(name):
                return index
    raise ValueError(f"Invalid weekday: {value!r}")


class _RuleBase(BaseModel):
    """Fields shared by every frequency variant."""

    type: RecurrenceType = RecurrenceType.AFTER_COMPLETION
    interval: int = Field(default=1, ge=1)
    start_date: date | None = None
    end_type: EndType = EndType.NEVER
    end_after_count: int | None = Field(default=None, ge=1)
    end_on_date: date | None = None
    completed_count: int = Field(default=0, ge=0)
    next_date: date | None = None
    reminder_time: time | None = None
    deadline_days_before: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_end_condition(self):
        if self.end_type is EndType.AFTER_COUNT and self.end_after_count is None:
            raise ValueError("end_after_count is required when end_type is 'after_count'")
        if self.end_type is EndType.ON_DATE and self.end_on_date is None:
            raise ValueError("end_on_date is required when end_type is 'on_date'")
        return self

    def with_completion(self, next_date: date):
        """Return a copy recording one more completion and the next scheduled date."""
        return self.model_copy(
            update={"completed_count": self.completed_count + 1, "next_date": next_date}
        )


class DailyRule(_RuleBase):
    frequency: Literal["daily"] = "daily"


class WeeklyRule(_RuleBase):
    frequency: Literal["weekly"] = "weekly"
    weekdays: frozenset[Annotated[int, Field(ge=0, le=6)]] = Field(min_length=1)

    @field_validator("weekdays", mode="before")
    @classmethod
    def _coerce_weekdays(cls, value: Any) -> Any:
        if isinstance(value, (str, int)):
            value = [value]
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(parse_weekday(v) for v in value)
        return value


class MonthlyRule(_RuleBase):
    """Monthly rule; ``month_day`` is clamped to the length of each month."""

    frequency: Literal["monthly"] = "monthly"
    month_day: Annotated[int, Field(ge=1, le=31)] | Literal["last"]

    @property
    def is_last_day(self) -> bool:
        return self.month_day == LAST_DAY


class YearlyRule(_RuleBase):
    frequency: Literal["yearly"] = "yearly"
    year_month: int = Field(ge=1, le=12)
    year_day: int = Field(ge=1, le=31)

    @model_validator(mode="after")
    def _check_day_exists(self):
        # Feb 29 is allowed and degrades to Feb 28 in non-leap years.
        if self.year_day > _MAX_MONTH_DAYS[self.year_month]:
            raise ValueError(
                f"{calendar.month_name[self.year_month]} never has day {self.year_day}"
            )
        return self


RecurrenceRule = Annotated[
    Union[DailyRule, WeeklyRule, MonthlyRule, YearlyRule],
    Field(discriminator="frequency"),
]

_rule_adapter: TypeAdapter = TypeAdapter(RecurrenceRule)

RULE_TYPES = (DailyRule, WeeklyRule, MonthlyRule, YearlyRule)


def parse_rule(data: Any) -> DailyRule | WeeklyRule | MonthlyRule | YearlyRule | None:
    """Validate a recurrence rule given as a model, a mapping or ``None``.

    Raises:
        ValidationError: If the rule is malformed.
    """
    if data is None:
        return None
    if isinstance(data, RULE_TYPES):
        data = data.model_dump()
    try:
        return _rule_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid recurrence rule: {e}") from e
