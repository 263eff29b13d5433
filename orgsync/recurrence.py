"""
Recurrence policies for repeating tasks and habits.

- standard (``+``): the next occurrence is the original date plus one
  interval, whatever the completion date. Late completions leave a backlog.
- relative (``.+``): the next occurrence is the completion date plus one
  interval.
- strict (``++``): whole intervals are counted from the original date until
  the result falls after the completion date. Month and year steps are
  measured from the original date so the day of month stays anchored.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from .org.timestamps import Repeater, parse_repeater


class RecurrencePolicy(str, Enum):
    STANDARD = "standard"
    RELATIVE = "relative"
    STRICT = "strict"


MARKS = {
    "+": RecurrencePolicy.STANDARD,
    ".+": RecurrencePolicy.RELATIVE,
    "++": RecurrencePolicy.STRICT,
}
POLICY_MARKS = {policy: mark for mark, policy in MARKS.items()}


def add_months(day: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month."""
    total = day.year * 12 + (day.month - 1) + months
    year, month = divmod(total, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def add_interval(day: date, count: int, unit: str) -> date:
    if unit == "d":
        return day + timedelta(days=count)
    if unit == "w":
        return day + timedelta(weeks=count)
    if unit == "m":
        return add_months(day, count)
    if unit == "y":
        return add_months(day, count * 12)
    raise ValueError(f"Unknown interval unit: {unit!r}")


@dataclass(frozen=True)
class Recurrence:
    policy: RecurrencePolicy
    count: int
    unit: str

    @classmethod
    def from_repeater(cls, repeater: Repeater) -> "Recurrence":
        return cls(policy=MARKS[repeater.mark], count=repeater.count, unit=repeater.unit)

    @classmethod
    def parse(cls, token: str) -> "Recurrence | None":
        repeater = parse_repeater(token)
        return cls.from_repeater(repeater) if repeater else None

    def to_repeater(self) -> Repeater:
        return Repeater(mark=POLICY_MARKS[self.policy], count=self.count, unit=self.unit)

    def __str__(self) -> str:
        return str(self.to_repeater())

    def next_date(self, original: date, completed: date) -> date:
        """
        Compute the next occurrence after a completion.

        Args:
            original: The currently scheduled date.
            completed: The day the occurrence was completed.

        Returns:
            The new scheduled date.
        """
        if self.policy == RecurrencePolicy.STANDARD:
            return add_interval(original, self.count, self.unit)
        if self.policy == RecurrencePolicy.RELATIVE:
            return add_interval(completed, self.count, self.unit)

        steps = 1
        candidate = add_interval(original, self.count, self.unit)
        while candidate <= completed:
            steps += 1
            candidate = add_interval(original, self.count * steps, self.unit)
        return candidate
