# src/tududi/tasks/recurrence.py

from __future__ import annotations

"""
Recurrence rules for parent tasks.

A recurring parent generates child instances that point back at it through
recurring_parent_id. The hierarchy is exactly one level deep: an instance never
recurs on its own and never becomes a parent.

Occurrence math is delegated to dateutil.rrule.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from dateutil import rrule

from ..errors import ValidationError
from .task_models import RecurrenceType, Task, TaskPayload

RECURRENCE_FIELDS: tuple[str, ...] = (
    "recurrence_type",
    "recurrence_interval",
    "recurrence_end_date",
    "recurrence_weekday",
    "recurrence_month_day",
    "recurrence_week_of_month",
    "completion_based",
)

_WEEKDAYS = (rrule.MO, rrule.TU, rrule.WE, rrule.TH, rrule.FR, rrule.SA, rrule.SU)

_FREQ = {
    RecurrenceType.DAILY: rrule.DAILY,
    RecurrenceType.WEEKLY: rrule.WEEKLY,
    RecurrenceType.MONTHLY: rrule.MONTHLY,
    RecurrenceType.MONTHLY_WEEKDAY: rrule.MONTHLY,
    RecurrenceType.MONTHLY_LAST_DAY: rrule.MONTHLY,
}


@dataclass(slots=True, frozen=True)
class RecurrenceRule:
    type: RecurrenceType = RecurrenceType.NONE
    interval: int = 1
    end_date: date | None = None
    weekday: int | None = None
    month_day: int | None = None
    week_of_month: int | None = None
    completion_based: bool = False

    @classmethod
    def from_task(cls, task: Task) -> RecurrenceRule:
        return cls(
            type=task.recurrence_type,
            interval=max(1, int(task.recurrence_interval or 1)),
            end_date=task.recurrence_end_date,
            weekday=task.recurrence_weekday,
            month_day=task.recurrence_month_day,
            week_of_month=task.recurrence_week_of_month,
            completion_based=bool(task.completion_based),
        )

    @property
    def is_recurring(self) -> bool:
        return self.type != RecurrenceType.NONE


def _monthday_clamped(day: int) -> dict[str, Any]:
    # Day 31 in a 30-day month falls back to the 30th (28th/29th in February).
    if day <= 28:
        return {"bymonthday": day}
    return {"bymonthday": tuple(range(28, day + 1)), "bysetpos": -1}


def _rrule_params(rule: RecurrenceRule, anchor: date) -> dict[str, Any]:
    params: dict[str, Any] = {"freq": _FREQ[rule.type], "interval": rule.interval}

    if rule.type == RecurrenceType.WEEKLY:
        wd = rule.weekday if rule.weekday is not None else anchor.weekday()
        params["byweekday"] = _WEEKDAYS[wd % 7]

    elif rule.type == RecurrenceType.MONTHLY:
        day = rule.month_day if rule.month_day is not None else anchor.day
        params.update(_monthday_clamped(max(1, min(31, day))))

    elif rule.type == RecurrenceType.MONTHLY_WEEKDAY:
        wd = rule.weekday if rule.weekday is not None else anchor.weekday()
        nth = rule.week_of_month or ((anchor.day - 1) // 7 + 1)
        params["byweekday"] = _WEEKDAYS[wd % 7](-1 if nth >= 5 else nth)

    elif rule.type == RecurrenceType.MONTHLY_LAST_DAY:
        params["bymonthday"] = -1

    return params


def next_occurrence(rule: RecurrenceRule, after: date, *, anchor: date | None = None) -> date | None:
    """
    First date strictly after `after` that matches the rule.

    `anchor` fixes the phase of interval-based rules (every 2 days *starting
    from* the anchor); it defaults to `after`. Returns None for non-recurring
    rules and once recurrence_end_date has passed.
    """
    if not rule.is_recurring:
        return None

    start = anchor or after
    until = datetime.combine(rule.end_date, datetime.min.time()) if rule.end_date else None

    rr = rrule.rrule(
        dtstart=datetime.combine(start, datetime.min.time()),
        until=until,
        **_rrule_params(rule, start),
    )
    nxt = rr.after(datetime.combine(after, datetime.min.time()), inc=False)
    return nxt.date() if nxt is not None else None


def occurrences_between(
    rule: RecurrenceRule,
    after: date,
    until: date,
    *,
    anchor: date | None = None,
    limit: int = 31,
) -> list[date]:
    """Occurrences in (after, until], at most `limit` of them."""
    out: list[date] = []
    cur = after
    while len(out) < limit:
        nxt = next_occurrence(rule, cur, anchor=anchor or after)
        if nxt is None or nxt > until:
            break
        out.append(nxt)
        cur = nxt
    return out


def spawn_instance(parent: Task, due_date: date) -> TaskPayload:
    """Payload for a generated child of `parent` due on `due_date`."""
    if parent.is_generated_instance:
        raise ValidationError(
            f"task {parent.id} is a generated instance and cannot spawn instances",
            field="recurring_parent_id",
        )
    if not parent.is_recurring:
        raise ValidationError(f"task {parent.id} has no recurrence rule", field="recurrence_type")

    return TaskPayload(
        name=parent.name,
        note=parent.note,
        priority=parent.priority,
        project_id=parent.project_id,
        tags=list(parent.tags),
        due_date=due_date,
        recurrence_type=RecurrenceType.NONE,
        recurring_parent_id=parent.id,
    )


def rule_fields(task: Task) -> dict[str, Any]:
    """All recurrence fields of a task, including unset ones."""
    return {name: getattr(task, name) for name in RECURRENCE_FIELDS}
