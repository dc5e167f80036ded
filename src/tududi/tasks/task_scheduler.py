# src/tududi/tasks/task_scheduler.py

from __future__ import annotations

"""
Recurring instance generator.

A small polling loop that, for every recurring parent:
- finds the latest generated instance,
- computes the occurrences that are due by today,
- creates the missing instances through the repo.

completion_based parents only get their next instance once the latest one is
done; the next date is then computed from the completion date.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from ..core.ports import TaskRepo
from ..errors import TududiError
from .recurrence import RecurrenceRule, next_occurrence, occurrences_between, spawn_instance
from .task_models import Task

logger = logging.getLogger(__name__)

MAX_INSTANCES_PER_PASS = 31


def _anchor_of(parent: Task) -> date:
    if parent.due_date is not None:
        return parent.due_date
    if parent.created_at:
        return datetime.fromtimestamp(parent.created_at).date()
    return date.today()


def _due_dates_for(repo: TaskRepo, parent: Task, today: date, limit: int) -> list[date]:
    rule = RecurrenceRule.from_task(parent)
    anchor = _anchor_of(parent)

    dated = [t for t in repo.list_instances(parent.id) if t.due_date is not None]
    latest = max(dated, key=lambda t: t.due_date, default=None)

    if rule.completion_based and latest is not None:
        if not latest.status.is_complete:
            return []
        base = datetime.fromtimestamp(latest.completed_at).date() if latest.completed_at else latest.due_date
        nxt = next_occurrence(rule, base, anchor=base)
        return [nxt] if nxt is not None and nxt <= today else []

    if latest is None:
        # The first instance may fall on the anchor itself.
        after = anchor - timedelta(days=1)
        limit = 1 if rule.completion_based else limit
    else:
        after = latest.due_date

    return occurrences_between(rule, after, today, anchor=anchor, limit=limit)


def materialize_due_instances(
        task_store: TaskRepo,
        today: date,
        *,
        max_per_parent: int = MAX_INSTANCES_PER_PASS,
) -> list[Task]:
    """
    Create every missing instance due on or before `today`.

    Failures are per parent: one broken parent is logged and skipped.
    Returns the created instances.
    """
    created: list[Task] = []

    for parent in task_store.list_recurring_parents():
        try:
            dates = _due_dates_for(task_store, parent, today, max_per_parent)
        except Exception:
            logger.exception("Recurrence computation failed parent_id=%s", parent.id)
            continue

        for due in dates:
            if task_store.instance_exists(parent.id, due):
                continue
            try:
                instance = task_store.save_task(spawn_instance(parent, due), user_id=parent.user_id)
            except TududiError:
                logger.exception("Instance creation failed parent_id=%s due=%s", parent.id, due)
                break
            created.append(instance)
            logger.info("Instance created parent_id=%s id=%s due=%s", parent.id, instance.id, due)

    return created


async def run_recurrence_scheduler(
        task_store: TaskRepo,
        *,
        interval_seconds: float = 300.0,
        today: Callable[[], date] = date.today,
) -> None:
    """
    Simple polling scheduler.

    Every interval_seconds, materialize the instances due today. Errors are
    logged and the loop keeps going.

    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            created = materialize_due_instances(task_store, today())
            if created:
                logger.info("Recurrence pass created %d instance(s)", len(created))
        except Exception:
            logger.exception("materialize_due_instances failed")

        await asyncio.sleep(sleep_s)
