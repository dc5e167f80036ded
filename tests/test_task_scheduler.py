# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta

import pytest

from tududi.tasks.task_models import RecurrenceType, TaskPayload, TaskStatus
from tududi.tasks.task_scheduler import (
    MAX_INSTANCES_PER_PASS,
    materialize_due_instances,
    run_recurrence_scheduler,
)
from tududi.tasks.task_store import TaskStore

TODAY = date(2026, 10, 19)


def _parent(store: TaskStore, user_id: int, **fields):
    payload = TaskPayload(name="Water plants", tags=["home"], **fields)
    return store.save_task(payload, user_id=user_id)


def test_weekly_parent_catches_up_once(store: TaskStore, user_id: int) -> None:
    parent = _parent(
        store,
        user_id,
        due_date=date(2026, 10, 5),
        recurrence_type=RecurrenceType.WEEKLY,
        recurrence_weekday=0,
    )

    created = materialize_due_instances(store, TODAY)

    assert [t.due_date for t in created] == [date(2026, 10, 5), date(2026, 10, 12), date(2026, 10, 19)]
    for inst in created:
        assert inst.recurring_parent_id == parent.id
        assert inst.recurrence_type == RecurrenceType.NONE
        assert inst.tags == ["home"]
        assert inst.user_id == user_id

    assert materialize_due_instances(store, TODAY) == []
    assert len(store.list_instances(parent.id)) == 3


def test_end_date_limits_instances(store: TaskStore, user_id: int) -> None:
    _parent(
        store,
        user_id,
        due_date=date(2026, 10, 1),
        recurrence_type=RecurrenceType.DAILY,
        recurrence_end_date=date(2026, 10, 3),
    )

    created = materialize_due_instances(store, TODAY)

    assert [t.due_date for t in created] == [date(2026, 10, 1), date(2026, 10, 2), date(2026, 10, 3)]


def test_catch_up_is_capped_per_pass(store: TaskStore, user_id: int) -> None:
    _parent(store, user_id, due_date=date(2026, 1, 1), recurrence_type=RecurrenceType.DAILY)

    first = materialize_due_instances(store, TODAY)
    second = materialize_due_instances(store, TODAY)

    assert len(first) == MAX_INSTANCES_PER_PASS
    assert len(second) == MAX_INSTANCES_PER_PASS
    assert second[0].due_date == first[-1].due_date + timedelta(days=1)


def test_completion_based_waits_for_completion(store: TaskStore, user_id: int) -> None:
    far_future = date(2100, 1, 1)
    parent = _parent(
        store,
        user_id,
        due_date=date(2026, 10, 17),
        recurrence_type=RecurrenceType.DAILY,
        completion_based=True,
    )

    first = materialize_due_instances(store, far_future)
    assert [t.due_date for t in first] == [date(2026, 10, 17)]

    assert materialize_due_instances(store, far_future) == []

    store.update_task_status(first[0].id, TaskStatus.DONE)
    completed_on = datetime.fromtimestamp(store.get_task(first[0].id).completed_at).date()

    second = materialize_due_instances(store, far_future)
    assert [t.due_date for t in second] == [completed_on + timedelta(days=1)]
    assert len(store.list_instances(parent.id)) == 2


def test_non_recurring_and_archived_tasks_are_ignored(store: TaskStore, user_id: int) -> None:
    store.save_task(TaskPayload(name="one-off", due_date=date(2026, 10, 1)), user_id=user_id)
    _parent(
        store,
        user_id,
        due_date=date(2026, 10, 1),
        recurrence_type=RecurrenceType.DAILY,
        status=TaskStatus.ARCHIVED,
    )

    assert materialize_due_instances(store, TODAY) == []


class FailingRepo:
    def __init__(self) -> None:
        self.calls = 0

    def list_recurring_parents(self):
        self.calls += 1
        raise RuntimeError("db is gone")


@pytest.mark.asyncio
async def test_scheduler_loop_creates_instances(store: TaskStore, user_id: int) -> None:
    parent = _parent(store, user_id, due_date=TODAY, recurrence_type=RecurrenceType.DAILY)

    runner = asyncio.create_task(run_recurrence_scheduler(store, interval_seconds=0.01, today=lambda: TODAY))

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert [t.due_date for t in store.list_instances(parent.id)] == [TODAY]


@pytest.mark.asyncio
async def test_scheduler_loop_survives_errors() -> None:
    repo = FailingRepo()

    runner = asyncio.create_task(run_recurrence_scheduler(repo, interval_seconds=0.01))

    await asyncio.sleep(0.05)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert repo.calls >= 2
