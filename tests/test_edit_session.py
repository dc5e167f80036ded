# tests/test_edit_session.py

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from tududi.editing.lifecycle import CloseReason, ModalRegistry
from tududi.editing.session import EditSessionError, SessionState, TaskEditSession
from tududi.errors import ValidationError
from tududi.tasks.task_models import Priority, Project, RecurrenceType, Tag, TaskStatus

from .fakes import FakeTaskGateway, make_task, offline

TODAY = date(2026, 10, 19)


def _parent_and_child():
    parent = make_task(
        10,
        "Water plants",
        recurrence_type=RecurrenceType.WEEKLY,
        recurrence_interval=1,
        recurrence_weekday=0,
    )
    child = make_task(11, "Water plants", due_date=date(2026, 10, 19), recurring_parent_id=10)
    return parent, child


@pytest.mark.asyncio
async def test_load_parent_without_parent_id_issues_no_fetch() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)

    assert await session.load_parent() is None

    session.open()
    assert session.state == SessionState.OPEN_NO_PARENT
    await session.wait_loaded()

    assert session.state == SessionState.OPEN_NO_PARENT
    assert gw.fetched_ids == []
    session.close()


@pytest.mark.asyncio
async def test_open_loads_parent() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    session = TaskEditSession(child, gw)

    session.open()
    assert session.state == SessionState.OPEN_PARENT_LOADING
    await session.wait_loaded()

    assert session.state == SessionState.OPEN_PARENT_LOADED
    assert session.parent is not None and session.parent.id == 10
    assert gw.fetched_ids == [10]
    assert await session.load_parent() == parent
    session.close()


@pytest.mark.asyncio
async def test_parent_edit_updates_both_snapshots_and_commit_sends_flag() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    session = TaskEditSession(child, gw)
    session.open()
    await session.wait_loaded()

    action = session.parent_edit_action
    assert action is not None
    action("recurrence_type", RecurrenceType.MONTHLY)

    # Both snapshots changed before any save.
    assert session.parent.recurrence_type == RecurrenceType.MONTHLY
    assert session.form.recurrence_type == RecurrenceType.MONTHLY
    assert session.form.update_parent_recurrence is True
    # The rest of the parent's rule is carried along.
    assert session.form.recurrence_weekday == 0
    assert gw.saved == []

    saved = await session.commit()

    assert saved is not None
    payload = gw.saved[-1]
    assert payload.update_parent_recurrence is True
    assert payload.recurrence_type == RecurrenceType.MONTHLY
    assert payload.recurring_parent_id == 10
    assert session.state == SessionState.CLOSED
    assert session.close_reason == CloseReason.SUBMIT


@pytest.mark.asyncio
async def test_close_before_parent_fetch_resolves_stays_closed() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    gw.parent_gate = asyncio.Event()
    session = TaskEditSession(child, gw)

    session.open()
    assert session.state == SessionState.OPEN_PARENT_LOADING
    session.close()

    gw.parent_gate.set()
    await session.wait_loaded()

    assert session.state == SessionState.CLOSED
    assert session.parent is None


@pytest.mark.asyncio
async def test_missing_parent_degrades_to_no_parent_without_error() -> None:
    child = make_task(11, "Orphan", recurring_parent_id=99)
    gw = FakeTaskGateway([child])
    session = TaskEditSession(child, gw)

    session.open()
    await session.wait_loaded()

    assert session.state == SessionState.OPEN_NO_PARENT
    assert session.parent is None
    assert session.error_message is None
    assert session.parent_edit_action is None
    assert session.edit_parent_action is None
    session.close()


@pytest.mark.asyncio
async def test_parent_fetch_network_error_degrades_to_no_parent() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    gw.fail_fetch_task = offline()
    session = TaskEditSession(child, gw)

    session.open()
    await session.wait_loaded()

    assert session.state == SessionState.OPEN_NO_PARENT
    assert session.error_message is None
    session.close()


@pytest.mark.asyncio
async def test_propose_parent_edit_without_parent_raises() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    with pytest.raises(EditSessionError):
        session.propose_parent_edit("recurrence_type", RecurrenceType.DAILY)
    session.close()


@pytest.mark.asyncio
async def test_propose_parent_edit_rejects_non_recurrence_field() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    session = TaskEditSession(child, gw)
    session.open()
    await session.wait_loaded()

    with pytest.raises(ValueError):
        session.propose_parent_edit("name", "renamed")
    assert session.parent.name == "Water plants"
    assert session.form.update_parent_recurrence is False
    session.close()


@pytest.mark.asyncio
async def test_edit_parent_action_closes_then_navigates() -> None:
    parent, child = _parent_and_child()
    gw = FakeTaskGateway([parent, child])
    modals = ModalRegistry()
    opened_next = []
    session = TaskEditSession(child, gw, modals=modals, on_edit_parent=opened_next.append)
    session.open()
    await session.wait_loaded()

    action = session.edit_parent_action
    assert action is not None
    action()

    assert opened_next == [parent]
    assert session.state == SessionState.CLOSED
    assert session.close_reason == CloseReason.NAVIGATE
    assert modals.open_count == 0


@pytest.mark.asyncio
async def test_intelligence_suggests_due_date_for_tomorrow() -> None:
    gw = FakeTaskGateway([make_task(1, "")])
    session = TaskEditSession(gw.tasks[1], gw, today=TODAY)
    session.open()
    await session.wait_loaded()

    session.change_field("name", "Pay rent tomorrow")

    assert session.analysis is not None
    assert session.analysis.due_date == date(2026, 10, 20)
    session.close()


@pytest.mark.asyncio
async def test_intelligence_disabled_yields_no_analysis() -> None:
    gw = FakeTaskGateway([make_task(1, "")], intelligence=False)
    session = TaskEditSession(gw.tasks[1], gw, today=TODAY)
    session.open()
    await session.wait_loaded()

    session.change_field("name", "Pay rent tomorrow")

    assert session.intelligence_enabled is False
    assert session.analysis is None
    session.close()


@pytest.mark.asyncio
async def test_no_analysis_until_flag_is_known() -> None:
    gw = FakeTaskGateway([make_task(1, "Pay rent tomorrow")])
    gw.flag_gate = asyncio.Event()
    session = TaskEditSession(gw.tasks[1], gw, today=TODAY)
    session.open()
    await asyncio.sleep(0)

    assert session.analysis is None

    gw.flag_gate.set()
    await session.wait_loaded()
    assert session.analysis is not None
    assert session.analysis.due_date == date(2026, 10, 20)
    session.close()


@pytest.mark.asyncio
async def test_flag_fetch_error_defaults_to_enabled() -> None:
    gw = FakeTaskGateway([make_task(1, "Pay rent tomorrow")], intelligence=False)
    gw.fail_flag = offline()
    session = TaskEditSession(gw.tasks[1], gw, today=TODAY)
    session.open()
    await session.wait_loaded()

    assert session.intelligence_enabled is True
    assert session.analysis is not None
    session.close()


@pytest.mark.asyncio
async def test_late_flag_result_after_close_is_dropped() -> None:
    gw = FakeTaskGateway([make_task(1)], intelligence=False)
    gw.flag_gate = asyncio.Event()
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    session.close(CloseReason.ESCAPE)

    gw.flag_gate.set()
    await session.wait_loaded()

    assert session.intelligence_enabled is True
    assert session.close_reason == CloseReason.ESCAPE


@pytest.mark.asyncio
async def test_tags_failure_gives_empty_list_and_is_not_retried() -> None:
    gw = FakeTaskGateway([make_task(1)], tags=[Tag(1, "home")])
    gw.fail_tags = offline()
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    assert session.available_tags == []
    assert session.tags_loaded is True
    assert gw.tag_fetches == 1
    assert session.error_message is None
    session.close()


@pytest.mark.asyncio
async def test_tags_loaded_and_refetched_on_reopen() -> None:
    gw = FakeTaskGateway([make_task(1)], tags=[Tag(1, "home"), Tag(2, "work")])
    session = TaskEditSession(gw.tasks[1], gw)

    async with session.opened():
        await session.wait_loaded()
        assert [t.name for t in session.available_tags] == ["home", "work"]

    async with session.opened():
        await session.wait_loaded()

    assert gw.tag_fetches == 2


@pytest.mark.asyncio
async def test_commit_failure_keeps_session_open_with_error() -> None:
    gw = FakeTaskGateway([make_task(1, "Draft")])
    gw.fail_save = offline()
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    assert await session.commit() is None
    assert session.is_open
    assert session.error_message is not None

    gw.fail_save = ValidationError("name is required", field="name")
    assert await session.commit() is None
    assert session.is_open
    assert "name is required" in session.error_message
    session.close()


@pytest.mark.asyncio
async def test_duplicate_tags_pass_through_to_payload() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    session.set_tags(["home", "home", "work"])
    await session.commit()

    assert gw.saved[-1].tags == ["home", "home", "work"]


@pytest.mark.asyncio
async def test_status_in_progress_marks_today_and_priority_coerces() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    session.set_status(TaskStatus.IN_PROGRESS)
    session.set_priority(2)

    assert session.form.today is True
    assert session.form.priority == Priority.HIGH
    session.close()


@pytest.mark.asyncio
async def test_project_search_select_and_create() -> None:
    projects = [Project(1, 1, "Home"), Project(2, 1, "Homework"), Project(3, 1, "Work")]
    gw = FakeTaskGateway([make_task(1, project_id=3)])
    session = TaskEditSession(gw.tasks[1], gw, projects=projects)
    session.open()
    await session.wait_loaded()

    assert session.project_query == "Work"
    assert [p.name for p in session.search_projects("home")] == ["Home", "Homework"]

    session.select_project(projects[0])
    assert session.form.project_id == 1

    created = await session.create_project("Garden")
    assert created is not None
    assert session.form.project_id == created.id
    assert session.project_query == "Garden"
    assert gw.created_projects == ["Garden"]
    session.close()


@pytest.mark.asyncio
async def test_delete_closes_session() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)
    session.open()
    await session.wait_loaded()

    assert await session.delete() is True
    assert gw.deleted == [1]
    assert session.close_reason == CloseReason.DELETE


@pytest.mark.asyncio
async def test_modal_lease_released_exactly_once() -> None:
    modals = ModalRegistry()
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw, modals=modals)

    with pytest.raises(RuntimeError):
        async with session.opened():
            assert modals.scroll_locked
            await session.wait_loaded()
            raise RuntimeError("boom")

    assert not modals.scroll_locked
    assert session.close_reason == CloseReason.CANCEL

    session.close(CloseReason.ESCAPE)
    assert session.close_reason == CloseReason.CANCEL
    assert modals.open_count == 0


@pytest.mark.asyncio
async def test_operations_on_closed_session_raise() -> None:
    gw = FakeTaskGateway([make_task(1)])
    session = TaskEditSession(gw.tasks[1], gw)

    with pytest.raises(EditSessionError):
        session.change_field("name", "x")
    with pytest.raises(EditSessionError):
        await session.commit()
