# src/tududi/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

from ..cli import render
from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..editing.lifecycle import CloseReason
from ..editing.session import EditSessionError, TaskEditSession
from ..errors import TududiError
from ..tasks.recurrence import RECURRENCE_FIELDS
from ..tasks.task_models import RecurrenceType, Task

logger = logging.getLogger(__name__)

ReadLine = Callable[[str], str]
WriteLine = Callable[[str], None]

EDIT_HELP = (
    "Edit commands:\n"
    "  field=value          set a field (name, note, due_date, today, status, priority,\n"
    "                       recurrence_type, recurrence_interval, recurrence_end_date, ...)\n"
    "  parent field=value   change the recurring parent's rule from this instance\n"
    "  tags a,b,c           replace tags\n"
    "  project <name>       pick a project (created when nothing matches)\n"
    "  parent               switch to editing the recurring parent\n"
    "  show                 show the pending form\n"
    "  save | cancel | delete"
)

_DATE_FIELDS = {"due_date", "recurrence_end_date"}
_INT_FIELDS = {"recurrence_interval", "recurrence_weekday", "recurrence_month_day", "recurrence_week_of_month"}
_BOOL_FIELDS = {"today", "completion_based"}


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _parse_value(field: str, raw: str) -> Any:
    raw = raw.strip()
    if field in _DATE_FIELDS:
        if raw.lower() in ("", "none", "-"):
            return None
        try:
            return date_parser.parse(raw).date()
        except (ValueError, OverflowError):
            raise ValueError(f"not a date: {raw!r}") from None
    if field in _INT_FIELDS:
        if raw.lower() in ("", "none", "-"):
            return None
        return int(raw)
    if field in _BOOL_FIELDS:
        return raw.lower() in {"1", "true", "yes", "y", "on"}
    if field == "recurrence_type":
        return RecurrenceType(raw.lower() or "none")
    if field == "note":
        return raw or None
    return raw


def _format_form(session: TaskEditSession) -> str:
    form = session.form
    lines = [f"Editing #{form.id}: {form.name}"]
    lines.append(f"  status={form.status} priority={form.priority} today={form.today}")
    lines.append(f"  due_date={form.due_date} project={session.project_query or '-'}")
    lines.append(f"  tags={', '.join(form.tags or []) or '-'}")
    if session.parent is not None:
        p = session.parent
        lines.append(
            f"  recurring parent #{p.id}: {p.recurrence_type} every {p.recurrence_interval}"
            + (f" until {p.recurrence_end_date}" if p.recurrence_end_date else "")
        )
    else:
        lines.append(f"  recurrence={form.recurrence_type} every {form.recurrence_interval}")
    if session.available_tags:
        lines.append(f"  known tags: {', '.join(t.name for t in session.available_tags)}")
    if session.analysis is not None and session.analysis.has_suggestions:
        lines.append(render.format_analysis(session.analysis))
    return "\n".join(lines)


async def _apply_edit_line(session: TaskEditSession, line: str, write: WriteLine) -> None:
    cmd, _, rest = line.partition(" ")
    cmd = cmd.lower()

    if cmd in ("save", "submit"):
        saved = await session.commit()
        if saved is not None:
            write(f"Saved: {render.format_task(saved)}")
        return

    if cmd in ("cancel", "q", "quit"):
        session.close(CloseReason.CANCEL)
        write("Edit cancelled.")
        return

    if cmd in ("esc", "escape"):
        session.close(CloseReason.ESCAPE)
        write("Edit cancelled.")
        return

    if cmd == "delete":
        if await session.delete():
            write("Task deleted.")
        return

    if cmd == "show":
        write(_format_form(session))
        return

    if cmd == "help":
        write(EDIT_HELP)
        return

    if cmd == "tags":
        session.set_tags(t.strip() for t in rest.split(",") if t.strip())
        return

    if cmd == "project":
        await _choose_project(session, rest.strip(), write)
        return

    if cmd == "parent" and not rest.strip():
        action = session.edit_parent_action
        if action is None:
            write("This task has no recurring parent.")
            return
        action()
        return

    if cmd == "parent":
        action_edit = session.parent_edit_action
        if action_edit is None:
            write("No recurring parent loaded.")
            return
        field, sep, raw = rest.partition("=")
        field = field.strip()
        if not sep or field not in RECURRENCE_FIELDS:
            write(f"Usage: parent <{'|'.join(RECURRENCE_FIELDS)}>=<value>")
            return
        action_edit(field, _parse_value(field, raw))
        write(f"Parent {field} -> {raw.strip() or 'none'} (saved together with this task)")
        return

    field, sep, raw = line.partition("=")
    field = field.strip()
    if not sep:
        write("Unknown edit command. Type 'help'.")
        return

    if field == "status":
        session.set_status(raw.strip().lower())
    elif field == "priority":
        session.set_priority(raw.strip().lower())
    elif field in RECURRENCE_FIELDS:
        session.change_recurrence(field, _parse_value(field, raw))
    else:
        session.change_field(field, _parse_value(field, raw))
        if field == "name" and session.analysis is not None and session.analysis.has_suggestions:
            write(render.format_analysis(session.analysis))


async def _choose_project(session: TaskEditSession, name: str, write: WriteLine) -> None:
    if not name:
        write("Usage: project <name>")
        return
    matches = session.search_projects(name)
    exact = [p for p in matches if p.name.lower() == name.lower()]
    if exact or len(matches) == 1:
        project = (exact or matches)[0]
        session.select_project(project)
        write(f"Project: {render.format_project(project)}")
        return
    if matches:
        write("Matching projects: " + ", ".join(p.name for p in matches))
        return
    project = await session.create_project(name)
    if project is not None:
        write(f"Project created: {render.format_project(project)}")


async def _edit_once(
        state: AppState,
        task: Task,
        read_line: ReadLine,
        write: WriteLine,
        today: date | None,
) -> Task | None:
    """Run one editing session; returns the parent to edit next, if the user switched to it."""
    gateway = state.gateway()
    projects = await asyncio.to_thread(state.task_store.list_projects, state.user_id)
    switch_to: list[Task] = []

    session = TaskEditSession(
        task,
        gateway,
        projects=projects,
        modals=state.modals,
        on_edit_parent=switch_to.append,
        today=today,
    )

    async with session.opened():
        await session.wait_loaded()
        write(_format_form(session))

        while session.is_open:
            try:
                line = read_line("edit> ").strip()
            except (EOFError, KeyboardInterrupt):
                session.close(CloseReason.ESCAPE)
                write("Edit cancelled.")
                break
            if not line:
                continue

            try:
                await _apply_edit_line(session, line, write)
            except (ValueError, EditSessionError) as e:
                write(f"Invalid edit: {e}")

            if session.error_message:
                write(session.error_message)
                session.error_message = None

    return switch_to[0] if switch_to else None


async def _edit_loop(
        state: AppState,
        task_id: int,
        read_line: ReadLine,
        write: WriteLine,
        today: date | None,
) -> None:
    task: Task | None = await state.gateway().fetch_task_by_id(task_id)

    while task is not None:
        task = await _edit_once(state, task, read_line, write, today)
        if task is not None:
            write(f"Switching to recurring parent #{task.id}.")


def edit_task_interactive(
        state: AppState,
        task_id: int,
        *,
        read_line: ReadLine = input,
        write: WriteLine = print,
        today: date | None = None,
) -> None:
    """Blocking edit loop for one task (and its parent, if the user switches to it)."""
    try:
        asyncio.run(_edit_loop(state, task_id, read_line, write, today))
    except TududiError as e:
        logger.info("Edit of task %s failed: %s", task_id, e)
        write(f"Error: {e}")


def run_console_loop(
        state: AppState,
        *,
        read_line: ReadLine = input,
        write: WriteLine = print,
) -> None:
    logger.info("Console connector started.")
    write(f"[{_ts_local()}] [CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def emit(text: str) -> None:
        write(f"[{_ts_local()}] {text}")

    while True:
        try:
            user_input = read_line(">>> ").strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            write("")
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        parts = user_input.split()
        if parts[0].lower() == "/edit" and len(parts) == 2 and parts[1].lstrip("#").isdigit():
            try:
                edit_task_interactive(state, int(parts[1].lstrip("#")), read_line=read_line, write=write)
            except Exception:
                logger.exception("Edit session crashed.")
                write("Internal error while editing a task.")
            continue

        try:
            cmd_response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            cmd_response = "Internal error while handling a command."

        if cmd_response is None:
            cmd_response = "Commands start with '/'. Use /help to list them."

        write(f"[{_ts_local()}] {cmd_response}")

    logger.info("Console connector finished.")
