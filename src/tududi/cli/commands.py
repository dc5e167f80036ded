# src/tududi/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import date
from typing import cast

from ..core.state import AppState
from ..errors import TududiError
from ..intelligence.analyzer import analyze_task_name
from ..tasks.task_api import TASK_INTELLIGENCE_FLAG
from ..tasks.task_models import Task, TaskPayload, TaskStatus
from ..tasks.task_scheduler import materialize_due_instances
from . import render

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Domain errors (not found, validation, storage) become the reply text;
        anything else propagates to the caller.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except TududiError as e:
            logger.info("/%s failed: %s", name, e)
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _parse_id(args: list[str]) -> int | None:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


def _own_task(state: AppState, task_id: int) -> Task:
    return state.task_store.get_task(task_id, user_id=state.user_id)


def _intelligence_enabled(state: AppState) -> bool:
    return state.task_store.get_flag(state.user_id, TASK_INTELLIGENCE_FLAG, True)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_inbox(state: AppState, args: list[str]) -> str:
    return render.format_tasks(state.task_store.list_inbox(state.user_id), empty="Inbox is empty.")


def cmd_today(state: AppState, args: list[str]) -> str:
    tasks = state.task_store.list_today(state.user_id, date.today())
    return render.format_tasks(tasks, empty="Nothing for today.")


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks            -> all open tasks
    /tasks <project>  -> open tasks of one project
    """
    project_id = _parse_id(args)
    if args and project_id is None:
        return "Usage: /tasks [project_id]"
    if project_id is not None:
        state.task_store.get_project(project_id, user_id=state.user_id)
    return render.format_tasks(state.task_store.list_tasks(state.user_id, project_id=project_id))


def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /add <task name>"

    task = state.task_store.save_task(TaskPayload(name=name), user_id=state.user_id)
    logger.debug("Task added via console id=%s", task.id)

    if emit is not None and _intelligence_enabled(state):
        analysis = analyze_task_name(name)
        if analysis.has_suggestions:
            emit(render.format_analysis(analysis))

    return f"Added: {render.format_task(task)}"


def cmd_show(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args)
    if task_id is None:
        return "Usage: /show <task_id>"
    return render.format_task_details(_own_task(state, task_id))


def cmd_done(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args)
    if task_id is None:
        return "Usage: /done <task_id>"
    task = _own_task(state, task_id)
    state.task_store.update_task_status(task.id, TaskStatus.DONE)
    return f"Done: #{task.id} {task.name}"


def cmd_delete(state: AppState, args: list[str]) -> str:
    task_id = _parse_id(args)
    if task_id is None:
        return "Usage: /delete <task_id>"
    task = _own_task(state, task_id)
    orphaned = state.task_store.delete_task(task.id, user_id=state.user_id)
    msg = f"Deleted: #{task.id} {task.name}"
    if orphaned:
        msg += f" ({orphaned} generated instance(s) kept as standalone tasks)"
    return msg


def cmd_analyze(state: AppState, args: list[str]) -> str:
    text = " ".join(args).strip()
    if not text:
        return "Usage: /analyze <task name>"
    if not _intelligence_enabled(state):
        return "Task intelligence is off. Use /intel on to enable it."
    return render.format_analysis(analyze_task_name(text))


def cmd_projects(state: AppState, args: list[str]) -> str:
    projects = state.task_store.list_projects(state.user_id)
    if not projects:
        return "No projects."
    return "\n".join(render.format_project(p) for p in projects)


def cmd_project(state: AppState, args: list[str]) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /project <name>"
    project = state.task_store.create_project(user_id=state.user_id, name=name)
    return f"Project created: {render.format_project(project)}"


def cmd_areas(state: AppState, args: list[str]) -> str:
    areas = state.task_store.list_areas(state.user_id)
    if not areas:
        return "No areas."
    return "\n".join(f"#{a.id} {a.name}" for a in areas)


def cmd_area(state: AppState, args: list[str]) -> str:
    name = " ".join(args).strip()
    if not name:
        return "Usage: /area <name>"
    area = state.task_store.create_area(user_id=state.user_id, name=name)
    return f"Area created: #{area.id} {area.name}"


def cmd_notes(state: AppState, args: list[str]) -> str:
    notes = state.task_store.list_notes(state.user_id)
    if not notes:
        return "No notes."
    return "\n".join(render.format_note(n) for n in notes)


def cmd_note(state: AppState, args: list[str]) -> str:
    title = " ".join(args).strip()
    if not title:
        return "Usage: /note <title>"
    note = state.task_store.create_note(user_id=state.user_id, title=title)
    return f"Note created: {render.format_note(note)}"


def cmd_tags(state: AppState, args: list[str]) -> str:
    tags = state.task_store.list_tags(state.user_id)
    if not tags:
        return "No tags."
    return ", ".join(t.name for t in tags)


def cmd_intel(state: AppState, args: list[str]) -> str:
    """
    /intel      -> show status
    /intel on   -> enable task intelligence
    /intel off  -> disable task intelligence
    """
    if not args:
        status = "ON" if _intelligence_enabled(state) else "OFF"
        return f"Task intelligence is currently {status}. Use /intel on or /intel off."

    arg = args[0].lower()
    if arg in ("on", "1", "true", "yes"):
        state.task_store.set_flag(state.user_id, TASK_INTELLIGENCE_FLAG, True)
        return "Task intelligence enabled."
    if arg in ("off", "0", "false", "no"):
        state.task_store.set_flag(state.user_id, TASK_INTELLIGENCE_FLAG, False)
        return "Task intelligence disabled."
    return "Usage: /intel on or /intel off."


def cmd_generate(state: AppState, args: list[str]) -> str:
    created = materialize_due_instances(state.task_store, date.today())
    if not created:
        return "No recurring instances due."
    return "Generated:\n" + render.format_tasks(created)


def cmd_edit(state: AppState, args: list[str]) -> str:
    return "Interactive editing is only available in the console: /edit <task_id>"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("inbox", cmd_inbox, help_text="Open tasks without a project.")
registry.register("today", cmd_today, help_text="Tasks flagged for today or due by today.")
registry.register("tasks", cmd_tasks, help_text="Open tasks: /tasks [project_id].")
registry.register("add", cmd_add, help_text="Create a task: /add <name>.")
registry.register("show", cmd_show, help_text="Task details: /show <id>.")
registry.register("edit", cmd_edit, help_text="Edit a task interactively: /edit <id>.")
registry.register("done", cmd_done, help_text="Mark a task done: /done <id>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("analyze", cmd_analyze, help_text="Suggestions for a task name: /analyze <text>.")
registry.register("projects", cmd_projects, help_text="List projects.")
registry.register("project", cmd_project, help_text="Create a project: /project <name>.")
registry.register("areas", cmd_areas, help_text="List areas.")
registry.register("area", cmd_area, help_text="Create an area: /area <name>.")
registry.register("notes", cmd_notes, help_text="List notes.")
registry.register("note", cmd_note, help_text="Create a note: /note <title>.")
registry.register("tags", cmd_tags, help_text="List tags.")
registry.register("intel", cmd_intel, help_text="Task intelligence: /intel on | /intel off.")
registry.register("generate", cmd_generate, help_text="Create due recurring instances now.")
