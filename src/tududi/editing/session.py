# src/tududi/editing/session.py

from __future__ import annotations

"""
Task editing session.

One session is the lifetime of one open task editor, from open() to close().
While open it owns the in-memory form state exclusively and runs three
independent background loads:

- the recurring parent (only when the task is a generated instance),
- the task-intelligence feature flag,
- the list of available tags.

Loads are cooperative: close() does not abort them, it bumps a generation
counter and every completion checks it before touching session state, so a
late result from a closed session is dropped.

State machine (parent dimension):

    closed -> open_no_parent                      (no recurring_parent_id)
    closed -> open_parent_loading -> open_parent_loaded
                                  -> open_no_parent (fetch failed: logged only)
    open_* -> closed
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable, Coroutine, Iterable
from dataclasses import fields, replace
from datetime import date
from enum import StrEnum
from typing import Any

from ..core.ports import TaskGateway
from ..errors import NetworkError, NotFoundError, TududiError, ValidationError
from ..intelligence.analyzer import TaskAnalysis, analyze_task_name
from ..tasks.recurrence import RECURRENCE_FIELDS, rule_fields
from ..tasks.task_api import TASK_INTELLIGENCE_FLAG
from ..tasks.task_models import Priority, Project, Tag, Task, TaskPayload, TaskStatus
from .lifecycle import CloseReason, ModalLease, ModalRegistry

logger = logging.getLogger(__name__)

_FORM_FIELDS = frozenset(f.name for f in fields(TaskPayload)) - {
    "id",
    "recurring_parent_id",
    "update_parent_recurrence",
}


class SessionState(StrEnum):
    CLOSED = "closed"
    OPEN_NO_PARENT = "open_no_parent"
    OPEN_PARENT_LOADING = "open_parent_loading"
    OPEN_PARENT_LOADED = "open_parent_loaded"


class EditSessionError(TududiError):
    """Operation not available in the session's current state."""


class TaskEditSession:
    def __init__(
        self,
        task: Task,
        gateway: TaskGateway,
        *,
        projects: Iterable[Project] = (),
        modals: ModalRegistry | None = None,
        on_edit_parent: Callable[[Task], None] | None = None,
        today: date | None = None,
    ) -> None:
        self._task = task
        self._gateway = gateway
        self._projects = list(projects)
        self._modals = modals if modals is not None else ModalRegistry()
        self._on_edit_parent = on_edit_parent
        self._today = today

        self._state = SessionState.CLOSED
        self._generation = 0
        self._lease: ModalLease | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._flag_resolved = False

        self.form = TaskPayload.from_task(task)
        self.parent: Task | None = None
        self.available_tags: list[Tag] = []
        self.tags_loaded = False
        self.intelligence_enabled = True
        self.analysis: TaskAnalysis | None = None
        self.project_query = ""
        self.filtered_projects: list[Project] = list(self._projects)
        self.error_message: str | None = None
        self.close_reason: CloseReason | None = None

    # ---- lifecycle ----

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state != SessionState.CLOSED

    @property
    def task(self) -> Task:
        return self._task

    def open(self) -> None:
        """Open the editor and start background loads. Must run inside an event loop."""
        if self.is_open:
            return

        self._generation += 1
        gen = self._generation
        self._lease = self._modals.acquire(self)

        self.form = TaskPayload.from_task(self._task)
        self.parent = None
        self.error_message = None
        self.close_reason = None
        self.analysis = None
        self._flag_resolved = False

        current = next((p for p in self._projects if p.id == self._task.project_id), None)
        self.project_query = current.name if current else ""
        self.filtered_projects = list(self._projects)

        if self._task.recurring_parent_id is None:
            self._state = SessionState.OPEN_NO_PARENT
        else:
            self._state = SessionState.OPEN_PARENT_LOADING
            self._spawn(self._apply_parent(gen))

        self._spawn(self._apply_feature_flag(gen))
        if not self.tags_loaded:
            self._spawn(self._apply_tags(gen))

        logger.debug("Edit session opened task_id=%s state=%s", self._task.id, self._state)

    def close(self, reason: CloseReason = CloseReason.CANCEL) -> None:
        """Close from any open state; in-flight loads become no-ops."""
        if not self.is_open:
            return

        self._generation += 1
        self._state = SessionState.CLOSED
        self.close_reason = reason
        # Next open re-fetches tags.
        self.tags_loaded = False
        if self._lease is not None:
            self._lease.release(reason)
            self._lease = None

        logger.debug("Edit session closed task_id=%s reason=%s", self._task.id, reason)

    @contextlib.asynccontextmanager
    async def opened(self) -> AsyncIterator[TaskEditSession]:
        """Open for the duration of a block; any exit path closes the session."""
        self.open()
        try:
            yield self
        finally:
            self.close(CloseReason.CANCEL)

    async def wait_loaded(self) -> None:
        """Wait for the background loads started by open()."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        t = asyncio.create_task(coro)
        self._pending.add(t)
        t.add_done_callback(self._pending.discard)

    def _is_current(self, gen: int) -> bool:
        return self.is_open and gen == self._generation

    def _require_open(self) -> None:
        if not self.is_open:
            raise EditSessionError("edit session is closed")

    # ---- background loads ----

    async def load_parent(self) -> Task | None:
        """
        Fetch the recurring parent of the edited task.

        No fetch is issued when the task has no recurring_parent_id. Fetch
        failures are logged and reported as "no parent".
        """
        parent_id = self._task.recurring_parent_id
        if parent_id is None:
            return None
        try:
            return await self._gateway.fetch_task_by_id(parent_id)
        except (NotFoundError, NetworkError) as e:
            logger.warning("Error fetching parent task %s for task %s: %s", parent_id, self._task.id, e)
            return None

    async def _apply_parent(self, gen: int) -> None:
        parent = await self.load_parent()
        if not self._is_current(gen):
            logger.debug("Discarding parent load for closed session task_id=%s", self._task.id)
            return
        self.parent = parent
        self._state = SessionState.OPEN_PARENT_LOADED if parent is not None else SessionState.OPEN_NO_PARENT

    async def _apply_feature_flag(self, gen: int) -> None:
        try:
            enabled = bool(await self._gateway.get_feature_flag(TASK_INTELLIGENCE_FLAG))
        except TududiError as e:
            logger.warning("Error fetching task intelligence setting: %s", e)
            enabled = True
        if not self._is_current(gen):
            return
        self.intelligence_enabled = enabled
        self._flag_resolved = True
        self._refresh_analysis()

    async def _apply_tags(self, gen: int) -> None:
        try:
            tags = list(await self._gateway.fetch_tags() or [])
        except TududiError as e:
            logger.warning("Error fetching tags: %s", e)
            tags = []
        if not self._is_current(gen):
            return
        self.available_tags = tags
        # Marked loaded on failure too, so a broken tag service is not re-hit per open.
        self.tags_loaded = True

    def _refresh_analysis(self) -> None:
        # Nothing is shown until the flag is known, so a disabled user never
        # sees suggestions flash in and out.
        if self._flag_resolved and self.intelligence_enabled and self.form.name:
            self.analysis = analyze_task_name(self.form.name, today=self._today)
        else:
            self.analysis = None

    # ---- form editing ----

    def change_field(self, name: str, value: Any) -> None:
        self._require_open()
        if name not in _FORM_FIELDS:
            raise ValueError(f"unknown task field: {name}")
        setattr(self.form, name, value)
        if name == "name":
            self._refresh_analysis()

    def change_recurrence(self, field: str, value: Any) -> None:
        """Edit the task's own recurrence rule."""
        self._require_open()
        if field not in RECURRENCE_FIELDS:
            raise ValueError(f"not a recurrence field: {field}")
        setattr(self.form, field, value)

    def set_tags(self, names: Iterable[str]) -> None:
        self._require_open()
        self.form.tags = list(names)

    def set_status(self, status: TaskStatus | str) -> None:
        self._require_open()
        self.form.status = status
        if status == TaskStatus.IN_PROGRESS:
            self.form.today = True

    def set_priority(self, priority: Priority | str | int | None) -> None:
        self._require_open()
        self.form.priority = Priority.coerce(priority)

    def search_projects(self, query: str) -> list[Project]:
        self.project_query = query
        q = (query or "").lower()
        self.filtered_projects = [p for p in self._projects if q in p.name.lower()]
        return self.filtered_projects

    def select_project(self, project: Project) -> None:
        self._require_open()
        self.form.project_id = project.id
        self.project_query = project.name

    async def create_project(self, name: str) -> Project | None:
        self._require_open()
        name = (name or "").strip()
        if not name:
            return None
        gen = self._generation
        try:
            project = await self._gateway.create_project(name)
        except TududiError:
            logger.exception("Error creating project %r", name)
            if self._is_current(gen):
                self.error_message = "Project creation failed."
            return None
        if self._is_current(gen):
            self._projects.append(project)
            self.filtered_projects = [*self.filtered_projects, project]
            self.select_project(project)
        return project

    # ---- parent / child reconciliation ----

    def propose_parent_edit(self, field: str, value: Any) -> None:
        """
        Edit the parent's recurrence rule from the child's editor.

        The local parent snapshot and the pending child form change together:
        the form is re-seeded with the parent's whole (edited) rule and marked
        update_parent_recurrence, so the save writes that rule to the parent.
        """
        self._require_open()
        if self.parent is None:
            raise EditSessionError("no recurring parent loaded")
        if field not in RECURRENCE_FIELDS:
            raise ValueError(f"not a recurrence field: {field}")

        new_parent = replace(self.parent, **{field: value})
        new_form = replace(self.form, **rule_fields(new_parent), update_parent_recurrence=True)
        self.parent, self.form = new_parent, new_form

    @property
    def parent_edit_action(self) -> Callable[[str, Any], None] | None:
        """propose_parent_edit when a parent is loaded, otherwise None."""
        if self.is_open and self.parent is not None:
            return self.propose_parent_edit
        return None

    @property
    def edit_parent_action(self) -> Callable[[], None] | None:
        """Switch to editing the parent; None when there is no parent to switch to."""
        if self.is_open and self.parent is not None and self._on_edit_parent is not None:
            return self._navigate_to_parent
        return None

    def _navigate_to_parent(self) -> None:
        parent = self.parent
        callback = self._on_edit_parent
        self.close(CloseReason.NAVIGATE)
        if parent is not None and callback is not None:
            callback(parent)

    # ---- persistence ----

    def build_payload(self) -> TaskPayload:
        """The child's full field set; tag names pass through as-is."""
        return replace(self.form, tags=list(self.form.tags or []))

    async def commit(self) -> Task | None:
        """
        Save the task. On success the session closes (submit) and the saved
        task is returned; on failure error_message is set, the session stays
        open and None is returned.
        """
        self._require_open()
        gen = self._generation
        payload = self.build_payload()
        try:
            saved = await self._gateway.save_task(payload)
        except ValidationError as e:
            logger.info("Task %s rejected: %s", payload.id, e)
            if self._is_current(gen):
                self.error_message = f"Could not save task: {e}"
            return None
        except (NotFoundError, NetworkError) as e:
            logger.warning("Task %s save failed: %s", payload.id, e)
            if self._is_current(gen):
                self.error_message = f"Could not save task: {e}"
            return None

        logger.info("Task saved id=%s update_parent=%s", saved.id, payload.update_parent_recurrence)
        if self._is_current(gen):
            self.close(CloseReason.SUBMIT)
        return saved

    async def delete(self) -> bool:
        self._require_open()
        task_id = self.form.id
        if task_id is None:
            return False
        gen = self._generation
        try:
            await self._gateway.delete_task(task_id)
        except (NotFoundError, NetworkError) as e:
            logger.error("Failed to delete task %s: %s", task_id, e)
            if self._is_current(gen):
                self.error_message = "Failed to delete task."
            return False
        if self._is_current(gen):
            self.close(CloseReason.DELETE)
        return True
