# src/tududi/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The editing session and the scheduler depend on Protocols instead of the
SQLite store, so the persistence layer stays swappable and tests can use fakes.
"""

from collections.abc import Sequence
from datetime import date
from typing import Protocol

from ..tasks.task_models import Project, Tag, Task, TaskPayload, TaskStatus


class TaskRepo(Protocol):
    """Synchronous persistence API (implemented by TaskStore)."""

    def get_task(self, task_id: int, *, user_id: int | None = None) -> Task: ...
    def save_task(self, payload: TaskPayload, *, user_id: int) -> Task: ...
    def delete_task(self, task_id: int, *, user_id: int | None = None) -> int: ...
    def list_tags(self, user_id: int) -> list[Tag]: ...
    def get_flag(self, user_id: int, name: str, default: bool = True) -> bool: ...
    def create_project(self, *, user_id: int, name: str, description: str | None = None) -> Project: ...

    # Recurring instance generation
    def list_recurring_parents(self) -> list[Task]: ...
    def list_instances(self, parent_id: int) -> list[Task]: ...
    def update_task_status(self, task_id: int, new_status: TaskStatus) -> None: ...
    def instance_exists(self, parent_id: int, due_date: date) -> bool: ...


class TaskGateway(Protocol):
    """
    Async boundary calls used by an editing session.

    Every call may suspend; failures are NotFoundError / NetworkError /
    ValidationError (see tududi.errors).
    """

    async def fetch_task_by_id(self, task_id: int) -> Task: ...
    async def fetch_tags(self) -> Sequence[Tag]: ...
    async def get_feature_flag(self, name: str) -> bool: ...
    async def save_task(self, payload: TaskPayload) -> Task: ...
    async def delete_task(self, task_id: int) -> int: ...
    async def create_project(self, name: str) -> Project: ...
