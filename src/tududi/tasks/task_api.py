# src/tududi/tasks/task_api.py

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from typing import TypeVar

from ..errors import NetworkError
from .task_models import Project, Tag, Task, TaskPayload
from .task_store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

TASK_INTELLIGENCE_FLAG = "task_intelligence"


class StoreTaskGateway:
    """
    Async boundary over TaskStore, scoped to one user.

    Store calls are blocking SQLite calls, so they run in a worker thread.
    sqlite3 failures surface as NetworkError (the transient class); domain
    errors (NotFoundError, ValidationError) pass through unchanged.
    """

    def __init__(self, store: TaskStore, *, user_id: int) -> None:
        self._store = store
        self._user_id = int(user_id)

    @property
    def user_id(self) -> int:
        return self._user_id

    async def _call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except sqlite3.Error as e:
            logger.warning("Store call %s failed: %r", getattr(fn, "__name__", fn), e)
            raise NetworkError(f"storage unavailable: {e}") from e

    async def fetch_task_by_id(self, task_id: int) -> Task:
        return await self._call(self._store.get_task, int(task_id), user_id=self._user_id)

    async def fetch_tags(self) -> list[Tag]:
        return await self._call(self._store.list_tags, self._user_id)

    async def get_feature_flag(self, name: str) -> bool:
        return await self._call(self._store.get_flag, self._user_id, name, True)

    async def save_task(self, payload: TaskPayload) -> Task:
        return await self._call(self._store.save_task, payload, user_id=self._user_id)

    async def delete_task(self, task_id: int) -> int:
        return await self._call(self._store.delete_task, int(task_id), user_id=self._user_id)

    async def create_project(self, name: str) -> Project:
        return await self._call(self._store.create_project, user_id=self._user_id, name=name)

