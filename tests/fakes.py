# tests/fakes.py

from __future__ import annotations

import asyncio
from dataclasses import replace

from tududi.errors import NetworkError, NotFoundError
from tududi.tasks.task_models import Project, Tag, Task, TaskPayload


def make_task(task_id: int, name: str = "Task", **fields) -> Task:
    return Task(id=task_id, uuid=f"uuid-{task_id}", user_id=1, name=name, **fields)


class FakeTaskGateway:
    """
    In-memory TaskGateway for editing-session tests.

    - Captures calls for assertions
    - Fetches can be held open with the *_gate events
    - Failures are injected per call kind
    """

    def __init__(
        self,
        tasks: list[Task] | None = None,
        *,
        tags: list[Tag] | None = None,
        intelligence: bool = True,
    ) -> None:
        self.tasks = {t.id: t for t in (tasks or [])}
        self.tags = list(tags or [])
        self.intelligence = intelligence

        self.parent_gate: asyncio.Event | None = None
        self.flag_gate: asyncio.Event | None = None

        self.fail_fetch_task: Exception | None = None
        self.fail_tags: Exception | None = None
        self.fail_flag: Exception | None = None
        self.fail_save: Exception | None = None
        self.fail_delete: Exception | None = None

        self.fetched_ids: list[int] = []
        self.tag_fetches = 0
        self.flag_fetches = 0
        self.saved: list[TaskPayload] = []
        self.deleted: list[int] = []
        self.created_projects: list[str] = []

    async def fetch_task_by_id(self, task_id: int) -> Task:
        self.fetched_ids.append(task_id)
        if self.parent_gate is not None:
            await self.parent_gate.wait()
        if self.fail_fetch_task is not None:
            raise self.fail_fetch_task
        try:
            return self.tasks[task_id]
        except KeyError:
            raise NotFoundError("task", task_id) from None

    async def fetch_tags(self) -> list[Tag]:
        self.tag_fetches += 1
        if self.fail_tags is not None:
            raise self.fail_tags
        return list(self.tags)

    async def get_feature_flag(self, name: str) -> bool:
        self.flag_fetches += 1
        if self.flag_gate is not None:
            await self.flag_gate.wait()
        if self.fail_flag is not None:
            raise self.fail_flag
        return self.intelligence

    async def save_task(self, payload: TaskPayload) -> Task:
        self.saved.append(payload)
        if self.fail_save is not None:
            raise self.fail_save
        task_id = payload.id or (max(self.tasks, default=0) + 1)
        base = self.tasks.get(task_id) or make_task(task_id)
        saved = replace(base, name=payload.name, tags=list(payload.tags or []))
        self.tasks[task_id] = saved
        return saved

    async def delete_task(self, task_id: int) -> int:
        self.deleted.append(task_id)
        if self.fail_delete is not None:
            raise self.fail_delete
        if self.tasks.pop(task_id, None) is None:
            raise NotFoundError("task", task_id)
        return 0

    async def create_project(self, name: str) -> Project:
        self.created_projects.append(name)
        return Project(id=100 + len(self.created_projects), user_id=1, name=name)


def offline() -> NetworkError:
    return NetworkError("storage unavailable: offline")
