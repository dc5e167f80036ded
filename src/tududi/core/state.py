# src/tududi/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..editing.lifecycle import ModalRegistry
from ..tasks.task_api import StoreTaskGateway
from ..tasks.task_store import TaskStore


@dataclass
class AppState:
    # Settings or a test SimpleNamespace with the same attributes.
    settings: Any

    task_store: TaskStore
    user_id: int

    modals: ModalRegistry = field(default_factory=ModalRegistry)

    def gateway(self) -> StoreTaskGateway:
        return StoreTaskGateway(self.task_store, user_id=self.user_id)
