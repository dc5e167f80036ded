# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from tududi.core.state import AppState
from tududi.tasks.task_store import TaskStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI modules.

    A SimpleNamespace rather than the real config keeps tests independent of
    the process environment.
    """
    return SimpleNamespace(
        app_name="tududi-test",
        log_level="INFO",
        console_enabled=True,
        scheduler_enabled=False,
        scheduler_interval_seconds=0.01,
        data_dir=tmp_path,
        db_path=tmp_path / "tududi.sqlite3",
        user_email="me@example.com",
        user_password="pw",
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def user_id(store: TaskStore, settings: SimpleNamespace) -> int:
    return store.ensure_user(settings.user_email, settings.user_password).id


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore, user_id: int) -> AppState:
    """AppState over a real SQLite store in tmp_path."""
    return AppState(settings=settings, task_store=store, user_id=user_id)
