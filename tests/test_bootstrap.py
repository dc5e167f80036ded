# tests/test_bootstrap.py

from __future__ import annotations

import logging
from pathlib import Path
from types import SimpleNamespace

import pytest

from tududi.cli.bootstrap import create_initial_state, resolve_user
from tududi.config import Settings
from tududi.errors import TududiError
from tududi.logging_setup import _ConsoleNoiseFilter, setup_logging
from tududi.tasks.task_store import TaskStore


def test_create_initial_state_seeds_configured_user(settings: SimpleNamespace) -> None:
    state = create_initial_state(settings=settings)

    user = state.task_store.authenticate("me@example.com", "pw")
    assert user is not None
    assert state.user_id == user.id
    assert settings.db_path.exists()


def test_resolve_user_falls_back_to_existing_then_local(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "db.sqlite3")
    no_seed = SimpleNamespace(app_name="tududi", user_email=None, user_password=None)

    local = resolve_user(store, no_seed)
    assert local.email == "tududi@localhost"
    assert resolve_user(store, no_seed) == local


def test_resolve_user_checks_configured_password(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "db.sqlite3")
    seeded = resolve_user(store, SimpleNamespace(user_email="me@example.com", user_password="pw"))

    again = resolve_user(store, SimpleNamespace(user_email="ME@example.com", user_password="pw"))
    assert again == seeded

    with pytest.raises(TududiError):
        resolve_user(store, SimpleNamespace(user_email="me@example.com", user_password="changed"))


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TUDUDI_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TUDUDI_SCHEDULER_ENABLED", "no")
    monkeypatch.setenv("TUDUDI_SCHEDULER_INTERVAL_SECONDS", "not-a-number")
    monkeypatch.setenv("TUDUDI_USER_EMAIL", " me@example.com ")
    monkeypatch.delenv("TUDUDI_DB_PATH", raising=False)

    s = Settings.from_env()

    assert s.data_dir == tmp_path
    assert s.db_path == tmp_path / "tududi.sqlite3"
    assert s.scheduler_enabled is False
    assert s.scheduler_interval_seconds == 300.0
    assert s.user_email == "me@example.com"


def test_console_filter_keeps_app_logs_and_drops_noise() -> None:
    f = _ConsoleNoiseFilter()

    def rec(name: str, level: int) -> logging.LogRecord:
        return logging.LogRecord(name, level, __file__, 1, "msg", None, None)

    assert f.filter(rec("tududi.editing.session", logging.DEBUG))
    assert not f.filter(rec("tududi.tasks.task_scheduler", logging.INFO))
    assert f.filter(rec("tududi.tasks.task_scheduler", logging.WARNING))
    assert not f.filter(rec("asyncio", logging.WARNING))
    assert f.filter(rec("asyncio", logging.ERROR))


def test_setup_logging_writes_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        log_file = setup_logging(log_dir=tmp_path)
        logging.getLogger("tududi.test").debug("hello file")
        for h in root.handlers:
            h.flush()
        assert "hello file" in log_file.read_text("utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
