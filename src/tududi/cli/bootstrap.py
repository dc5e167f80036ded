# src/tududi/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- opens the task store and resolves the acting user,
- wires everything into AppState.
"""

from __future__ import annotations

import logging
import secrets

from ..config import get_settings
from ..core.state import AppState
from ..errors import TududiError
from ..tasks.task_models import User
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def resolve_user(store: TaskStore, settings) -> User:
    """
    The configured seed user when TUDUDI_USER_EMAIL/TUDUDI_USER_PASSWORD are set
    (created on first start, password checked on later starts), otherwise the
    first user on record, otherwise a new local user.
    """
    email = getattr(settings, "user_email", None)
    password = getattr(settings, "user_password", None)
    if email and password:
        store.ensure_user(email, password)
        user = store.authenticate(email, password)
        if user is None:
            raise TududiError(f"TUDUDI_USER_PASSWORD does not match the stored password for {email}")
        return user
    if email or password:
        logger.warning("Both TUDUDI_USER_EMAIL and TUDUDI_USER_PASSWORD are needed to seed a user.")

    user = store.first_user()
    if user is not None:
        return user

    app_name = str(getattr(settings, "app_name", "tududi"))
    user = store.ensure_user(f"{app_name}@localhost", secrets.token_urlsafe(24))
    logger.info("No user configured; created local user %s", user.email)
    return user


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    user = resolve_user(store, settings)

    return AppState(settings=settings, task_store=store, user_id=user.id)
