# src/tududi/editing/lifecycle.py

from __future__ import annotations

import logging
from enum import StrEnum

logger = logging.getLogger(__name__)


class CloseReason(StrEnum):
    """Every way an editing session can end."""

    CANCEL = "cancel"
    ESCAPE = "escape"
    OUTSIDE_CLICK = "outside_click"
    SUBMIT = "submit"
    DELETE = "delete"
    NAVIGATE = "navigate"


class ModalLease:
    """
    Proof that a modal editor is open.

    Held by exactly one editing session; released once, on whatever exit path
    closes it. Releasing twice is a no-op.
    """

    __slots__ = ("_registry", "owner", "released_by")

    def __init__(self, registry: ModalRegistry, owner: object) -> None:
        self._registry = registry
        self.owner = owner
        self.released_by: CloseReason | None = None

    @property
    def active(self) -> bool:
        return self.released_by is None

    def release(self, reason: CloseReason) -> bool:
        if not self.active:
            return False
        self.released_by = reason
        self._registry._forget(self)
        return True


class ModalRegistry:
    """
    Tracks open editors.

    Replaces ambient UI mutation (scroll locks, global key/click listeners):
    while any lease is held the surrounding view is locked, and the lock goes
    away when the last lease is released.
    """

    def __init__(self) -> None:
        self._leases: list[ModalLease] = []

    def acquire(self, owner: object) -> ModalLease:
        lease = ModalLease(self, owner)
        self._leases.append(lease)
        logger.debug("Modal opened owner=%r open=%d", owner, len(self._leases))
        return lease

    def _forget(self, lease: ModalLease) -> None:
        self._leases.remove(lease)
        logger.debug(
            "Modal closed owner=%r reason=%s open=%d", lease.owner, lease.released_by, len(self._leases)
        )

    @property
    def open_count(self) -> int:
        return len(self._leases)

    @property
    def scroll_locked(self) -> bool:
        return bool(self._leases)
