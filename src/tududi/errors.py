# src/tududi/errors.py

from __future__ import annotations

"""
Error taxonomy shared by the store, the gateway and the editing session.

None of these are fatal: callers recover at the session boundary.
"""


class TududiError(Exception):
    """Base class for all application errors."""


class NotFoundError(TududiError, LookupError):
    """A referenced record (task, parent task, project...) does not exist."""

    def __init__(self, kind: str, ident: object) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class NetworkError(TududiError):
    """
    Transient failure talking to the persistence layer.

    Never retried automatically; the user retries by re-opening the session.
    """


class ValidationError(TududiError, ValueError):
    """Payload rejected at the persistence boundary."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
