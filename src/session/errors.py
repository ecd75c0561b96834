"""Exceptions raised by the Mongo session store."""

from __future__ import annotations

from typing import Optional


class SessionStoreError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SessionStoreError, ValueError):
    """Options are missing or cannot be resolved into a connection."""


class StoreConnectionError(SessionStoreError, ConnectionError):
    """A store creation step failed.

    ``phase`` is one of ``open``, ``authenticate``, ``collection`` or ``index``.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str,
        username: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.username = username
        self.collection = collection


class StorageError(SessionStoreError):
    """A load, save or remove call failed at the driver level."""

    def __init__(self, message: str, *, operation: str, session_id: str) -> None:
        super().__init__(message)
        self.operation = operation
        self.session_id = session_id
