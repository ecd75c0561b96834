# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Session persistence package providing a MongoDB-backed store with TTL expiry."""

from .dependencies import SessionStoreDep, get_session_store, session_store_lifespan
from .errors import ConfigurationError, SessionStoreError, StorageError, StoreConnectionError
from .options import SessionStoreOptions, options_from_env
from .registry import ConnectionRegistry, close_connections
from .resolver import resolve
from .store import MongoSessionStore, create

__all__ = [
    "ConfigurationError",
    "ConnectionRegistry",
    "MongoSessionStore",
    "SessionStoreDep",
    "SessionStoreError",
    "SessionStoreOptions",
    "StorageError",
    "StoreConnectionError",
    "close_connections",
    "create",
    "get_session_store",
    "options_from_env",
    "resolve",
    "session_store_lifespan",
]
