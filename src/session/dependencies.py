from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, FastAPI

from .options import OptionsLike, options_from_env
from .registry import ConnectionRegistry
from .store import MongoSessionStore, create

logger = logging.getLogger(__name__)

_SESSION_STORE: Optional[MongoSessionStore] = None
_REGISTRY = ConnectionRegistry()


async def initialise_session_store(options: OptionsLike = None) -> MongoSessionStore:
    """Create session store instance using configuration."""
    global _SESSION_STORE
    if _SESSION_STORE is not None:
        return _SESSION_STORE

    if options is None:
        options = options_from_env()
    store = await create(options, registry=_REGISTRY)
    _SESSION_STORE = store
    logger.info("Initialised session store on collection %s", store.collection.name)
    return store


def set_session_store(store: Optional[MongoSessionStore]) -> None:
    global _SESSION_STORE
    _SESSION_STORE = store


def get_session_store() -> MongoSessionStore:
    if _SESSION_STORE is None:
        raise RuntimeError("Session store has not been initialised")
    return _SESSION_STORE


SessionStoreDep = Annotated[MongoSessionStore, Depends(get_session_store)]


def get_registry() -> ConnectionRegistry:
    return _REGISTRY


async def shutdown_session_store() -> None:
    await _REGISTRY.close_all()
    set_session_store(None)


@asynccontextmanager
async def session_store_lifespan(_: FastAPI) -> AsyncIterator[None]:
    """FastAPI ``lifespan`` hook: open the store on startup, close its connections on shutdown."""
    await initialise_session_store()
    try:
        yield
    finally:
        await shutdown_session_store()
