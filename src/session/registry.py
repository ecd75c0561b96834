from __future__ import annotations

import inspect
import logging
from typing import Any

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks the clients opened by :func:`src.session.store.create` so they can be closed together.

    References are non-owning: each client still belongs to the store that
    opened it. Intended for orchestrated teardown (test harnesses, application
    shutdown).
    """

    def __init__(self) -> None:
        self._handles: list[Any] = []

    def register(self, handle: Any) -> None:
        self._handles.append(handle)

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, handle: Any) -> bool:
        return any(registered is handle for registered in self._handles)

    async def close_all(self) -> None:
        """Close every registered handle in registration order, then forget them."""
        handles, self._handles = self._handles, []
        for handle in handles:
            close = getattr(handle, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result
        if handles:
            logger.info("Closed %d session store connection(s)", len(handles))


async def close_connections(registry: ConnectionRegistry) -> None:
    await registry.close_all()
