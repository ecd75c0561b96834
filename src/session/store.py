# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.errors import OperationFailure, PyMongoError

from .errors import StorageError, StoreConnectionError
from .models import DEFAULT_EXPIRATION_SECONDS, UPDATED_AT_FIELD, ConnectionDescriptor, SessionRecord
from .options import OptionsLike
from .registry import ConnectionRegistry
from .resolver import resolve

logger = logging.getLogger(__name__)

# Server error codes.
_AUTHENTICATION_FAILED = 18
_INDEX_OPTIONS_CONFLICT = 85
_INDEX_KEY_SPECS_CONFLICT = 86

ClientFactory = Callable[..., Any]


class MongoSessionStore:
    """Stores opaque session blobs in a MongoDB collection as ``{_id, blob, updatedAt}`` documents."""

    def __init__(
        self,
        collection: Any,
        *,
        ttl_seconds: int = DEFAULT_EXPIRATION_SECONDS,
        client: Any = None,
    ) -> None:
        self._collection = collection
        self._ttl_seconds = ttl_seconds
        self._client = client
        self._last_updated_at: Optional[datetime] = None

    @property
    def collection(self) -> Any:
        return self._collection

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    async def ensure_ttl_index(self) -> None:
        """Create the expiry index on ``updatedAt``. Safe to call repeatedly."""
        name = self._collection.name
        logger.debug("Create index on %s with expiry after %d seconds", UPDATED_AT_FIELD, self._ttl_seconds)
        try:
            try:
                await self._collection.create_index(
                    [(UPDATED_AT_FIELD, ASCENDING)],
                    expireAfterSeconds=self._ttl_seconds,
                )
            except OperationFailure as exc:
                if exc.code not in (_INDEX_OPTIONS_CONFLICT, _INDEX_KEY_SPECS_CONFLICT):
                    raise
                logger.warning(
                    "TTL index on %s exists with different options, updating expiry to %d seconds",
                    name,
                    self._ttl_seconds,
                )
                await self._collection.database.command(
                    "collMod",
                    name,
                    index={"keyPattern": {UPDATED_AT_FIELD: 1}, "expireAfterSeconds": self._ttl_seconds},
                )
        except PyMongoError as exc:
            raise StoreConnectionError(
                f"Error creating index on {name}: {exc}",
                phase="index",
                collection=name,
            ) from exc

    async def load(self, session_id: str) -> Optional[str]:
        record = await self.get_record(session_id)
        return record.blob if record else None

    async def get_record(self, session_id: str) -> Optional[SessionRecord]:
        try:
            document = await self._collection.find_one({"_id": session_id})
        except PyMongoError as exc:
            raise StorageError(
                f"Error loading session {session_id}: {exc}", operation="load", session_id=session_id
            ) from exc
        if not document:
            return None
        return SessionRecord.from_document(document)

    async def save(self, session_id: str, blob: str) -> None:
        record = SessionRecord(id=session_id, blob=blob, updated_at=self._next_timestamp())
        try:
            await self._collection.replace_one({"_id": session_id}, record.to_document(), upsert=True)
        except PyMongoError as exc:
            raise StorageError(
                f"Error saving session {session_id}: {exc}", operation="save", session_id=session_id
            ) from exc

    async def remove(self, session_id: str) -> None:
        try:
            await self._collection.delete_one({"_id": session_id})
        except PyMongoError as exc:
            raise StorageError(
                f"Error removing session {session_id}: {exc}", operation="remove", session_id=session_id
            ) from exc

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _next_timestamp(self) -> datetime:
        # BSON dates keep milliseconds only.
        now = datetime.now(timezone.utc)
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_updated_at is not None and now <= self._last_updated_at:
            now = self._last_updated_at + timedelta(milliseconds=1)
        self._last_updated_at = now
        return now


def _client_kwargs(descriptor: ConnectionDescriptor) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "host": descriptor.host,
        "port": descriptor.port,
        "tls": descriptor.tls,
        "retryReads": descriptor.auto_reconnect,
        "retryWrites": descriptor.auto_reconnect,
        "w": 1,
    }
    if descriptor.credentials:
        kwargs["username"] = descriptor.credentials.username
        kwargs["password"] = descriptor.credentials.password
        kwargs["authSource"] = descriptor.db_name
    kwargs.update(descriptor.client_options)
    return kwargs


async def _open_database(descriptor: ConnectionDescriptor, client_factory: ClientFactory) -> tuple[Any, Any, bool]:
    """Returns ``(client, database, owned)``."""
    client = None
    owned = not descriptor.reuses_handle
    try:
        if owned:
            logger.debug("Open db connection to %s:%s", descriptor.host, descriptor.port)
            client = client_factory(**_client_kwargs(descriptor))
            database = client[descriptor.db_name]
        else:
            database = descriptor.handle
            client = database.client
        await database.command("ping")
    except OperationFailure as exc:
        if owned and client is not None:
            client.close()
        if descriptor.credentials and exc.code == _AUTHENTICATION_FAILED:
            username = descriptor.credentials.username
            raise StoreConnectionError(
                f"Error authenticating with {username}: {exc}", phase="authenticate", username=username
            ) from exc
        raise StoreConnectionError(f"Error opening db: {exc}", phase="open") from exc
    except PyMongoError as exc:
        if owned and client is not None:
            client.close()
        raise StoreConnectionError(f"Error opening db: {exc}", phase="open") from exc
    return client, database, owned


async def _authenticate(database: Any, descriptor: ConnectionDescriptor) -> None:
    username = descriptor.credentials.username
    logger.debug("Authenticate with %s", username)
    try:
        status = await database.command("connectionStatus")
    except PyMongoError as exc:
        raise StoreConnectionError(
            f"Error authenticating with {username}: {exc}", phase="authenticate", username=username
        ) from exc
    users = status.get("authInfo", {}).get("authenticatedUsers", [])
    if not any(user.get("user") == username for user in users):
        raise StoreConnectionError(
            f"Error authenticating with {username}: not authenticated on {descriptor.db_name}",
            phase="authenticate",
            username=username,
        )


def _open_collection(database: Any, name: str) -> Any:
    logger.debug("Open collection %s", name)
    try:
        return database[name]
    except PyMongoError as exc:
        raise StoreConnectionError(
            f"Error opening collection {name}: {exc}", phase="collection", collection=name
        ) from exc


async def create(
    options: OptionsLike = None,
    *,
    registry: Optional[ConnectionRegistry] = None,
    client_factory: ClientFactory = AsyncIOMotorClient,
) -> MongoSessionStore:
    """Resolve options, connect, and return a ready :class:`MongoSessionStore`.

    Raises ``ConfigurationError`` before any connection attempt when options
    cannot be resolved, and ``StoreConnectionError`` tagged with the failing
    phase otherwise. A client opened here is closed again if a later step
    fails; a reused handle is left as it was.
    """
    descriptor = resolve(options)
    client, database, owned = await _open_database(descriptor, client_factory)

    try:
        if descriptor.credentials:
            await _authenticate(database, descriptor)
        collection = _open_collection(database, descriptor.collection)
        store = MongoSessionStore(
            collection,
            ttl_seconds=descriptor.ttl_seconds,
            client=client if owned else None,
        )
        await store.ensure_ttl_index()
    except StoreConnectionError:
        if owned:
            client.close()
        raise

    if owned and registry is not None:
        registry.register(client)
    logger.info(
        "Session store ready on %s.%s (ttl %ds, source %s)",
        descriptor.db_name,
        descriptor.collection,
        descriptor.ttl_seconds,
        descriptor.source,
    )
    return store
