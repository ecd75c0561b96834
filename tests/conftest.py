"""In-memory stand-ins for the motor client, database and collection objects."""

from types import SimpleNamespace
from typing import Any, Optional

import pytest


class FakeCollection:
    def __init__(self, name: str, database: "FakeDatabase", index_error: Optional[Exception] = None) -> None:
        self.name = name
        self.database = database
        self.documents: dict[Any, dict[str, Any]] = {}
        self.indexes: list[tuple[tuple, dict[str, Any]]] = []
        self.index_error = index_error
        self.error: Optional[Exception] = None

    def _raise_if_failing(self) -> None:
        if self.error is not None:
            raise self.error

    async def find_one(self, query: dict[str, Any]) -> Optional[dict[str, Any]]:
        self._raise_if_failing()
        document = self.documents.get(query["_id"])
        return dict(document) if document else None

    async def replace_one(self, query: dict[str, Any], document: dict[str, Any], upsert: bool = False) -> None:
        self._raise_if_failing()
        if upsert or query["_id"] in self.documents:
            self.documents[query["_id"]] = dict(document)

    async def delete_one(self, query: dict[str, Any]) -> None:
        self._raise_if_failing()
        self.documents.pop(query["_id"], None)

    async def create_index(self, keys: list[tuple[str, int]], **kwargs: Any) -> str:
        if self.index_error is not None:
            error, self.index_error = self.index_error, None
            raise error
        entry = (tuple(keys), kwargs)
        if entry not in self.indexes:
            self.indexes.append(entry)
        return "_".join(f"{key}_{direction}" for key, direction in keys)


class FakeDatabase:
    def __init__(self, name: str, client: "FakeClient") -> None:
        self.name = name
        self.client = client
        self.collections: dict[str, FakeCollection] = {}
        self.commands: list[tuple[str, tuple, dict[str, Any]]] = []

    def __getitem__(self, name: str) -> FakeCollection:
        if self.client.settings.collection_error is not None:
            raise self.client.settings.collection_error
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, self, index_error=self.client.settings.index_error)
        return self.collections[name]

    async def command(self, command: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
        self.commands.append((command, args, kwargs))
        error = self.client.settings.command_errors.get(command)
        if error is not None:
            raise error
        return self.client.settings.command_results.get(command, {"ok": 1.0})


class FakeClient:
    def __init__(self, settings: "FakeClientFactory", **kwargs: Any) -> None:
        self.settings = settings
        self.kwargs = kwargs
        self.closed = False
        self.databases: dict[str, FakeDatabase] = {}
        address = (kwargs.get("host", "127.0.0.1"), kwargs.get("port", 27017))
        self.topology_description = SimpleNamespace(server_descriptions=lambda: {address: None})

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name, self)
        return self.databases[name]

    def close(self) -> None:
        self.closed = True


class FakeClientFactory:
    """Callable used in place of ``AsyncIOMotorClient``; remembers every client it builds."""

    def __init__(self) -> None:
        self.clients: list[FakeClient] = []
        self.command_results: dict[str, dict[str, Any]] = {}
        self.command_errors: dict[str, Exception] = {}
        self.index_error: Optional[Exception] = None
        self.collection_error: Optional[Exception] = None

    def __call__(self, **kwargs: Any) -> FakeClient:
        client = FakeClient(self, **kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.clients[-1]


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def collection(client_factory: FakeClientFactory) -> FakeCollection:
    return client_factory(host="127.0.0.1", port=27017)["session-test"]["sessions"]
