"""Fixtures for tests against a live MongoDB.

Tests skip gracefully when no server answers at ``SESSION_TEST_MONGO_URL``.
"""

import os
from collections.abc import AsyncIterator
from functools import lru_cache

import pytest
import pytest_asyncio
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from src.session.registry import ConnectionRegistry, close_connections

TEST_DB = "session-store-test"


@lru_cache(maxsize=1)
def mongo_available(url: str) -> bool:
    client = MongoClient(url, serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
        return True
    except PyMongoError:
        return False
    finally:
        client.close()


@pytest.fixture
def mongo_url() -> str:
    url = os.environ.get("SESSION_TEST_MONGO_URL", "mongodb://127.0.0.1:27017")
    if not mongo_available(url):
        pytest.skip(f"MongoDB not reachable at {url}")
    return url


@pytest.fixture
def base_options(mongo_url: str) -> dict:
    return {"url": mongo_url, "db": TEST_DB}


@pytest_asyncio.fixture
async def registry(mongo_url: str) -> AsyncIterator[ConnectionRegistry]:
    registry = ConnectionRegistry()
    yield registry
    await close_connections(registry)
