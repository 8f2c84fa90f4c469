"""
Pytest configuration and shared fixtures for MDB_FACADE tests.

This module provides:
- Mock Motor client / database / collection / session fixtures
- A patched ``Database`` fixture that never touches the network
- Testcontainers fixtures for integration tests
"""

import os
from typing import Any, Dict, Iterable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mdb_facade.database import Database

# ============================================================================
# MOCK FACTORIES
# ============================================================================


def make_cursor(documents: Iterable[Dict[str, Any]] | None = None) -> MagicMock:
    """Create a mock Motor cursor whose chain methods return itself."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=list(documents or []))
    return cursor


def make_collection(name: str) -> MagicMock:
    """Create a mock Motor collection."""
    collection = MagicMock()
    collection.name = name
    collection.find = MagicMock(return_value=make_cursor())
    collection.find_one = AsyncMock(return_value=None)
    collection.count_documents = AsyncMock(return_value=0)
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="id1"))
    collection.insert_many = AsyncMock(return_value=MagicMock(inserted_ids=["id1", "id2"]))
    collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
    collection.update_many = AsyncMock(return_value=MagicMock(modified_count=2))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=2))
    collection.aggregate = MagicMock(return_value=make_cursor())
    collection.create_index = AsyncMock(side_effect=lambda keys, **options: options.get("name"))
    collection.drop_index = AsyncMock()
    collection.rename = AsyncMock()
    return collection


# ============================================================================
# MOCK MOTOR FIXTURES
# ============================================================================


@pytest.fixture
def mock_mongo_database() -> MagicMock:
    """Create a mock Motor database that hands out one mock per collection name."""
    db = MagicMock()
    db.name = "test_db"
    collections: Dict[str, MagicMock] = {}

    def get_collection(name: str) -> MagicMock:
        if name not in collections:
            collections[name] = make_collection(name)
        return collections[name]

    db.__getitem__.side_effect = get_collection
    db.create_collection = AsyncMock(side_effect=lambda name, **kwargs: get_collection(name))
    db.drop_collection = AsyncMock()
    db.list_collection_names = AsyncMock(return_value=[])
    return db


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock Motor client session."""
    session = MagicMock()
    session.start_transaction = MagicMock()
    session.commit_transaction = AsyncMock()
    session.abort_transaction = AsyncMock()
    session.end_session = AsyncMock()
    return session


@pytest.fixture
def mock_mongo_client(mock_mongo_database: MagicMock, mock_session: MagicMock) -> MagicMock:
    """Create a mock Motor client."""
    client = MagicMock()
    client.admin.command = AsyncMock(return_value={"ok": 1})
    client.__getitem__.return_value = mock_mongo_database
    client.start_session = AsyncMock(return_value=mock_session)
    client.close = MagicMock()
    return client


@pytest.fixture
def motor_client_factory(mock_mongo_client: MagicMock):
    """Patch AsyncIOMotorClient where the connection handle uses it."""
    with patch(
        "mdb_facade.database.connection.AsyncIOMotorClient", return_value=mock_mongo_client
    ) as factory:
        yield factory


# ============================================================================
# FAÇADE FIXTURES
# ============================================================================


@pytest.fixture
def connection_config() -> Dict[str, Any]:
    """Provide a valid configuration record."""
    return {
        "client": "mongodb",
        "connection": {
            "host": "localhost",
            "port": 27017,
            "database": "test_db",
        },
    }


@pytest.fixture
def database(motor_client_factory: MagicMock, connection_config: Dict[str, Any]) -> Database:
    """Create a Database whose motor client is mocked."""
    return Database(connection_config)


@pytest.fixture
def users(mock_mongo_database: MagicMock) -> MagicMock:
    """The mock 'users' collection."""
    return mock_mongo_database["users"]


# ============================================================================
# METRICS
# ============================================================================


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty global metrics collector."""
    from mdb_facade.observability import get_metrics_collector

    get_metrics_collector().reset()
    yield


# ============================================================================
# ENVIRONMENT VARIABLES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables before each test."""
    for var in [
        "MONGO_HOST",
        "MONGO_PORT",
        "MONGO_USER",
        "MONGO_PASSWORD",
        "MONGO_DATABASE",
        "MONGO_MAX_POOL_SIZE",
        "MONGO_MIN_POOL_SIZE",
        "MONGO_SERVER_SELECTION_TIMEOUT_MS",
    ]:
        monkeypatch.delenv(var, raising=False)
    yield


# ============================================================================
# TESTCONTAINERS FIXTURES (Real MongoDB for Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container():
    """
    Start a MongoDB Atlas Local container for integration tests.

    The image runs a single-node replica set, so transactions work.
    Session-scoped: the container starts once and is reused.
    """
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    try:
        container = MongoDbContainer(image="mongodb/mongodb-atlas-local:latest")
        container.start()
    except Exception as e:  # noqa: BLE001 - Docker may be missing entirely
        pytest.skip(f"Could not start MongoDB container: {e}")

    yield container
    container.stop()


@pytest.fixture
def integration_config(mongodb_container) -> Dict[str, Any]:
    """Configuration record pointing at the test container."""
    return {
        "client": "mongodb",
        "connection": {
            "host": mongodb_container.get_container_host_ip(),
            "port": int(mongodb_container.get_exposed_port(27017)),
            "database": f"test_db_{os.getpid()}",
        },
    }
