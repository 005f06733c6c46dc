"""
Pytest configuration and shared fixtures for MDB_TENANT tests.

This module provides:
- Mock MongoDB client, database and collection fixtures
- Router, repository and request factories wired to the mocks
- Testcontainers fixtures for integration tests

Test entities live in ``entities.py`` next to this file.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from entities import SalesOrder, make_cursor
from motor.motor_asyncio import AsyncIOMotorCollection

from mdb_tenant.config import RepositoryConfig
from mdb_tenant.database import ConnectionRouter
from mdb_tenant.models import User
from mdb_tenant.observability import get_metrics_collector
from mdb_tenant.repositories import MongoRepository
from mdb_tenant.requests import BaseRequest

TEST_URI = "mongodb://localhost:27017"
SHARED_DB = "shared_db"


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without a database")
    config.addinivalue_line("markers", "integration: tests against a real MongoDB")


# ============================================================================
# MOCK MONGODB FIXTURES
# ============================================================================


@pytest.fixture
def mock_mongo_collection() -> MagicMock:
    """Create a mock MongoDB collection."""
    collection = MagicMock(spec=AsyncIOMotorCollection)
    collection.name = "orders"
    collection.find = MagicMock(return_value=make_cursor())
    collection.aggregate = MagicMock(return_value=make_cursor())
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id="test_id"))
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))
    collection.update_many = AsyncMock(return_value=MagicMock(modified_count=2))
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=2))
    collection.count_documents = AsyncMock(return_value=0)
    return collection


@pytest.fixture
def mock_mongo_client(mock_mongo_collection: MagicMock) -> MagicMock:
    """Create a mock MongoDB client whose databases all hand out the same collection."""
    client = MagicMock()
    client.admin.command = AsyncMock(return_value={"ok": 1})
    client.drop_database = AsyncMock()

    def get_database(name):
        db = MagicMock()
        db.name = name
        db.client = client
        db.__getitem__.return_value = mock_mongo_collection
        return db

    client.__getitem__.side_effect = get_database
    return client


@pytest.fixture
def repository_config() -> RepositoryConfig:
    return RepositoryConfig(mongo_uri=TEST_URI, default_database=SHARED_DB)


@pytest.fixture
def router(repository_config: RepositoryConfig, mock_mongo_client: MagicMock):
    """ConnectionRouter whose clients are all the mock client."""
    with patch("mdb_tenant.database.router.AsyncIOMotorClient", return_value=mock_mongo_client):
        yield ConnectionRouter(repository_config)


@pytest.fixture
def orders_repo(router: ConnectionRouter) -> MongoRepository:
    return MongoRepository(router, "orders", database="tenant_a")


@pytest.fixture
def acting_user() -> User:
    return User(
        id=ObjectId(),
        username="alice",
        email="alice@example.com",
        tenant_id="tenant_a",
    )


@pytest.fixture
def order_request(router: ConnectionRouter, acting_user: User) -> BaseRequest:
    return BaseRequest.with_model(SalesOrder(), acting_user, router)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty global metrics collector."""
    get_metrics_collector().reset()
    yield


# ============================================================================
# ENVIRONMENT VARIABLES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_environment(monkeypatch):
    """Reset environment variables before each test."""
    env_vars_to_clear = [
        "MONGO_REPO",
        "MONGO_URI",
        "DEFAULT_DATABASE",
        "MONGO_CONNECT_TIMEOUT_MS",
        "MONGO_SERVER_SELECTION_TIMEOUT_MS",
        "MONGO_MAX_POOL_SIZE",
        "MONGO_MIN_POOL_SIZE",
        "MONGO_PING_ON_REUSE",
        "MONGO_STRICT_PING",
        "REPO_UPDATE_CREATE_FALLBACK",
        "REPO_SOFT_DELETE_REQUIRES_FILTER",
        "REPO_BACKUP_DIR",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    yield


# ============================================================================
# TESTCONTAINERS FIXTURES (Real MongoDB for Integration Tests)
# ============================================================================


@pytest.fixture(scope="session")
def mongodb_container():
    """
    Start a MongoDB container for integration tests.

    Session-scoped: container starts once and is reused for all integration tests.
    The ``$merge`` based operations need MongoDB 4.4 or later.
    """
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    with MongoDbContainer(image=os.getenv("MONGO_TEST_IMAGE", "mongo:7.0")) as container:
        yield container


@pytest.fixture
def mongodb_connection_string(mongodb_container):
    """
    Connection string for the test container.

    Includes the root credentials the container is started with.
    """
    return mongodb_container.get_connection_url()


@pytest.fixture
def integration_config(mongodb_connection_string) -> RepositoryConfig:
    """Configuration pointing at the container with a per-process shared database."""
    return RepositoryConfig(
        mongo_uri=mongodb_connection_string,
        default_database=f"shared_{os.getpid()}",
        connect_timeout_ms=5000,
        server_selection_timeout_ms=5000,
    )
