"""
Tenant-aware MongoDB connection routing.

The router hands out database handles for (connection string, database)
pairs and reuses one motor client per pair. Entries are appended to the
pool on first use and found again by linear scan, first match wins.

Global entities (users, traces, ...) always resolve to the configured
default connection and default database, whatever tenant the caller is
working under.

Usage:
    router = ConnectionRouter(RepositoryConfig())
    db = await router.database_for(user.connection, "tenant_a", is_global=False)
    ...
    await router.close()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConfigurationError as MongoConfigurationError
from pymongo.errors import (
    ConnectionFailure,
    InvalidOperation,
    OperationFailure,
    ServerSelectionTimeoutError,
)

from ..config import RepositoryConfig
from ..constants import DEFAULT_APP_NAME, DEFAULT_MAX_IDLE_TIME_MS
from ..exceptions import ConfigurationError, ConnectivityError
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

_PING_FAILURES = (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    OperationFailure,
    InvalidOperation,
)


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    LIVE = "live"
    DEGRADED = "degraded"


@dataclass
class PoolEntry:
    """One routed client, keyed by (connection_string, database)."""

    connection_string: str
    database: str
    client: AsyncIOMotorClient | None = None
    state: ConnectionState = ConnectionState.UNCONNECTED
    last_error: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    ready: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def matches(self, connection_string: str, database: str) -> bool:
        return self.connection_string == connection_string and self.database == database

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.database,
            "state": self.state.value,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
        }


class ConnectionRouter:
    """
    Owns the client pool for one process (or one test).

    Construct it at start-up, pass it to requests and repositories, and
    ``await router.close()`` at shutdown.
    """

    def __init__(self, config: RepositoryConfig | None = None) -> None:
        self.config = config or RepositoryConfig()
        self._entries: list[PoolEntry] = []

    @property
    def entries(self) -> list[PoolEntry]:
        return list(self._entries)

    def resolve(
        self, connection_string: str | None, tenant_id: str | None, is_global: bool
    ) -> tuple[str, str]:
        """
        Work out which (connection string, database) an entity lives in.

        Args:
            connection_string: Tenant connection string, empty means the default
            tenant_id: Tenant database name, ignored for global entities
            is_global: Whether the entity is shared across tenants

        Returns:
            Tuple of (connection_string, database)

        Raises:
            ConfigurationError: If the connection string or database is missing
        """
        if is_global:
            connection_string = self.config.mongo_uri
            database = self.config.default_database
            if not database:
                raise ConfigurationError(
                    "Default database is not configured for global entities",
                    config_key="default_database",
                )
        else:
            connection_string = connection_string or self.config.mongo_uri
            database = tenant_id or ""
            if not database:
                raise ConfigurationError(
                    "Tenant id is required to route a tenant entity", config_key="repo_id"
                )

        if not connection_string:
            raise ConfigurationError(
                "No connection string available (set MONGO_REPO or pass one explicitly)",
                config_key="mongo_uri",
                context={"database": database},
            )
        return connection_string, database

    async def database_for(
        self, connection_string: str | None, tenant_id: str | None, is_global: bool
    ) -> AsyncIOMotorDatabase:
        """Resolve and return the database handle for an entity."""
        connection_string, database = self.resolve(connection_string, tenant_id, is_global)
        return await self.get_database(connection_string, database)

    async def get_database(self, connection_string: str, database: str) -> AsyncIOMotorDatabase:
        """
        Return a handle on ``database``, connecting on first use of the pair.

        Raises:
            ConfigurationError: If either argument is empty
            ConnectivityError: If the client cannot be created or fails its ping
                (on reuse, only when ``config.strict_ping`` is set)
        """
        if not connection_string:
            raise ConfigurationError("Connection string is empty", config_key="mongo_uri")
        if not database:
            raise ConfigurationError("Database name is empty", config_key="database")

        entry = self._find(connection_string, database)
        if entry is None:
            entry = PoolEntry(connection_string, database, state=ConnectionState.CONNECTING)
            # appended before the first await so concurrent first uses share it
            self._entries.append(entry)
            await self._connect(entry)
        elif entry.state is ConnectionState.CONNECTING:
            await entry.ready.wait()
            if entry.client is None:
                raise ConnectivityError(
                    f"Connection to database '{database}' failed: {entry.last_error}",
                    database=database,
                )
        elif self.config.ping_on_reuse:
            await self._ping_existing(entry)

        return entry.client[database]

    async def drop_database(self, connection_string: str, database: str) -> None:
        """Drop ``database`` through its routed client."""
        await self.get_database(connection_string, database)
        entry = self._find(connection_string, database)
        await entry.client.drop_database(database)
        logger.info(f"Dropped database '{database}'")

    def describe(self) -> dict[str, Any]:
        """Snapshot of the pool for health checks and metrics."""
        counts: dict[str, int] = {}
        for entry in self._entries:
            counts[entry.state.value] = counts.get(entry.state.value, 0) + 1
        return {
            "total_entries": len(self._entries),
            "states": counts,
            "entries": [entry.to_dict() for entry in self._entries],
        }

    async def close(self) -> None:
        """Close every routed client and empty the pool."""
        closed = 0
        for entry in self._entries:
            if entry.client is not None:
                entry.client.close()
                closed += 1
        self._entries.clear()
        logger.info(f"Connection router closed {closed} client(s)")

    def _find(self, connection_string: str, database: str) -> PoolEntry | None:
        for entry in self._entries:
            if entry.matches(connection_string, database):
                return entry
        return None

    def _create_client(self, connection_string: str) -> AsyncIOMotorClient:
        return AsyncIOMotorClient(
            connection_string,
            connectTimeoutMS=self.config.connect_timeout_ms,
            serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
            appname=DEFAULT_APP_NAME,
            maxPoolSize=self.config.max_pool_size,
            minPoolSize=self.config.min_pool_size,
            maxIdleTimeMS=DEFAULT_MAX_IDLE_TIME_MS,
            retryWrites=True,
            retryReads=True,
            tz_aware=True,
        )

    async def _connect(self, entry: PoolEntry) -> None:
        start_time = time.time()
        client: AsyncIOMotorClient | None = None
        try:
            client = self._create_client(entry.connection_string)
            await client.admin.command("ping")
        except (MongoConfigurationError, ValueError, TypeError, *_PING_FAILURES) as e:
            duration_ms = (time.time() - start_time) * 1000
            record_operation(
                "router.connect", duration_ms, success=False, error_kind="connectivity"
            )
            if client is not None:
                client.close()
            entry.state = ConnectionState.UNCONNECTED
            entry.last_error = str(e)
            # a pair that never went live is not kept
            self._entries.remove(entry)
            entry.ready.set()
            contextual_logger.error(
                "MongoDB connection failed",
                extra={
                    "database": entry.database,
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "duration_ms": round(duration_ms, 2),
                },
                exc_info=True,
            )
            raise ConnectivityError(
                f"Failed to connect to database '{entry.database}': {e}",
                database=entry.database,
            ) from e

        entry.client = client
        entry.state = ConnectionState.LIVE
        entry.ready.set()
        duration_ms = (time.time() - start_time) * 1000
        record_operation("router.connect", duration_ms, success=True)
        contextual_logger.info(
            "MongoDB connection established",
            extra={
                "database": entry.database,
                "pool_entries": len(self._entries),
                "duration_ms": round(duration_ms, 2),
            },
        )

    async def _ping_existing(self, entry: PoolEntry) -> None:
        try:
            await entry.client.admin.command("ping")
        except _PING_FAILURES as e:
            entry.state = ConnectionState.DEGRADED
            entry.last_error = str(e)
            if self.config.strict_ping:
                logger.error(f"Ping failed for pooled database '{entry.database}': {e}")
                raise ConnectivityError(
                    f"Ping failed for database '{entry.database}': {e}",
                    database=entry.database,
                ) from e
            logger.warning(
                f"Ping failed for pooled database '{entry.database}', "
                f"returning degraded handle: {e}"
            )
            return

        if entry.state is ConnectionState.DEGRADED:
            logger.info(f"Pooled database '{entry.database}' is live again")
        entry.state = ConnectionState.LIVE
        entry.last_error = None
