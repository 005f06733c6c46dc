"""
Configuration management for MDB_TENANT.

Constructor arguments take precedence over environment variables, so the
router and repositories can be wired either way.
"""

import os

from .constants import (
    DEFAULT_BACKUP_DIR,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_MAX_POOL_SIZE,
    DEFAULT_MIN_POOL_SIZE,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
)
from .exceptions import ConfigurationError


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class RepositoryConfig:
    """
    Repository and connection routing configuration.

    Example:
        # Using environment variables (MONGO_REPO, DEFAULT_DATABASE, ...)
        config = RepositoryConfig()
        router = ConnectionRouter(config)

        # Or using direct parameters
        config = RepositoryConfig(
            mongo_uri="mongodb://localhost:27017",
            default_database="shared",
        )
    """

    def __init__(
        self,
        mongo_uri: str | None = None,
        default_database: str | None = None,
        connect_timeout_ms: int | None = None,
        server_selection_timeout_ms: int | None = None,
        max_pool_size: int | None = None,
        min_pool_size: int | None = None,
        ping_on_reuse: bool | None = None,
        strict_ping: bool | None = None,
        allow_create_fallback: bool | None = None,
        soft_delete_requires_filter: bool | None = None,
        backup_dir: str | None = None,
    ):
        """
        Initialize configuration.

        Args:
            mongo_uri: Default connection string (defaults to MONGO_REPO, then MONGO_URI)
            default_database: Shared database for global entities (defaults to DEFAULT_DATABASE)
            connect_timeout_ms: Connect timeout for new clients (defaults to 30000)
            server_selection_timeout_ms: Server selection timeout (defaults to 30000)
            max_pool_size: Maximum pool size per routed client (defaults to 50)
            min_pool_size: Minimum pool size per routed client (defaults to 1)
            ping_on_reuse: Re-ping pooled clients on every lookup (defaults to True)
            strict_ping: Raise instead of returning a degraded handle (defaults to True)
            allow_create_fallback: Let update create a document whose identity is
                unknown to the store (defaults to False)
            soft_delete_requires_filter: Apply the empty-filter guard to soft
                delete too (defaults to False)
            backup_dir: Root directory for mongodump output (defaults to "backup")
        """
        self.mongo_uri = mongo_uri or os.getenv("MONGO_REPO") or os.getenv("MONGO_URI", "")
        self.default_database = default_database or os.getenv("DEFAULT_DATABASE", "")
        self.connect_timeout_ms = connect_timeout_ms or int(
            os.getenv("MONGO_CONNECT_TIMEOUT_MS", str(DEFAULT_CONNECT_TIMEOUT_MS))
        )
        self.server_selection_timeout_ms = server_selection_timeout_ms or int(
            os.getenv(
                "MONGO_SERVER_SELECTION_TIMEOUT_MS", str(DEFAULT_SERVER_SELECTION_TIMEOUT_MS)
            )
        )
        self.max_pool_size = max_pool_size or int(
            os.getenv("MONGO_MAX_POOL_SIZE", str(DEFAULT_MAX_POOL_SIZE))
        )
        self.min_pool_size = (
            min_pool_size
            if min_pool_size is not None
            else int(os.getenv("MONGO_MIN_POOL_SIZE", str(DEFAULT_MIN_POOL_SIZE)))
        )
        self.ping_on_reuse = (
            ping_on_reuse if ping_on_reuse is not None else _env_bool("MONGO_PING_ON_REUSE", True)
        )
        self.strict_ping = (
            strict_ping if strict_ping is not None else _env_bool("MONGO_STRICT_PING", True)
        )
        self.allow_create_fallback = (
            allow_create_fallback
            if allow_create_fallback is not None
            else _env_bool("REPO_UPDATE_CREATE_FALLBACK", False)
        )
        self.soft_delete_requires_filter = (
            soft_delete_requires_filter
            if soft_delete_requires_filter is not None
            else _env_bool("REPO_SOFT_DELETE_REQUIRES_FILTER", False)
        )
        self.backup_dir = backup_dir or os.getenv("REPO_BACKUP_DIR", DEFAULT_BACKUP_DIR)

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ConfigurationError: If required configuration is missing or invalid
        """
        if not self.mongo_uri:
            raise ConfigurationError(
                "mongo_uri is required (set MONGO_REPO environment variable or pass directly)",
                config_key="mongo_uri",
            )

        if not self.default_database:
            raise ConfigurationError(
                "default_database is required (set DEFAULT_DATABASE environment variable "
                "or pass directly)",
                config_key="default_database",
            )

        if self.connect_timeout_ms < 1:
            raise ConfigurationError(
                f"connect_timeout_ms must be >= 1, got {self.connect_timeout_ms}",
                config_key="connect_timeout_ms",
                config_value=self.connect_timeout_ms,
            )

        if self.max_pool_size < 1:
            raise ConfigurationError(
                f"max_pool_size must be >= 1, got {self.max_pool_size}",
                config_key="max_pool_size",
                config_value=self.max_pool_size,
            )

        if self.min_pool_size < 0:
            raise ConfigurationError(
                f"min_pool_size must be >= 0, got {self.min_pool_size}",
                config_key="min_pool_size",
                config_value=self.min_pool_size,
            )

        if self.min_pool_size > self.max_pool_size:
            raise ConfigurationError(
                f"min_pool_size ({self.min_pool_size}) cannot be greater than "
                f"max_pool_size ({self.max_pool_size})",
                config_key="min_pool_size",
                config_value=self.min_pool_size,
            )
