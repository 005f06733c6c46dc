"""
Constants for MDB_TENANT.

This module contains shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# CONNECTION CONSTANTS
# ============================================================================

DEFAULT_CONNECT_TIMEOUT_MS: Final[int] = 30000
"""Default timeout for establishing a new MongoDB connection (milliseconds)."""

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 30000
"""Default server selection timeout in milliseconds."""

DEFAULT_MAX_POOL_SIZE: Final[int] = 50
"""Default maximum connection pool size per routed client."""

DEFAULT_MIN_POOL_SIZE: Final[int] = 1
"""Default minimum connection pool size per routed client."""

DEFAULT_MAX_IDLE_TIME_MS: Final[int] = 45000
"""Default maximum idle time before closing connections (milliseconds)."""

DEFAULT_APP_NAME: Final[str] = "MDB_TENANT"
"""Application name reported to MongoDB by routed clients."""

# ============================================================================
# REPOSITORY CONSTANTS
# ============================================================================

MAX_COUNT_LIMIT: Final[int] = 1_000_001
"""Upper bound applied to every filtered count."""

ID_FIELD: Final[str] = "_id"
"""Native identity field name."""

VERSION_FIELD: Final[str] = "version"
"""Field holding the optimistic concurrency counter."""

UPDATED_BY_FIELD: Final[str] = "updated_by"
"""Audit stamp written by every partial update."""

DELETED_BY_FIELD: Final[str] = "deleted_by"
"""Audit stamp written by soft delete."""

COUNT_TOTAL_FIELD: Final[str] = "total"
"""Output field of the $count stage appended to aggregations."""

# External-id sentinels understood by base find options
EXTERNAL_ID_MISSING: Final[str] = "-1"
"""External id value meaning "external_id must not exist"."""

EXTERNAL_ID_PRESENT: Final[str] = "0"
"""External id value meaning "external_id must exist"."""

# ============================================================================
# GLOBAL COLLECTIONS
# ============================================================================

USERS_COLLECTION: Final[str] = "users"
"""Shared collection holding users, stored in the default database."""

# ============================================================================
# BACKUP CONSTANTS
# ============================================================================

DEFAULT_BACKUP_DIR: Final[str] = "backup"
"""Root directory for mongodump output."""

MONGODUMP_BINARY: Final[str] = "mongodump"
MONGORESTORE_BINARY: Final[str] = "mongorestore"

# ============================================================================
# QUERY VALIDATION CONSTANTS
# ============================================================================

MAX_QUERY_DEPTH: Final[int] = 10
"""Maximum nesting depth for query filters and pipeline stages."""

MAX_PIPELINE_STAGES: Final[int] = 50
"""Maximum number of stages in a caller-provided aggregation pipeline."""

MAX_SORT_FIELDS: Final[int] = 10
"""Maximum number of fields in a sort specification."""

MAX_REGEX_LENGTH: Final[int] = 1000
"""Maximum length for regex patterns."""

MAX_REGEX_COMPLEXITY: Final[int] = 50
"""Maximum complexity score for regex patterns."""

DANGEROUS_OPERATORS: Final[tuple[str, ...]] = (
    "$where",
    "$eval",
    "$function",
    "$accumulator",
)
"""Operators that execute server-side JavaScript and are always rejected."""
