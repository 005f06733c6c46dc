"""
Custom exceptions for MDB_TENANT.

Every error raised by the repository layer derives from
``MongoTenantError`` (itself a ``RuntimeError``) and carries an
``ErrorKind``. Callers branch on ``error.kind`` instead of matching
message text.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Semantic category of a repository failure."""

    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    CARDINALITY = "cardinality"
    EMPTY_FILTER = "empty_filter"
    CONNECTIVITY = "connectivity"
    PARTIAL_FAILURE = "partial_failure"
    TRANSLATION = "translation"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    STORE = "store"


class MongoTenantError(RuntimeError):
    """
    Base exception for MDB_TENANT errors.

    Attributes:
        message: Error message
        context: Dictionary with additional context (collection, id,
                 operation, etc.)
        kind: ErrorKind of the failure
    """

    kind: ErrorKind = ErrorKind.STORE

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message

    def with_operation(self, operation: str) -> "MongoTenantError":
        """
        Annotate the error with the call site that observed it.

        The kind is left untouched. Returns self so it can be used inline
        with ``raise``.
        """
        self.context.setdefault("operation", operation)
        return self


class ConfigurationError(MongoTenantError):
    """
    Raised when configuration is invalid or missing.

    Missing collection names, tenant ids, connection strings or default
    database names all end up here.

    Attributes:
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
    """

    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        config_value: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class DocumentNotFoundError(MongoTenantError):
    """
    Raised when a single-document lookup matches nothing.

    Attributes:
        collection: Collection that was searched
        document_id: Identity that was looked up
    """

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        document_id: Any = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if collection:
            context["collection"] = collection
        if document_id is not None:
            context["id"] = str(document_id)
        super().__init__(message, context=context)
        self.collection = collection
        self.document_id = document_id


class CardinalityError(MongoTenantError):
    """Raised when exactly one result was expected and more were found."""

    kind = ErrorKind.CARDINALITY

    def __init__(
        self,
        message: str,
        expected: int = 1,
        found: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        context["expected"] = expected
        if found is not None:
            context["found"] = found
        super().__init__(message, context=context)
        self.expected = expected
        self.found = found


class EmptyFilterError(MongoTenantError):
    """
    Raised when a bulk mutation or delete would run with no filter.

    The guard protects whole collections from accidental updates.
    """

    kind = ErrorKind.EMPTY_FILTER

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if collection:
            context["collection"] = collection
        super().__init__(message, context=context)
        self.collection = collection


class ConnectivityError(MongoTenantError):
    """
    Raised when a client cannot be created or fails its liveness ping.

    Attributes:
        database: Database the caller asked for (if available)
    """

    kind = ErrorKind.CONNECTIVITY

    def __init__(
        self,
        message: str,
        database: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if database:
            context["database"] = database
        super().__init__(message, context=context)
        self.database = database


class PartialFailureError(MongoTenantError):
    """
    Raised when a multi-step operation fails after its first step succeeded.

    The completed step is not rolled back. ``completed_step`` names it so
    the caller can reconcile duplicated or orphaned state.
    """

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        message: str,
        completed_step: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if completed_step:
            context["completed_step"] = completed_step
        super().__init__(message, context=context)
        self.completed_step = completed_step


class FilterTranslationError(MongoTenantError):
    """Raised when FindOptions cannot be translated to a native filter."""

    kind = ErrorKind.TRANSLATION

    def __init__(
        self,
        message: str,
        key: str | None = None,
        operator: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if key:
            context["key"] = key
        if operator:
            context["operator"] = operator
        super().__init__(message, context=context)
        self.key = key
        self.operator = operator


class VersionConflictError(MongoTenantError):
    """
    Raised when an update loses an optimistic concurrency race.

    Attributes:
        expected_version: Version the caller based its update on
    """

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str,
        expected_version: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if expected_version is not None:
            context["expected_version"] = expected_version
        super().__init__(message, context=context)
        self.expected_version = expected_version


class ValidationError(MongoTenantError):
    """Raised when a request or value fails validation before touching the store."""

    kind = ErrorKind.VALIDATION


class QueryValidationError(ValidationError):
    """
    Raised when a caller-provided query or pipeline is unsafe.

    Attributes:
        query_type: Kind of query being validated (filter, pipeline, regex, sort)
        operator: Offending operator (if available)
        path: JSON path of the offending element (if available)
    """

    def __init__(
        self,
        message: str,
        query_type: str | None = None,
        operator: str | None = None,
        path: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if query_type:
            context["query_type"] = query_type
        if operator:
            context["operator"] = operator
        if path:
            context["path"] = path
        super().__init__(message, context=context)
        self.query_type = query_type
        self.operator = operator
        self.path = path


class DeadlineExceededError(MongoTenantError):
    """Raised when an operation does not finish within its request timeout."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str,
        timeout: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if timeout is not None:
            context["timeout"] = timeout
        super().__init__(message, context=context)
        self.timeout = timeout


class StoreError(MongoTenantError):
    """Raised for driver failures that are not connectivity problems."""

    kind = ErrorKind.STORE
