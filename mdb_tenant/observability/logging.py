"""
Contextual logging for MDB_TENANT.

Module code logs through ``logging.getLogger(__name__)``. Code that runs on
behalf of a tenant also uses ``get_logger``: its records carry the
correlation id and the tenant scope (tenant id, collection, acting user)
of the running asyncio task. Both live in contextvars, so concurrent
requests never see each other's scope.
"""

import contextvars
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_tenant_scope: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "tenant_scope", default=None
)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set the correlation id of the current task, generating one when omitted.

    Returns:
        The correlation id now in effect
    """
    correlation_id = correlation_id or str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    _correlation_id.set(None)


def set_tenant_context(tenant_id: str | None = None, **values: Any) -> contextvars.Token:
    """
    Replace the tenant scope of the current task.

    ``None`` values are left out. The returned token restores the previous
    scope through ``reset_tenant_context``.
    """
    scope = {key: value for key, value in {"tenant_id": tenant_id, **values}.items()
             if value is not None}
    return _tenant_scope.set(scope)


def reset_tenant_context(token: contextvars.Token) -> None:
    _tenant_scope.reset(token)


def clear_tenant_context() -> None:
    _tenant_scope.set(None)


@contextmanager
def tenant_scope(tenant_id: str | None = None, **values: Any) -> Iterator[dict[str, Any]]:
    """
    Run a block under a tenant scope, restoring the outer scope afterwards.

    Usage:
        with tenant_scope("acme", collection="orders", user_id=user.get_id_str()):
            logger.info("loading orders")
    """
    token = set_tenant_context(tenant_id, **values)
    try:
        yield get_logging_context()
    finally:
        reset_tenant_context(token)


def get_logging_context() -> dict[str, Any]:
    """Correlation id (when set) merged with the current tenant scope."""
    context: dict[str, Any] = {}
    correlation_id = _correlation_id.get()
    if correlation_id:
        context["correlation_id"] = correlation_id
    context.update(_tenant_scope.get() or {})
    return context


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Adds the task's correlation id and tenant scope to every record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**get_logging_context(), **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    success: bool = True,
    duration_ms: float | None = None,
    **fields: Any,
) -> None:
    """
    Emit one structured record for a finished operation.

    The record carries ``operation``, ``success``, ``duration_ms`` (rounded
    to 0.01) and any extra ``fields`` such as rows or error kind, on top of
    the logging context.

    Example:
        log_operation(logger, "request.find", logging.DEBUG, duration_ms=4.2, rows=20)
    """
    record_fields: dict[str, Any] = {"operation": operation, "success": success, **fields}
    message = f"{operation} {'succeeded' if success else 'failed'}"
    if duration_ms is not None:
        record_fields["duration_ms"] = round(duration_ms, 2)
        message += f" in {duration_ms:.2f}ms"
    logger.log(level, message, extra={**get_logging_context(), **record_fields})
