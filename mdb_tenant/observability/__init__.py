"""
Observability components.

Provides contextual logging and metrics collection.
"""

from .logging import (
    ContextualLoggerAdapter,
    clear_correlation_id,
    clear_tenant_context,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    reset_tenant_context,
    set_correlation_id,
    set_tenant_context,
    tenant_scope,
)
from .metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_collector,
    metric_key,
    record_operation,
    timed_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_collector",
    "metric_key",
    "record_operation",
    "timed_operation",
    # Logging
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "set_tenant_context",
    "reset_tenant_context",
    "clear_tenant_context",
    "tenant_scope",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
]
