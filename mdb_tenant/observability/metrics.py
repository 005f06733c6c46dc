"""
Operation metrics for MDB_TENANT.

Repository operations and router connects are timed into one in-process
collector. An entry is keyed by operation name plus tags, e.g.
``repository.find[collection=orders]``, and holds call counts, durations,
rows touched and failures counted per error kind. Once ``max_metrics``
keys exist, the least recently used one is dropped.
"""

import functools
import logging
import threading
import time
from collections import Counter, OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class OperationMetrics:
    operation_name: str
    count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float("inf")
    max_duration_ms: float = 0.0
    total_rows: int = 0
    error_count: int = 0
    errors_by_kind: Counter = field(default_factory=Counter)
    last_execution: datetime | None = None

    @property
    def avg_duration_ms(self) -> float:
        if not self.count:
            return 0.0
        return self.total_duration_ms / self.count

    @property
    def error_rate(self) -> float:
        """Failed calls, in percent of all calls."""
        if not self.count:
            return 0.0
        return self.error_count * 100 / self.count

    def record(
        self,
        duration_ms: float,
        success: bool = True,
        rows: int = 0,
        error_kind: str | None = None,
    ) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        if duration_ms > self.max_duration_ms:
            self.max_duration_ms = duration_ms
        self.total_rows += rows
        if not success:
            self.error_count += 1
            self.errors_by_kind[error_kind or "unknown"] += 1
        self.last_execution = datetime.now()

    def merge(self, other: "OperationMetrics") -> None:
        """Fold the entry of another tag set into this one."""
        self.count += other.count
        self.total_duration_ms += other.total_duration_ms
        self.min_duration_ms = min(self.min_duration_ms, other.min_duration_ms)
        self.max_duration_ms = max(self.max_duration_ms, other.max_duration_ms)
        self.total_rows += other.total_rows
        self.error_count += other.error_count
        self.errors_by_kind.update(other.errors_by_kind)
        stamps = [s for s in (self.last_execution, other.last_execution) if s is not None]
        self.last_execution = max(stamps) if stamps else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation_name,
            "count": self.count,
            "avg_duration_ms": round(self.avg_duration_ms, 2),
            "min_duration_ms": round(self.min_duration_ms, 2) if self.count else 0.0,
            "max_duration_ms": round(self.max_duration_ms, 2),
            "total_rows": self.total_rows,
            "error_count": self.error_count,
            "error_rate_percent": round(self.error_rate, 2),
            "errors_by_kind": dict(self.errors_by_kind),
            "last_execution": self.last_execution.isoformat() if self.last_execution else None,
        }


def metric_key(operation_name: str, tags: dict[str, Any]) -> str:
    """``name`` alone, or ``name[k1=v1_k2=v2]`` with tags sorted by key."""
    if not tags:
        return operation_name
    rendered = "_".join(f"{key}={tags[key]}" for key in sorted(tags))
    return f"{operation_name}[{rendered}]"


def _base_name(key: str) -> str:
    return key.partition("[")[0]


class MetricsCollector:
    """
    Thread-safe, size-bounded store of ``OperationMetrics``.

    Both recording and reading an entry mark it as recently used.
    """

    def __init__(self, max_metrics: int = 10000):
        self._max_metrics = max_metrics
        self._entries: OrderedDict[str, OperationMetrics] = OrderedDict()
        self._lock = threading.Lock()

    def _use(self, key: str) -> OperationMetrics:
        entry = self._entries[key]
        self._entries.move_to_end(key)
        return entry

    def record_operation(
        self,
        operation_name: str,
        duration_ms: float,
        success: bool = True,
        rows: int = 0,
        error_kind: str | None = None,
        **tags: Any,
    ) -> None:
        key = metric_key(operation_name, tags)
        with self._lock:
            if key in self._entries:
                entry = self._use(key)
            else:
                while len(self._entries) >= self._max_metrics:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug(f"Evicted metric {evicted}")
                entry = self._entries[key] = OperationMetrics(operation_name)
            entry.record(duration_ms, success, rows, error_kind)

    def get_metrics(self, operation_name: str | None = None) -> dict[str, Any]:
        """
        Entries as dicts, optionally only those whose key starts with
        ``operation_name``.
        """
        with self._lock:
            keys = [
                key for key in self._entries
                if operation_name is None or key.startswith(operation_name)
            ]
            selected = {key: self._use(key).to_dict() for key in keys}
            total = len(self._entries)
        return {
            "timestamp": datetime.now().isoformat(),
            "metrics": selected,
            "total_operations": total,
        }

    def get_summary(self) -> dict[str, Any]:
        """Entries folded per operation name, tags dropped."""
        folded: dict[str, OperationMetrics] = {}
        with self._lock:
            for key, entry in self._entries.items():
                name = _base_name(key)
                if name not in folded:
                    folded[name] = OperationMetrics(name)
                folded[name].merge(entry)
        return {
            "timestamp": datetime.now().isoformat(),
            "summary": {name: entry.to_dict() for name, entry in folded.items()},
        }

    def get_operation_count(self, operation_name: str) -> int:
        """Calls of ``operation_name`` across every tag set."""
        with self._lock:
            return sum(
                entry.count for key, entry in self._entries.items()
                if _base_name(key) == operation_name
            )

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


def record_operation(
    operation_name: str,
    duration_ms: float,
    success: bool = True,
    rows: int = 0,
    error_kind: str | None = None,
    **tags: Any,
) -> None:
    _collector.record_operation(operation_name, duration_ms, success, rows, error_kind, **tags)


def _error_kind(error: Exception) -> str:
    kind = getattr(error, "kind", None)
    return getattr(kind, "value", None) or type(error).__name__


def timed_operation(operation_name: str, **tags: Any):
    """
    Time a coroutine into the global collector.

    When the first argument has ``get_collection_name`` (a repository), its
    collection is added as the ``collection`` tag. A result with
    ``total_rows`` counts as rows touched; an exception is counted under its
    error kind and re-raised.

    Usage:
        @timed_operation("repository.find")
        async def find(self, request):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            call_tags = dict(tags)
            if args and hasattr(args[0], "get_collection_name"):
                call_tags["collection"] = args[0].get_collection_name()
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - started) * 1000
                record_operation(
                    operation_name, elapsed, False, error_kind=_error_kind(e), **call_tags
                )
                raise
            elapsed = (time.perf_counter() - started) * 1000
            rows = getattr(result, "total_rows", 0) or 0
            record_operation(operation_name, elapsed, True, rows=rows, **call_tags)
            return result

        return wrapper

    return decorator
