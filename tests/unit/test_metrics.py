"""
Unit tests for MetricsCollector.

Tests metrics collection functionality including:
- Thread-safety under concurrent access
- Bounded storage with LRU eviction
- The timed_operation decorator used by repositories
"""

import threading

import pytest

from mdb_tenant.exceptions import DocumentNotFoundError
from mdb_tenant.observability.metrics import (MetricsCollector,
                                              get_metrics_collector,
                                              metric_key, timed_operation)
from mdb_tenant.repositories import RepoResponse


@pytest.mark.unit
class TestMetricsCollectorThreadSafety:
    """Test thread-safety of metrics collection."""

    def test_concurrent_record_operation(self):
        collector = MetricsCollector()
        num_threads = 8
        operations_per_thread = 50
        barrier = threading.Barrier(num_threads)

        def record_operations(thread_id: int):
            barrier.wait()
            for i in range(operations_per_thread):
                collector.record_operation(
                    "repository.find", duration_ms=1.0 + i, collection=f"c{thread_id}"
                )

        threads = [
            threading.Thread(target=record_operations, args=(i,)) for i in range(num_threads)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collector.get_operation_count("repository.find") == (
            num_threads * operations_per_thread
        )
        assert len(collector.get_metrics()["metrics"]) == num_threads


@pytest.mark.unit
class TestMetricsCollectorBoundedStorage:
    """Test bounded storage and LRU eviction."""

    def test_max_metrics_limit(self):
        collector = MetricsCollector(max_metrics=5)

        for i in range(8):
            collector.record_operation(f"test.op_{i}", duration_ms=10.0)

        assert len(collector.get_metrics()["metrics"]) == 5

    def test_lru_eviction_order(self):
        collector = MetricsCollector(max_metrics=3)
        collector.record_operation("test.op_0", duration_ms=10.0)
        collector.record_operation("test.op_1", duration_ms=10.0)
        collector.record_operation("test.op_2", duration_ms=10.0)

        # reading op_0 makes op_1 the least recently used
        collector.get_metrics("test.op_0")
        collector.record_operation("test.op_3", duration_ms=10.0)

        keys = set(collector.get_metrics()["metrics"])
        assert keys == {"test.op_0", "test.op_2", "test.op_3"}


@pytest.mark.unit
class TestAggregation:
    def test_tags_are_part_of_the_key(self):
        collector = MetricsCollector()
        collector.record_operation("repository.update", 5.0, collection="orders")
        collector.record_operation("repository.update", 15.0, False, collection="users")

        metrics = collector.get_metrics("repository.update")["metrics"]

        assert set(metrics) == {
            "repository.update[collection=orders]",
            "repository.update[collection=users]",
        }
        assert metrics["repository.update[collection=users]"]["error_rate_percent"] == 100.0

    def test_summary_folds_tags(self):
        collector = MetricsCollector()
        collector.record_operation("repository.update", 5.0, collection="orders")
        collector.record_operation("repository.update", 15.0, False, collection="users")

        summary = collector.get_summary()["summary"]["repository.update"]

        assert summary["count"] == 2
        assert summary["avg_duration_ms"] == 10.0
        assert summary["min_duration_ms"] == 5.0
        assert summary["max_duration_ms"] == 15.0
        assert summary["error_count"] == 1

    def test_rows_and_error_kinds_fold_into_summary(self):
        collector = MetricsCollector()
        collector.record_operation("repository.find", 2.0, rows=3, collection="orders")
        collector.record_operation("repository.find", 2.0, rows=4, collection="users")
        collector.record_operation(
            "repository.find", 2.0, False, error_kind="timeout", collection="users"
        )
        collector.record_operation("repository.find", 2.0, False, collection="users")

        summary = collector.get_summary()["summary"]["repository.find"]

        assert summary["total_rows"] == 7
        assert summary["errors_by_kind"] == {"timeout": 1, "unknown": 1}

    def test_metric_key_sorts_tags(self):
        assert metric_key("repository.find", {}) == "repository.find"
        assert metric_key("x", {"b": 2, "a": 1}) == "x[a=1_b=2]"

    def test_empty_metric_serializes_zero_minimum(self):
        from mdb_tenant.observability import OperationMetrics

        assert OperationMetrics("x").to_dict()["min_duration_ms"] == 0.0


class _Store:
    def get_collection_name(self):
        return "orders"

    @timed_operation("store.load")
    async def load(self, fail=False):
        if fail:
            raise RuntimeError("boom")
        return "loaded"

    @timed_operation("store.find")
    async def find(self, rows):
        if rows is None:
            raise DocumentNotFoundError("no such order")
        return RepoResponse(total_rows=rows)


@pytest.mark.unit
@pytest.mark.asyncio
class TestTimedOperation:
    async def test_records_success_with_collection(self):
        assert await _Store().load() == "loaded"

        metrics = get_metrics_collector().get_metrics("store.load")["metrics"]
        assert metrics["store.load[collection=orders]"]["count"] == 1
        assert metrics["store.load[collection=orders]"]["error_count"] == 0

    async def test_records_failure_and_reraises(self):
        with pytest.raises(RuntimeError):
            await _Store().load(fail=True)

        metrics = get_metrics_collector().get_metrics("store.load")["metrics"]
        assert metrics["store.load[collection=orders]"]["error_count"] == 1

    async def test_static_tags(self):
        @timed_operation("plain.call", kind="test")
        async def call():
            return 1

        await call()

        assert "plain.call[kind=test]" in get_metrics_collector().get_metrics()["metrics"]

    async def test_rows_and_error_kind(self):
        await _Store().find(rows=4)
        with pytest.raises(DocumentNotFoundError):
            await _Store().find(rows=None)

        entry = get_metrics_collector().get_metrics("store.find")["metrics"][
            "store.find[collection=orders]"
        ]
        assert entry["count"] == 2
        assert entry["total_rows"] == 4
        assert entry["errors_by_kind"] == {"not_found": 1}
