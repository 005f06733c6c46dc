"""
Unit tests for the query model.

Tests FindOptions builders, empty-key handling, ordering de-duplication
and serialization.
"""

import pytest

from mdb_tenant.query import (ASCENDING, DESCENDING, Filter, FilterOperator,
                              FindOptions, Order, Orders)


@pytest.mark.unit
class TestFindOptionsBuilders:
    """Test filter accumulation."""

    def test_filters_accumulate_in_insertion_order(self):
        options = FindOptions()
        options.add_equals("status", "open")
        options.add_greater("amount", 10)
        options.add_in("tags", ["a", "b"])

        assert [f.key for f in options.filters] == ["status", "amount", "tags"]
        assert [f.operator for f in options.filters] == [
            FilterOperator.EQUALS,
            FilterOperator.GREATER,
            FilterOperator.IN,
        ]

    @pytest.mark.parametrize(
        "builder,args",
        [
            ("add_equals", ("x",)),
            ("add_equals_ci", ("x",)),
            ("add_not_equals", ("x",)),
            ("add_in", (["x"],)),
            ("add_not_in", (["x"],)),
            ("add_size", (2,)),
            ("add_all", (["x"],)),
            ("add_contains", ("x",)),
            ("add_greater", (1,)),
            ("add_less", (1,)),
            ("add_greater_or_equal", (1,)),
            ("add_less_or_equal", (1,)),
            ("add_groups_of_arrays", (["x"],)),
            ("add_exists", ()),
            ("add_not_exists", ()),
        ],
    )
    def test_empty_key_is_a_noop(self, builder, args):
        options = FindOptions()
        options.add_equals("status", "open")

        getattr(options, builder)("", *args)

        assert len(options.filters) == 1

    def test_add_range_adds_two_filters(self):
        options = FindOptions()
        options.add_range("created", 1, "created", 5)

        assert options.filters == [
            Filter("created", FilterOperator.GREATER, 1),
            Filter("created", FilterOperator.LESS, 5),
        ]

    def test_exists_filters_carry_no_value(self):
        options = FindOptions()
        options.add_exists("external_id")
        options.add_not_exists("deleted_by")

        assert options.filters[0].operator is FilterOperator.EXISTS
        assert options.filters[1].operator is FilterOperator.NOT_EXISTS
        assert options.filters[0].value is None

    def test_remove_drops_first_match_only(self):
        options = FindOptions()
        options.add_equals("a", 1)
        options.add_equals("a", 2)

        options.remove("a")

        assert options.filters == [Filter("a", FilterOperator.EQUALS, 2)]
        assert options.has_filter("a")

    def test_filter_is_empty(self):
        options = FindOptions()
        assert options.filter_is_empty()

        options.add_multiple([])
        assert options.filter_is_empty()

        options.add_multiple([Filter("a", FilterOperator.EQUALS, 1)])
        assert not options.filter_is_empty()

    def test_orders_do_not_count_as_filters(self):
        options = FindOptions()
        options.add_order_desc("created")

        assert options.filter_is_empty()
        assert options.total_orders() == 1


@pytest.mark.unit
class TestOrders:
    """Test order handling."""

    def test_duplicate_order_is_ignored(self):
        orders = Orders()
        orders.add(Order("name", ASCENDING))
        orders.add(Order("name", ASCENDING))

        assert len(orders) == 1

    def test_same_field_other_direction_is_kept(self):
        orders = Orders([Order("name", ASCENDING), Order("name", DESCENDING)])

        assert len(orders) == 2
        assert orders.has_by_fields("name")
        assert not orders.has_by_fields("other")

    def test_copy_is_independent(self):
        orders = Orders([Order("a")])
        copied = orders.copy()
        copied.add(Order("b"))

        assert len(orders) == 1
        assert copied != orders

    def test_add_order_skips_empty_fields(self):
        options = FindOptions()
        options.add_order_asc("a", "", "b")

        assert [o.field for o in options.order] == ["a", "b"]


@pytest.mark.unit
class TestFindOptionsSerialization:
    """Test copy and dict conversion."""

    def test_copy_does_not_share_filters(self):
        options = FindOptions()
        options.add_equals("a", 1)
        copied = options.copy()
        copied.add_equals("b", 2)

        assert len(options.filters) == 1
        assert len(copied.filters) == 2

    def test_from_dict_restores_operators_and_order(self):
        options = FindOptions()
        options.add_not_in("tags", ["x"])
        options.add_order_desc("created")

        restored = FindOptions.from_dict(options.to_dict())

        assert restored.filters[0].operator is FilterOperator.NOT_IN
        assert restored.order.items() == [Order("created", DESCENDING)]

    def test_from_dict_keeps_unknown_operator_raw(self):
        restored = FindOptions.from_dict(
            {"filters": [{"key": "a", "operator": "near", "value": 1}]}
        )

        assert restored.filters[0].operator == "near"

    def test_to_json_handles_non_json_values(self):
        from datetime import datetime

        options = FindOptions()
        options.add_greater("created", datetime(2024, 1, 1))

        assert "2024-01-01" in options.to_json()
