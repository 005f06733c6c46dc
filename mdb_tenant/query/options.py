"""
Backend-agnostic query model.

``FindOptions`` accumulates filters, OR-groups, ordering and an optional
pipeline. It knows nothing about MongoDB; ``query.translator`` turns it
into native documents.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

ASCENDING = 1
DESCENDING = -1


class FilterOperator(str, Enum):
    """Closed set of comparison operators understood by the translator."""

    EQUALS = "="
    EQUALS_CI = "equal_ci"
    NOT_EQUALS = "!="
    IN = "in"
    NOT_IN = "not_in"
    SIZE = "size"
    ALL = "all"
    CONTAINS = "contains"
    GREATER = "greater"
    LESS = "less"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    GROUPS_OF_ARRAYS = "groups_of_arrays"
    EXISTS = "not_nil"
    NOT_EXISTS = "nil"


_OPERATOR_VALUES = frozenset(op.value for op in FilterOperator)


@dataclass
class Filter:
    """
    One predicate on one field.

    ``operator`` is normally a FilterOperator but may be a raw string when
    the options were deserialized; it is only checked at translation time.
    """

    key: str
    operator: FilterOperator | str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, Enum) else self.operator
        return {"key": self.key, "operator": operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Filter":
        operator = data.get("operator", FilterOperator.EQUALS)
        # unknown operators stay raw strings and are rejected by the translator
        if operator in _OPERATOR_VALUES:
            operator = FilterOperator(operator)
        return cls(key=data.get("key", ""), operator=operator, value=data.get("value"))


FilterOr = list[Filter]


@dataclass(frozen=True)
class Order:
    field: str
    direction: int = ASCENDING


class Orders:
    """Ordered collection of Order entries; exact duplicates are ignored."""

    def __init__(self, orders: list[Order] | None = None):
        self._items: list[Order] = []
        if orders:
            self.add(*orders)

    def add(self, *orders: Order) -> None:
        for order in orders:
            if not self.has(order):
                self._items.append(order)

    def has(self, order: Order) -> bool:
        return order in self._items

    def has_by_fields(self, *fields: str) -> bool:
        return any(item.field in fields for item in self._items)

    def is_empty(self) -> bool:
        return not self._items

    def items(self) -> list[Order]:
        return list(self._items)

    def copy(self) -> "Orders":
        return Orders(self._items)

    def __iter__(self) -> Iterator[Order]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Orders) and self._items == other._items

    def __repr__(self) -> str:
        return f"Orders({self._items!r})"


@dataclass
class FindOptions:
    """
    Filter, order and pipeline bundle passed to a repository.

    Filters accumulate in insertion order and are AND-ed on translation.
    Every ``add_*`` builder silently ignores an empty key.

    Example:
        options = FindOptions()
        options.add_equals("status", "open")
        options.add_range("created_at", start, "created_at", end)
        options.add_order_desc("created_at")
    """

    filters: list[Filter] = field(default_factory=list)
    filters_or: list[FilterOr] = field(default_factory=list)
    order: Orders = field(default_factory=Orders)
    pipeline: list[dict[str, Any]] | None = None

    def add_complex(self, key: str, operator: FilterOperator | str, value: Any = None) -> None:
        if not key:
            return
        self.filters.append(Filter(key=key, operator=operator, value=value))

    def add_equals(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.EQUALS, value)

    def add_equals_ci(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.EQUALS_CI, value)

    def add_not_equals(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.NOT_EQUALS, value)

    def add_in(self, key: str, values: Any) -> None:
        self.add_complex(key, FilterOperator.IN, values)

    def add_not_in(self, key: str, values: Any) -> None:
        self.add_complex(key, FilterOperator.NOT_IN, values)

    def add_size(self, key: str, size: int) -> None:
        self.add_complex(key, FilterOperator.SIZE, size)

    def add_all(self, key: str, values: Any) -> None:
        self.add_complex(key, FilterOperator.ALL, values)

    def add_contains(self, key: str, value: str) -> None:
        self.add_complex(key, FilterOperator.CONTAINS, value)

    def add_greater(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.GREATER, value)

    def add_less(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.LESS, value)

    def add_greater_or_equal(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.GREATER_OR_EQUAL, value)

    def add_less_or_equal(self, key: str, value: Any) -> None:
        self.add_complex(key, FilterOperator.LESS_OR_EQUAL, value)

    def add_range(self, key_from: str, value_from: Any, key_to: str, value_to: Any) -> None:
        """Add ``key_from > value_from`` and ``key_to < value_to``."""
        self.add_greater(key_from, value_from)
        self.add_less(key_to, value_to)

    def add_groups_of_arrays(self, key: str, allowed: Any) -> None:
        """Match arrays of arrays where no inner element falls outside ``allowed``."""
        self.add_complex(key, FilterOperator.GROUPS_OF_ARRAYS, allowed)

    def add_exists(self, key: str) -> None:
        self.add_complex(key, FilterOperator.EXISTS)

    def add_not_exists(self, key: str) -> None:
        self.add_complex(key, FilterOperator.NOT_EXISTS)

    def add_multiple(self, group: FilterOr) -> None:
        """Append an OR-group. Empty groups are ignored."""
        if not group:
            return
        self.filters_or.append(list(group))

    def add_order_asc(self, *fields: str) -> None:
        for name in fields:
            if name:
                self.order.add(Order(name, ASCENDING))

    def add_order_desc(self, *fields: str) -> None:
        for name in fields:
            if name:
                self.order.add(Order(name, DESCENDING))

    def remove(self, key: str) -> None:
        """Remove the first filter on ``key``."""
        for idx, item in enumerate(self.filters):
            if item.key == key:
                del self.filters[idx]
                return

    def has_filter(self, key: str) -> bool:
        return any(item.key == key for item in self.filters)

    def total_orders(self) -> int:
        return len(self.order)

    def filter_is_empty(self) -> bool:
        """True when neither plain filters nor OR-groups are present."""
        return not self.filters and not self.filters_or

    def copy(self) -> "FindOptions":
        return FindOptions(
            filters=[Filter(f.key, f.operator, f.value) for f in self.filters],
            filters_or=[[Filter(f.key, f.operator, f.value) for f in g] for g in self.filters_or],
            order=self.order.copy(),
            pipeline=list(self.pipeline) if self.pipeline is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "filters": [f.to_dict() for f in self.filters],
            "filters_or": [[f.to_dict() for f in group] for group in self.filters_or],
            "order": [{"field": o.field, "direction": o.direction} for o in self.order],
            "pipeline": self.pipeline,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FindOptions":
        data = data or {}
        options = cls(
            filters=[Filter.from_dict(f) for f in data.get("filters") or []],
            filters_or=[
                [Filter.from_dict(f) for f in group] for group in data.get("filters_or") or []
            ],
            pipeline=data.get("pipeline"),
        )
        for item in data.get("order") or []:
            options.order.add(Order(item["field"], int(item.get("direction", ASCENDING))))
        return options

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)
