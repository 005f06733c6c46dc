"""
Translation of FindOptions into native MongoDB filter and sort documents.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from ..exceptions import FilterTranslationError
from .options import Filter, FilterOperator, FindOptions

logger = logging.getLogger(__name__)

# Tried in order; the first layout that parses wins.
DATE_LAYOUTS: tuple[str, ...] = (
    "%Y-%m-%dT%H:%M:%S%z",  # RFC3339, Z or +HH:MM offset
    "%Y-%m-%dT%H:%M:%S.%f%z",  # RFC3339 with fractional seconds
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
)

# zero-padded fields only; strptime alone also takes "2024-1-5"
_DATE_SHAPE = re.compile(
    r"\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})?)?"
)

_REGEX_OPERATORS = frozenset({FilterOperator.EQUALS_CI, FilterOperator.CONTAINS})

_SIMPLE_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.NOT_EQUALS: "$ne",
    FilterOperator.IN: "$in",
    FilterOperator.NOT_IN: "$nin",
    FilterOperator.SIZE: "$size",
    FilterOperator.ALL: "$all",
    FilterOperator.GREATER: "$gt",
    FilterOperator.LESS: "$lt",
    FilterOperator.GREATER_OR_EQUAL: "$gte",
    FilterOperator.LESS_OR_EQUAL: "$lte",
}


def parse_date(value: str) -> datetime | None:
    """
    Parse ``value`` with the first matching layout of DATE_LAYOUTS.

    Results without an offset are taken as UTC. Returns None when no
    layout matches or a field is not zero-padded.
    """
    if not _DATE_SHAPE.fullmatch(value):
        return None
    for layout in DATE_LAYOUTS:
        try:
            parsed = datetime.strptime(value, layout)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class MongoFilterTranslator:
    """
    Turns FindOptions into ``find``/``count_documents`` filters and sort lists.

    Each filter becomes one ``{key: clause}`` entry of a top-level ``$and``
    list, preserving insertion order. OR-groups are not translated: a
    non-empty ``filters_or`` raises FilterTranslationError instead of being
    dropped.
    """

    def __init__(self, coerce_dates: bool = True):
        self.coerce_dates = coerce_dates

    def get_filter(self, options: FindOptions | None) -> dict[str, Any]:
        """
        Build the native filter document.

        Raises:
            FilterTranslationError: On OR-groups or an unknown operator
        """
        if options is None:
            return {}

        if options.filters_or:
            raise FilterTranslationError(
                f"OR filter groups are not supported by this repository "
                f"({len(options.filters_or)} group(s) supplied)",
                context={"groups": len(options.filters_or)},
            )

        and_filters = [{item.key: self.get_filter_item(item)} for item in options.filters]
        if not and_filters:
            return {}
        return {"$and": and_filters}

    def get_filter_item(self, item: Filter) -> Any:
        """Translate a single filter into its native clause."""
        operator = self._operator(item)
        value = item.value

        if operator in _REGEX_OPERATORS:
            if not isinstance(value, str):
                raise FilterTranslationError(
                    f"Operator '{operator.value}' requires a string value, "
                    f"got {type(value).__name__}",
                    key=item.key,
                    operator=operator.value,
                )
            pattern = re.escape(value)
            if operator is FilterOperator.EQUALS_CI:
                pattern = f"^{pattern}$"
            return {"$regex": pattern, "$options": "i"}

        value = self.coerce_value(value)

        if operator is FilterOperator.EQUALS:
            return value
        if operator is FilterOperator.GROUPS_OF_ARRAYS:
            return {"$elemMatch": {"$not": {"$elemMatch": {"$nin": value}}}}
        if operator is FilterOperator.EXISTS:
            return {"$exists": True}
        if operator is FilterOperator.NOT_EXISTS:
            return {"$exists": False}
        return {_SIMPLE_OPERATORS[operator]: value}

    def coerce_value(self, value: Any) -> Any:
        """Re-parse string values as dates when they match a known layout."""
        if not self.coerce_dates or not isinstance(value, str):
            return value
        parsed = parse_date(value)
        return parsed if parsed is not None else value

    def get_order(self, options: FindOptions | None) -> list[tuple[str, int]]:
        """Build a motor sort list, e.g. ``[("created_at", -1), ("_id", 1)]``."""
        if options is None:
            return []
        return [(order.field, order.direction) for order in options.order]

    @staticmethod
    def _operator(item: Filter) -> FilterOperator:
        try:
            return FilterOperator(item.operator)
        except ValueError as e:
            logger.warning(f"Unknown filter operator '{item.operator}' on key '{item.key}'")
            raise FilterTranslationError(
                f"Unknown filter operator '{item.operator}'",
                key=item.key,
                operator=str(item.operator),
            ) from e
