"""
Query model and its translation to MongoDB.
"""

from .options import (
    ASCENDING,
    DESCENDING,
    Filter,
    FilterOperator,
    FilterOr,
    FindOptions,
    Order,
    Orders,
)
from .translator import MongoFilterTranslator, parse_date
from .validator import QueryValidator

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Filter",
    "FilterOperator",
    "FilterOr",
    "FindOptions",
    "Order",
    "Orders",
    "MongoFilterTranslator",
    "parse_date",
    "QueryValidator",
]
