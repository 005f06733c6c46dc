"""
Entity contract, base entity and built-in entities.
"""

from .base import BaseModel, RepositoryModel, RepoType, UserLog, to_object_id, utc_now
from .date_range import DateRange
from .user import User

__all__ = [
    "BaseModel",
    "RepositoryModel",
    "RepoType",
    "UserLog",
    "DateRange",
    "User",
    "to_object_id",
    "utc_now",
]
