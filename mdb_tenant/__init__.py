"""
MDB_TENANT - Multi-tenant MongoDB persistence

Generic repository layer that gives any entity CRUD, soft delete,
pagination and atomic array mutation, with per-tenant database routing.
"""

# Configuration and errors
from .config import RepositoryConfig
# Connection routing
from .database import ConnectionRouter, ConnectionState
from .exceptions import (CardinalityError, ConfigurationError,
                         ConnectivityError, DeadlineExceededError,
                         DocumentNotFoundError, EmptyFilterError, ErrorKind,
                         FilterTranslationError, MongoTenantError,
                         PartialFailureError, QueryValidationError,
                         StoreError, ValidationError, VersionConflictError)
# Entities
from .models import BaseModel, DateRange, RepositoryModel, RepoType, User, UserLog
# Query model
from .query import Filter, FilterOperator, FindOptions, MongoFilterTranslator, Order, Orders
# Repositories
from .repositories import (MongoRepository, RepoRequest, RepoResponse, Repository,
                           clone_repository, new_repository, new_repository_from_model)
# Orchestration
from .requests import BaseRequest, BaseResponse

__version__ = "0.1.0"

__all__ = [
    # Config
    "RepositoryConfig",
    # Errors
    "ErrorKind",
    "MongoTenantError",
    "ConfigurationError",
    "DocumentNotFoundError",
    "CardinalityError",
    "EmptyFilterError",
    "ConnectivityError",
    "PartialFailureError",
    "FilterTranslationError",
    "VersionConflictError",
    "ValidationError",
    "QueryValidationError",
    "DeadlineExceededError",
    "StoreError",
    # Database
    "ConnectionRouter",
    "ConnectionState",
    # Models
    "BaseModel",
    "RepositoryModel",
    "RepoType",
    "User",
    "UserLog",
    "DateRange",
    # Query
    "Filter",
    "FilterOperator",
    "FindOptions",
    "Order",
    "Orders",
    "MongoFilterTranslator",
    # Repositories
    "Repository",
    "RepoRequest",
    "RepoResponse",
    "MongoRepository",
    "new_repository",
    "new_repository_from_model",
    "clone_repository",
    # Requests
    "BaseRequest",
    "BaseResponse",
]
