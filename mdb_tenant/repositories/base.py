"""
Abstract Repository Pattern

Defines the repository interface consumed by requests and implemented by
store adapters, plus the request/response pair passed across it.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from bson import ObjectId

from ..models import RepositoryModel, RepoType, User
from ..query import FindOptions

T = TypeVar("T")


@dataclass
class RepoRequest:
    """
    One unit of work handed to a repository.

    Attributes:
        id: Document id for the array mutation operations
        page_size: Rows per page, 0 means unpaginated
        current_page: 1-based page number, 0 means no limit
        user: Acting user, source of audit stamps
        model: Entity the operation is about
        find_options: Filters and order
        list_type: Entity class results are decoded into (defaults to type(model))
        pipeline: Aggregation pipeline for ``aggregate``
        target_collection: Destination collection for ``move``
        timeout: Deadline for the whole operation, in seconds
    """

    id: str | ObjectId | None = None
    page_size: int = 0
    current_page: int = 0
    user: User | None = None
    model: RepositoryModel | None = None
    find_options: FindOptions = field(default_factory=FindOptions)
    list_type: type | None = None
    pipeline: list[dict[str, Any]] | None = None
    target_collection: str = ""
    timeout: float | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": str(self.id) if self.id is not None else None,
                "page_size": self.page_size,
                "current_page": self.current_page,
                "user": self.user.get_id_str() if self.user else None,
                "model": type(self.model).__name__ if self.model else None,
                "find_options": self.find_options.to_dict(),
                "target_collection": self.target_collection,
                "timeout": self.timeout,
            },
            indent=2,
            default=str,
        )


@dataclass
class RepoResponse(Generic[T]):
    """
    Result of a repository operation.

    ``total_pages`` is ``ceil(total_rows / page_size)`` when ``page_size > 0``
    and 0 otherwise (unpaginated).
    """

    errors: list[Exception] = field(default_factory=list)
    total_rows: int = 0
    total_pages: int = 0
    page_size: int = 0
    current_page: int = 0
    items: list[T] = field(default_factory=list)

    def paginate(self, total_rows: int, page_size: int, current_page: int) -> None:
        self.total_rows = total_rows
        self.page_size = page_size
        self.current_page = current_page
        self.total_pages = math.ceil(total_rows / page_size) if page_size > 0 else 0


class Repository(ABC):
    """
    Persistence operations for one collection of one tenant.

    All operations raise subclasses of MongoTenantError on failure and
    return a RepoResponse on success.
    """

    @abstractmethod
    async def find(self, request: RepoRequest) -> RepoResponse:
        """
        Find entities matching ``request.find_options``, paginated and sorted.

        If the request model carries an identity this is a ``find_one`` whose
        not-found outcome becomes an empty response.
        """

    @abstractmethod
    async def find_one(self, request: RepoRequest) -> RepoResponse:
        """
        Load the request model by identity.

        Raises:
            DocumentNotFoundError: If no document has that identity
        """

    @abstractmethod
    async def count(self, request: RepoRequest) -> RepoResponse:
        """Count documents matching ``request.find_options``."""

    @abstractmethod
    async def update(self, request: RepoRequest) -> RepoResponse:
        """Create the request model when new, otherwise replace its fields by identity."""

    @abstractmethod
    async def update_many(self, request: RepoRequest, values: dict[str, Any]) -> RepoResponse:
        """
        Set ``values`` on every matching document.

        Raises:
            EmptyFilterError: If the filter is empty
        """

    @abstractmethod
    async def update_field(self, request: RepoRequest, field: str, value: Any) -> RepoResponse:
        """Set one field on every matching document. Refuses an empty filter."""

    @abstractmethod
    async def switch_item_in_array(
        self, request: RepoRequest, field: str, value: Any
    ) -> RepoResponse:
        """Toggle ``value`` in the array ``field`` of document ``request.id``."""

    @abstractmethod
    async def add_item_in_array(self, request: RepoRequest, field: str, value: Any) -> RepoResponse:
        """Add ``value`` to the array ``field`` of document ``request.id`` if absent."""

    @abstractmethod
    async def remove_item_in_array(
        self, request: RepoRequest, field: str, value: Any
    ) -> RepoResponse:
        """Remove ``value`` from the array ``field`` of document ``request.id``."""

    @abstractmethod
    async def move(self, request: RepoRequest) -> RepoResponse:
        """Copy matching documents into ``request.target_collection`` then delete them."""

    @abstractmethod
    async def delete(self, request: RepoRequest) -> RepoResponse:
        """Delete the model by identity, or every matching document (guarded)."""

    @abstractmethod
    async def delete_soft(self, request: RepoRequest) -> RepoResponse:
        """Stamp ``deleted_by`` on every matching document."""

    @abstractmethod
    async def remove_field(self, request: RepoRequest, field: str) -> RepoResponse:
        """Null ``field`` on every matching document."""

    @abstractmethod
    async def aggregate(self, request: RepoRequest) -> RepoResponse:
        """Run ``request.pipeline`` and count its results."""

    @abstractmethod
    def get_filter(self, options: FindOptions) -> dict[str, Any]: ...

    @abstractmethod
    def get_order(self, options: FindOptions) -> list[tuple[str, int]]: ...

    @abstractmethod
    def get_type(self) -> RepoType: ...

    @abstractmethod
    def get_repo_id(self) -> str: ...

    @abstractmethod
    def get_database(self) -> str: ...

    @abstractmethod
    def get_connection(self) -> str: ...

    @abstractmethod
    def get_collection_name(self) -> str: ...

    @abstractmethod
    def is_global(self) -> bool: ...

    @abstractmethod
    def set_repo_id(self, value: str) -> None:
        """Point the repository at another tenant."""

    @abstractmethod
    async def repo_backup(self, request: RepoRequest, backup_id: str) -> RepoResponse: ...

    @abstractmethod
    async def repo_restore(self, request: RepoRequest, backup_id: str) -> RepoResponse: ...

    @abstractmethod
    async def delete_database(self, connection: str, database: str) -> None: ...
