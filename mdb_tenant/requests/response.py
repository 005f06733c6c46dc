"""
Orchestration response.

``BaseResponse`` is what every entity verb returns. Expected failures
are carried in ``error`` (a typed MongoTenantError) instead of being
raised, so callers can choose between inspecting the response and
calling ``raise_for_error``.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ..exceptions import DocumentNotFoundError, MongoTenantError
from ..repositories import RepoResponse

T = TypeVar("T")


@dataclass
class BaseResponse(Generic[T]):
    """
    Result of an orchestrated operation.

    Attributes:
        error: Fatal error of the operation, None on success
        errors: Non-fatal errors collected along the way
        total_rows: Rows matching the query (or affected by a mutation)
        total_pages: ``ceil(total_rows / page_size)`` when paginated, else 0
        items: Decoded result entities
        code: Optional status code for outer layers
    """

    error: Exception | None = None
    errors: list[Exception] = field(default_factory=list)
    total_rows: int = 0
    total_pages: int = 0
    page_size: int = 0
    current_page: int = 0
    items: list[T] = field(default_factory=list)
    code: int = 0
    message: str = ""
    status: str = ""

    @classmethod
    def from_repo_response(cls, repo_response: RepoResponse) -> "BaseResponse":
        return cls(
            errors=list(repo_response.errors),
            total_rows=repo_response.total_rows,
            total_pages=repo_response.total_pages,
            page_size=repo_response.page_size,
            current_page=repo_response.current_page,
            items=list(repo_response.items),
        )

    @classmethod
    def from_error(cls, error: Exception, code: int = 0) -> "BaseResponse":
        response = cls(code=code)
        response.set_error(error)
        return response

    @classmethod
    def from_model(cls, model: Any, error: Exception | None = None) -> "BaseResponse":
        response = cls()
        response.append_to_list(model)
        if error is not None:
            response.set_error(error)
        return response

    @property
    def str_error(self) -> str:
        return str(self.error) if self.error is not None else ""

    @property
    def ok(self) -> bool:
        return self.error is None

    def set_error(self, error: Exception | None) -> None:
        self.error = error

    def raise_for_error(self) -> None:
        """Raise the carried error, if any."""
        if self.error is not None:
            raise self.error

    def merge(self, other: "BaseResponse") -> "BaseResponse":
        """
        Fold ``other`` into this response.

        Non-fatal errors are concatenated, the first fatal error is kept and
        ``total_rows`` becomes the larger of the two.
        """
        self.errors.extend(other.errors)
        if self.error is None:
            self.error = other.error
        self.total_rows = max(self.total_rows, other.total_rows)
        return self

    def get_first(self) -> T:
        return self.get_at_index(0)

    def get_at_index(self, index: int) -> T:
        """
        Raises:
            DocumentNotFoundError: If there are no rows or ``index`` is out of range
        """
        if self.total_rows == 0 or not self.items:
            raise DocumentNotFoundError("BaseResponse.get_at_index: no rows found")
        if index < 0 or index >= len(self.items):
            raise DocumentNotFoundError(
                f"BaseResponse.get_at_index: index {index} out of range",
                context={"size": len(self.items)},
            )
        return self.items[index]

    def append_to_list(self, item: T | list[T]) -> None:
        """Append one item, or every item of a list, bumping ``total_rows``."""
        if isinstance(item, list):
            self.items.extend(item)
            self.total_rows = len(self.items)
            return
        self.items.append(item)
        self.total_rows += 1

    def add_or_replace(self, item: T) -> None:
        """Replace the item with the same identity, or append it."""
        item_id = _identity(item)
        if item_id is not None:
            for index, existing in enumerate(self.items):
                if _identity(existing) == item_id:
                    self.items[index] = item
                    return
        self.append_to_list(item)

    def get_ids(self) -> list[Any]:
        return [item_id for item_id in map(_identity, self.items) if item_id is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "status": self.status,
            "str_error": self.str_error,
            "error_kind": self.error.kind.value
            if isinstance(self.error, MongoTenantError)
            else None,
            "errors": [str(e) for e in self.errors],
            "total_rows": self.total_rows,
            "total_pages": self.total_pages,
            "page_size": self.page_size,
            "current_page": self.current_page,
            "items": [
                item.to_document() if hasattr(item, "to_document") else item
                for item in self.items
            ],
        }


def _identity(item: Any) -> Any:
    get_id = getattr(item, "get_id", None)
    if get_id is not None:
        return get_id()
    if isinstance(item, dict):
        return item.get("_id")
    return None
