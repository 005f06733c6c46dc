"""
Entity contract and base entity.

Every persistable type implements ``RepositoryModel``. Most do so by
subclassing the ``BaseModel`` dataclass, which carries identity, audit
stamps, tenant id, labels and the optimistic concurrency version, and only
has to provide ``get_collection``.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from bson import ObjectId
from bson.errors import InvalidId

from ..constants import EXTERNAL_ID_MISSING, EXTERNAL_ID_PRESENT, ID_FIELD
from ..exceptions import ValidationError
from ..query import FindOptions
from .date_range import DateRange

if TYPE_CHECKING:
    from ..requests import BaseRequest, BaseResponse

logger = logging.getLogger(__name__)


class RepoType(str, Enum):
    UNKNOWN = "unknown"
    MONGODB = "mongodb"


def utc_now() -> datetime:
    """Current UTC time truncated to the millisecond precision BSON stores."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_object_id(value: Any) -> ObjectId:
    """
    Coerce a hex string (or ObjectId) into an ObjectId.

    Raises:
        ValidationError: If the value is empty or not a valid ObjectId
    """
    if isinstance(value, ObjectId):
        return value
    if not value:
        raise ValidationError("ID is empty")
    try:
        return ObjectId(str(value).strip())
    except (InvalidId, TypeError) as e:
        raise ValidationError(f"Invalid ID '{value}'", context={"id": value}) from e


@dataclass
class UserLog:
    """Audit stamp: who did something, and when."""

    user: str = ""
    time: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"user": self.user, "time": self.time}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserLog":
        return cls(user=data.get("user", ""), time=data.get("time") or utc_now())


class RepositoryModel(ABC):
    """
    Interface every entity exposes to repositories and requests.
    """

    @abstractmethod
    def get_id(self) -> ObjectId | None: ...

    @abstractmethod
    def set_id(self, value: str | ObjectId) -> None: ...

    @abstractmethod
    def is_new(self) -> bool: ...

    @abstractmethod
    def become_new(self) -> None: ...

    @abstractmethod
    def become_new_but_keep_id(self) -> None: ...

    @abstractmethod
    def get_collection(self) -> tuple[str, bool]:
        """Return ``(collection_name, is_global)``."""

    @abstractmethod
    def set_created(self, user: Any) -> None: ...

    @abstractmethod
    def set_updated(self, user: Any) -> None: ...

    @abstractmethod
    def set_deleted(self, user: Any) -> None: ...

    @abstractmethod
    def get_repo_type(self) -> RepoType: ...

    @abstractmethod
    def get_repo_id(self) -> str: ...

    @abstractmethod
    def set_repo_id(self, value: str) -> None: ...

    @abstractmethod
    def label_from_strings(self, *values: str) -> None: ...

    @abstractmethod
    def to_document(self) -> dict[str, Any]: ...

    @abstractmethod
    def apply_document(self, document: dict[str, Any]) -> None: ...


@dataclass
class BaseModel(RepositoryModel):
    """
    Common fields and behaviour for tenant and global entities.

    Fields marked ``transient`` in their metadata are never written to the
    store. Subclasses declare nested value types in ``_nested_types`` so
    ``apply_document`` can rebuild them from stored dictionaries.

    Example:
        @dataclass
        class Order(BaseModel):
            number: str = ""

            def get_collection(self):
                return "orders", False
    """

    _nested_types: ClassVar[dict[str, Any]] = {
        "created_by": UserLog,
        "updated_by": UserLog,
        "deleted_by": UserLog,
        "last_access": UserLog,
    }

    id: ObjectId | None = None
    created_by: UserLog | None = None
    updated_by: UserLog | None = None
    deleted_by: UserLog | None = None
    last_access: UserLog | None = None
    language: str | None = None
    # id of the same record in an external system
    external_id: str | None = None
    sync_at: datetime | None = None
    labels: list[str] | None = None
    repo_id: str | None = None
    source_id: str | None = None
    family_id: str | None = None
    parent_id: str | None = None
    version: int = 0
    touched: bool = field(default=False, metadata={"transient": True})
    # set by set_recovered, cleared once the recovery is stored
    recovered: bool = field(default=False, metadata={"transient": True})
    labels_not: list[str] | None = field(default=None, metadata={"transient": True})

    # identity

    def get_id(self) -> ObjectId | None:
        return self.id

    def get_id_str(self) -> str:
        return str(self.id) if self.id is not None else ""

    def set_id(self, value: str | ObjectId) -> None:
        self.id = to_object_id(value)

    def is_new(self) -> bool:
        return self.created_by is None

    def is_deleted(self) -> bool:
        return self.deleted_by is not None

    def become_new(self) -> None:
        self.id = None
        self.become_new_but_keep_id()

    def become_new_but_keep_id(self) -> None:
        self.created_by = None
        self.updated_by = None
        self.deleted_by = None

    # audit stamps

    def set_created(self, user: Any) -> None:
        if self.id is None:
            self.id = ObjectId()
        self.created_by = user.get_user_log()

    def set_updated(self, user: Any) -> None:
        self.updated_by = user.get_user_log()

    def set_deleted(self, user: Any) -> None:
        self.deleted_by = user.get_user_log()

    def set_recovered(self) -> None:
        self.deleted_by = None
        self.recovered = True

    # tenant

    def get_repo_type(self) -> RepoType:
        return RepoType.MONGODB

    def get_repo_id(self) -> str:
        return self.repo_id or ""

    def set_repo_id(self, value: str) -> None:
        self.repo_id = value

    # labels

    def get_labels(self) -> list[str]:
        return list(self.labels or [])

    def label(self, *labels: str) -> None:
        if self.labels is None:
            self.labels = []
        for value in labels:
            if value and value not in self.labels:
                self.labels.append(value)

    def label_from_strings(self, *values: str) -> None:
        self.label(*values)

    def unlabel(self, *labels: str) -> None:
        if self.labels:
            self.labels = [value for value in self.labels if value not in labels]

    def has_label(self, label: str) -> bool:
        return label in (self.labels or [])

    def has_labels(self, labels: list[str]) -> bool:
        """True when every label in ``labels`` is present (vacuously true if empty)."""
        return all(self.has_label(value) for value in labels)

    def is_labeled(self) -> bool:
        return bool(self.labels)

    def compare_labels(self, labels: list[str]) -> bool:
        """True when the label sets are equal, ignoring order."""
        return set(self.labels or []) == set(labels) and len(self.labels or []) == len(labels)

    # synchronization with external systems

    def prepare_for_sync(self, external_id: Any) -> None:
        if external_id is None:
            raise ValidationError("prepare_for_sync requires an external ID")
        self.external_id = str(external_id)
        self.sync_at = utc_now()

    def last_sync(self) -> datetime | None:
        return self.sync_at

    # document mapping

    def to_document(self) -> dict[str, Any]:
        """Native document for this entity; None values and transient fields are left out."""
        document: dict[str, Any] = {}
        for f in fields(self):
            if f.metadata.get("transient"):
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            document[ID_FIELD if f.name == "id" else f.name] = _encode(value)
        return document

    def apply_document(self, document: dict[str, Any]) -> None:
        """Overwrite fields present in ``document``; unknown keys are ignored."""
        nested = self._nested_types
        for f in fields(self):
            if f.metadata.get("transient"):
                continue
            key = ID_FIELD if f.name == "id" else f.name
            if key not in document:
                continue
            value = document[key]
            value_type = nested.get(f.name)
            if value_type is not None and isinstance(value, dict):
                value = value_type.from_dict(value)
            setattr(self, f.name, value)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "BaseModel":
        model = cls()
        model.apply_document(document)
        return model

    # find options

    def get_base_find_options(self, request: "BaseRequest") -> FindOptions:
        """
        Filters shared by every entity: identity, tenant, external id,
        excluded ids, source and family, requested id set and labels.
        """
        options = FindOptions()
        options.order = request.order.copy()

        if self.id is not None:
            options.add_equals(ID_FIELD, self.id)

        if self.repo_id:
            options.add_equals("repo_id", self.repo_id)

        if self.external_id:
            if self.external_id == EXTERNAL_ID_MISSING:
                options.add_not_exists("external_id")
            elif self.external_id == EXTERNAL_ID_PRESENT:
                options.add_exists("external_id")
            else:
                options.add_equals("external_id", self.external_id)

        if request.excluded_ids:
            options.add_not_in(ID_FIELD, request.get_object_ids(request.excluded_ids))

        if self.language:
            options.add_equals("language", self.language)

        if self.source_id:
            options.add_equals("source_id", self.source_id)

        if self.family_id:
            options.add_equals("family_id", self.family_id)

        if request.has_ids() and self.id is None:
            query_field = request.query_field or ID_FIELD
            if query_field == ID_FIELD:
                options.add_in(query_field, request.get_object_ids())
            else:
                options.add_in(query_field, list(request.ids))

        if self.is_labeled():
            options.add_in("labels", self.get_labels())

        if self.labels_not:
            options.add_not_in("labels", list(self.labels_not))

        return options

    def get_find_options(self, request: "BaseRequest") -> FindOptions:
        """Entity-specific filters; override to add your own on top of the base ones."""
        return self.get_base_find_options(request)

    def validate(self) -> None:
        """Hook run before every update; raise ValidationError to refuse the write."""

    # entity verbs

    def _bind(self, request: "BaseRequest") -> "BaseRequest":
        request.model = self
        request.set_find_options(self.get_find_options(request))
        return request

    async def find(self, request: "BaseRequest") -> "BaseResponse":
        return await self._bind(request).find()

    async def find_one(self, request: "BaseRequest") -> "BaseResponse":
        return await self._bind(request).find_one()

    async def count(self, request: "BaseRequest") -> "BaseResponse":
        return await self._bind(request).count()

    async def get_one(self, request: "BaseRequest") -> "BaseModel":
        """
        Load exactly one matching record into this entity and return it.

        Raises:
            DocumentNotFoundError: If nothing matches
            CardinalityError: If more than one record matches
        """
        response = await self.find_one(request)
        response.raise_for_error()
        return self

    async def update(self, request: "BaseRequest") -> "BaseResponse":
        request.model = self
        try:
            self.validate()
        except ValidationError as e:
            return request.response_from_error(e.with_operation("update"))
        return await request.update()

    async def delete_soft(self, request: "BaseRequest") -> "BaseResponse":
        return await self._bind(request).delete_soft()

    async def delete(self, request: "BaseRequest") -> "BaseResponse":
        """Soft delete first; a record that is already soft deleted is removed."""
        self._bind(request)
        if self.is_deleted():
            return await request.delete()
        return await request.delete_soft()


def _encode(value: Any) -> Any:
    if isinstance(value, (UserLog, DateRange)):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    return value
