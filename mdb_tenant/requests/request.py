"""
Orchestration request.

A ``BaseRequest`` is the unit of work an entity verb runs under: the
entity, the repository it lives in, the acting user, pagination, ordering
and id-set filters. Entities bind their own ``FindOptions`` to it and call
one of its verbs, which runs the repository operation and wraps the result
(or the typed error) in a ``BaseResponse``.

Usage:
    router = ConnectionRouter(RepositoryConfig())
    request = BaseRequest.with_model(Order(), user, router)
    request.page_size, request.current_page = 20, 1
    request.add_order_desc("created_by.time")
    response = await Order().find(request)
"""

import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from bson import ObjectId

from ..config import RepositoryConfig
from ..constants import DELETED_BY_FIELD, ID_FIELD
from ..database import ConnectionRouter
from ..exceptions import (
    CardinalityError,
    ConfigurationError,
    DocumentNotFoundError,
    MongoTenantError,
    ValidationError,
)
from ..models import DateRange, RepositoryModel, User
from ..observability import get_logger as get_contextual_logger
from ..observability import log_operation, tenant_scope
from ..query import ASCENDING, DESCENDING, FindOptions, Order, Orders
from ..repositories import (
    RepoRequest,
    RepoResponse,
    Repository,
    clone_repository,
    new_repository_from_model,
)
from .response import BaseResponse

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


@dataclass
class BaseRequest:
    """
    Attributes:
        model: Entity the request is about
        repo: Repository the entity lives in
        user: Acting user
        page_size: Rows per page, 0 means unpaginated
        current_page: 1-based page, 0 means no limit
        order: Sort order handed to ``get_base_find_options``
        find_options: Filters bound by the entity, None until bound
        ids: Restrict reads to these ids (matched on ``query_field``)
        excluded_ids: Exclude these ids
        include_deleted: Whether reads return soft-deleted records
        date_range: Period entities may filter on
        query_field: Field ``ids`` are matched on, ``_id`` by default
        target_collection: Destination for ``move``
        list_type: Entity class reads decode into, defaults to the model's class
        timeout: Deadline in seconds for each repository operation
        id: Document id for the array verbs, defaults to the model id
    """

    model: RepositoryModel | None = None
    repo: Repository | None = None
    user: User | None = None
    page_size: int = 0
    current_page: int = 0
    order: Orders = field(default_factory=Orders)
    find_options: FindOptions | None = None
    ids: list[Any] | None = None
    excluded_ids: list[Any] | None = None
    include_deleted: bool = False
    date_range: DateRange | None = None
    query_field: str = ""
    target_collection: str = ""
    list_type: type | None = None
    timeout: float | None = None
    id: str | ObjectId | None = None

    @classmethod
    def create(
        cls, model: RepositoryModel, repo: Repository | None, user: User | None
    ) -> "BaseRequest":
        """
        Build a request on an existing repository.

        Raises:
            ValidationError: If the user has no identity
            ConfigurationError: If no repository is given
        """
        if user is None or user.get_id() is None:
            raise ValidationError("BaseRequest.create: user id is required")
        if repo is None:
            raise ConfigurationError("BaseRequest.create: repository is required")
        return cls(model=model, repo=repo, user=user)

    @classmethod
    def with_model(
        cls,
        model: RepositoryModel,
        user: User,
        router: ConnectionRouter,
        config: RepositoryConfig | None = None,
    ) -> "BaseRequest":
        """
        Build a request and the repository ``model`` lives in.

        Tenant entities without a tenant id take the user's; the user's
        connection string selects the cluster.
        """
        _, is_global = model.get_collection()
        if not is_global and not model.get_repo_id() and user is not None and user.tenant_id:
            model.set_repo_id(user.tenant_id)
        connection = user.connection if user is not None else ""
        repo = new_repository_from_model(router, model, connection, config=config)
        return cls.create(model, repo, user)

    def validate(self) -> None:
        if self.model is None:
            raise ValidationError("BaseRequest.validate: model is required")
        if self.repo is None:
            raise ConfigurationError("BaseRequest.validate: repository is required")
        if self.user is None or (not self.user.username and self.user.get_id() is None):
            raise ValidationError("BaseRequest.validate: user is required")

    # ordering and filters

    def add_order_asc(self, *fields: str) -> None:
        for name in fields:
            if name:
                self.order.add(Order(name, ASCENDING))

    def add_order_desc(self, *fields: str) -> None:
        for name in fields:
            if name:
                self.order.add(Order(name, DESCENDING))

    def set_find_options(self, options: FindOptions) -> None:
        self.find_options = options

    def has_ids(self) -> bool:
        if self.query_field and self.query_field != ID_FIELD:
            return bool(self.ids)
        return bool(self.get_object_ids())

    def get_object_ids(self, ids: list[Any] | None = None) -> list[ObjectId]:
        """
        ObjectIds for ``ids`` (defaults to ``self.ids``); invalid values are skipped.
        """
        values = self.ids if ids is None else ids
        result: list[ObjectId] = []
        for value in values or []:
            if isinstance(value, ObjectId):
                result.append(value)
            elif ObjectId.is_valid(value):
                result.append(ObjectId(value))
            else:
                logger.warning(f"BaseRequest.get_object_ids: skipping invalid id {value!r}")
        return result

    def get_repo_request(self, reading: bool = False) -> RepoRequest:
        """
        Repository request for the current state.

        Reads leave soft-deleted records out unless ``include_deleted`` is set.
        """
        options = self.find_options.copy() if self.find_options else FindOptions()
        if reading and not self.include_deleted and not options.has_filter(DELETED_BY_FIELD):
            options.add_not_exists(DELETED_BY_FIELD)
        return RepoRequest(
            id=self.id,
            page_size=self.page_size,
            current_page=self.current_page,
            user=self.user,
            model=self.model,
            find_options=options,
            list_type=self.list_type,
            pipeline=options.pipeline,
            target_collection=self.target_collection,
            timeout=self.timeout,
        )

    # cloning

    def clone(self, model: RepositoryModel) -> "BaseRequest":
        """
        New request for ``model`` under the same user, connection and tenant.

        Pagination, ordering, id filters, flags and date range are copied.
        """
        request = BaseRequest.create(model, clone_repository(self.repo, model), self.user)
        request.page_size = self.page_size
        request.current_page = self.current_page
        request.order = self.order.copy()
        request.find_options = self.find_options.copy() if self.find_options else None
        request.ids = list(self.ids) if self.ids is not None else None
        request.excluded_ids = list(self.excluded_ids) if self.excluded_ids is not None else None
        request.include_deleted = self.include_deleted
        request.date_range = self.date_range
        request.query_field = self.query_field
        request.timeout = self.timeout
        return request

    def clone_model_to_new_domain(self, domain: str) -> "BaseRequest":
        """
        Request that writes a copy of the model into tenant ``domain``.

        The copy keeps its identity but loses its audit stamps, so updating
        it creates the record in the new tenant. The source model is untouched.
        """
        if not domain:
            raise ConfigurationError(
                "BaseRequest.clone_model_to_new_domain: domain can not be empty",
                config_key="repo_id",
            )
        model = copy.deepcopy(self.model)
        request = self.clone(model)
        model.become_new_but_keep_id()
        model.set_repo_id(domain)
        request.repo.set_repo_id(domain)
        return request

    def response_from_error(self, error: Exception) -> BaseResponse:
        response = BaseResponse.from_error(error)
        response.page_size = self.page_size
        response.current_page = self.current_page
        return response

    # verbs

    async def find(self) -> BaseResponse:
        return await self._run("find", lambda: self.repo.find(self.get_repo_request(True)))

    async def count(self) -> BaseResponse:
        async def work() -> RepoResponse:
            repo_request = self.get_repo_request(True)
            repo_request.page_size = 0
            return await self.repo.count(repo_request)

        return await self._run("count", work)

    async def find_one(self) -> BaseResponse:
        """
        Load exactly one record into ``self.model``.

        With an identity this is a lookup by id; without one the bound
        filters must match exactly one record.
        """
        try:
            self.validate()
        except MongoTenantError as e:
            return self.response_from_error(e.with_operation("find_one"))

        if self.model.get_id() is not None:
            return await self._run("find_one", lambda: self.repo.find_one(self.get_repo_request()))

        response = await self.find()
        if response.error is not None:
            return response
        if response.total_rows == 0:
            collection = self.repo.get_collection_name()
            return self.response_from_error(
                DocumentNotFoundError(
                    f"BaseRequest.find_one.{collection}: no document found",
                    collection=collection,
                ).with_operation("find_one")
            )
        if response.total_rows > 1:
            return self.response_from_error(
                CardinalityError(
                    f"BaseRequest.find_one.{self.repo.get_collection_name()}: "
                    f"expected one row, found {response.total_rows}",
                    found=response.total_rows,
                ).with_operation("find_one")
            )

        first = response.get_first()
        if first is not self.model and hasattr(first, "to_document"):
            self.model.apply_document(first.to_document())
        response.items = [self.model]
        return response

    async def update(self) -> BaseResponse:
        return await self._run("update", lambda: self.repo.update(self.get_repo_request()))

    async def update_many(self, values: dict[str, Any]) -> BaseResponse:
        return await self._run(
            "update_many", lambda: self.repo.update_many(self.get_repo_request(), values)
        )

    async def update_field(self, field_name: str, value: Any) -> BaseResponse:
        return await self._run(
            "update_field",
            lambda: self.repo.update_field(self.get_repo_request(), field_name, value),
        )

    async def delete(self) -> BaseResponse:
        return await self._run("delete", lambda: self.repo.delete(self.get_repo_request()))

    async def delete_soft(self) -> BaseResponse:
        return await self._run(
            "delete_soft", lambda: self.repo.delete_soft(self.get_repo_request())
        )

    async def remove_field(self, field_name: str) -> BaseResponse:
        return await self._run(
            "remove_field", lambda: self.repo.remove_field(self.get_repo_request(), field_name)
        )

    async def move(self, target_collection: str | None = None) -> BaseResponse:
        if target_collection:
            self.target_collection = target_collection
        return await self._run("move", lambda: self.repo.move(self.get_repo_request()))

    async def aggregate(self, pipeline: list[dict[str, Any]] | None = None) -> BaseResponse:
        async def work() -> RepoResponse:
            repo_request = self.get_repo_request()
            if pipeline is not None:
                repo_request.pipeline = pipeline
            return await self.repo.aggregate(repo_request)

        return await self._run("aggregate", work)

    async def add_item_in_array(self, field_name: str, value: Any) -> BaseResponse:
        return await self._run(
            "add_item_in_array",
            lambda: self.repo.add_item_in_array(self.get_repo_request(), field_name, value),
        )

    async def remove_item_in_array(self, field_name: str, value: Any) -> BaseResponse:
        return await self._run(
            "remove_item_in_array",
            lambda: self.repo.remove_item_in_array(self.get_repo_request(), field_name, value),
        )

    async def switch_item_in_array(self, field_name: str, value: Any) -> BaseResponse:
        return await self._run(
            "switch_item_in_array",
            lambda: self.repo.switch_item_in_array(self.get_repo_request(), field_name, value),
        )

    async def _run(self, operation: str, call) -> BaseResponse:
        try:
            self.validate()
        except MongoTenantError as e:
            return self.response_from_error(e.with_operation(operation))
        started = time.perf_counter()
        with tenant_scope(
            self.repo.get_repo_id(),
            collection=self.repo.get_collection_name(),
            user_id=self.user.get_id_str(),
        ):
            try:
                repo_response = await call()
            except MongoTenantError as e:
                log_operation(
                    contextual_logger,
                    f"request.{operation}",
                    logging.DEBUG,
                    success=False,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    error_kind=e.kind.value,
                    error=str(e),
                )
                return self.response_from_error(e.with_operation(operation))
            log_operation(
                contextual_logger,
                f"request.{operation}",
                logging.DEBUG,
                duration_ms=(time.perf_counter() - started) * 1000,
                rows=repo_response.total_rows,
            )
        return BaseResponse.from_repo_response(repo_response)
