"""
MongoDB Repository Implementation

Implements the Repository interface over motor. Collections are reached
through the ConnectionRouter on every operation, so a repository can be
re-pointed at another tenant with ``set_repo_id``.

Array mutations (add/remove/switch an item) run as a single aggregation
pipeline ending in ``$merge`` back into the same collection. The new
array is computed server side, so concurrent callers never race on a
read-modify-write.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable
from typing import Any

from bson.errors import BSONError
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from ..config import RepositoryConfig
from ..constants import (
    COUNT_TOTAL_FIELD,
    DELETED_BY_FIELD,
    ID_FIELD,
    MAX_COUNT_LIMIT,
    MONGODUMP_BINARY,
    MONGORESTORE_BINARY,
    UPDATED_BY_FIELD,
    VERSION_FIELD,
)
from ..database import ConnectionRouter
from ..exceptions import (
    ConfigurationError,
    ConnectivityError,
    DeadlineExceededError,
    DocumentNotFoundError,
    EmptyFilterError,
    PartialFailureError,
    StoreError,
    ValidationError,
    VersionConflictError,
)
from ..models import RepositoryModel, RepoType, UserLog, to_object_id
from ..observability import get_logger as get_contextual_logger
from ..observability import timed_operation
from ..query import FindOptions, MongoFilterTranslator, QueryValidator
from .base import RepoRequest, RepoResponse, Repository

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class MongoRepository(Repository):
    """
    MongoDB implementation of the Repository interface.

    Example:
        repo = MongoRepository(router, "orders", database="tenant_a")
        response = await repo.find(RepoRequest(model=Order(), user=user, page_size=20,
                                               current_page=1))
    """

    def __init__(
        self,
        router: ConnectionRouter,
        collection: str,
        database: str = "",
        connection: str = "",
        is_global: bool = False,
        config: RepositoryConfig | None = None,
        translator: MongoFilterTranslator | None = None,
        validator: QueryValidator | None = None,
    ):
        """
        Initialize the MongoDB repository.

        Args:
            router: Connection router owning the client pool
            collection: Collection name
            database: Tenant database (ignored for global collections)
            connection: Tenant connection string, empty means the configured default
            is_global: Whether the collection lives in the shared default database
            config: Repository policies (defaults to the router's configuration)
            translator: FindOptions translator
            validator: Validator applied to caller-provided pipelines

        Raises:
            ConfigurationError: If the collection, database or connection is missing
        """
        if not collection:
            raise ConfigurationError("MongoRepository: collection name is required")

        self.router = router
        self.config = config or router.config
        self.translator = translator or MongoFilterTranslator()
        self.validator = validator or QueryValidator()
        self._collection_name = collection
        self._is_global = is_global
        self._tenant_connection = connection or ""
        self._connection, self._database = router.resolve(connection, database, is_global)

    def __repr__(self) -> str:
        return (
            f"MongoRepository(collection={self._collection_name!r}, "
            f"database={self._database!r}, is_global={self._is_global})"
        )

    # metadata

    def get_type(self) -> RepoType:
        return RepoType.MONGODB

    def get_repo_id(self) -> str:
        return self._database

    def get_database(self) -> str:
        return self._database

    def get_connection(self) -> str:
        return self._connection

    def get_collection_name(self) -> str:
        return self._collection_name

    @property
    def tenant_connection(self) -> str:
        """Connection string given at construction, empty when the default is used."""
        return self._tenant_connection

    def is_global(self) -> bool:
        return self._is_global

    def set_repo_id(self, value: str) -> None:
        """
        Point the repository at tenant ``value``.

        Global repositories keep resolving to the shared default database.

        Raises:
            ConfigurationError: If ``value`` is empty
        """
        if not value:
            raise ConfigurationError("MongoRepository.set_repo_id: repo id can not be empty")
        if self._is_global:
            logger.debug(
                f"Ignoring set_repo_id('{value}') on global collection '{self._collection_name}'"
            )
            return
        self._connection, self._database = self.router.resolve(
            self._tenant_connection, value, False
        )

    def get_filter(self, options: FindOptions) -> dict[str, Any]:
        return self.translator.get_filter(options)

    def get_order(self, options: FindOptions) -> list[tuple[str, int]]:
        return self.translator.get_order(options)

    # read operations

    @timed_operation("repository.find")
    async def find(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("find", request, self._find(request))

    @timed_operation("repository.find_one")
    async def find_one(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("find_one", request, self._find_one(request))

    @timed_operation("repository.count")
    async def count(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("count", request, self._count(request))

    @timed_operation("repository.aggregate")
    async def aggregate(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("aggregate", request, self._aggregate(request))

    # write operations

    @timed_operation("repository.update")
    async def update(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("update", request, self._update(request))

    @timed_operation("repository.update_many")
    async def update_many(self, request: RepoRequest, values: dict[str, Any]) -> RepoResponse:
        return await self._execute("update_many", request, self._update_many(request, values))

    @timed_operation("repository.update_field")
    async def update_field(self, request: RepoRequest, field: str, value: Any) -> RepoResponse:
        self._check_field(field)
        return await self._execute(
            "update_field", request, self._update_many(request, {field: value})
        )

    @timed_operation("repository.delete_soft")
    async def delete_soft(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("delete_soft", request, self._delete_soft(request))

    @timed_operation("repository.delete")
    async def delete(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("delete", request, self._delete(request))

    @timed_operation("repository.remove_field")
    async def remove_field(self, request: RepoRequest, field: str) -> RepoResponse:
        self._check_field(field)
        return await self._execute("remove_field", request, self._remove_field(request, field))

    @timed_operation("repository.move")
    async def move(self, request: RepoRequest) -> RepoResponse:
        return await self._execute("move", request, self._move(request))

    @timed_operation("repository.add_item_in_array")
    async def add_item_in_array(self, request: RepoRequest, field: str, value: Any) -> RepoResponse:
        return await self._execute(
            "add_item_in_array", request, self._mutate_array(request, field, value, "add")
        )

    @timed_operation("repository.remove_item_in_array")
    async def remove_item_in_array(
        self, request: RepoRequest, field: str, value: Any
    ) -> RepoResponse:
        return await self._execute(
            "remove_item_in_array", request, self._mutate_array(request, field, value, "remove")
        )

    @timed_operation("repository.switch_item_in_array")
    async def switch_item_in_array(
        self, request: RepoRequest, field: str, value: Any
    ) -> RepoResponse:
        return await self._execute(
            "switch_item_in_array", request, self._mutate_array(request, field, value, "switch")
        )

    # database maintenance

    async def repo_backup(self, request: RepoRequest, backup_id: str) -> RepoResponse:
        """Dump the repository database to ``<backup_dir>/<database>/<backup_id>``."""
        if not backup_id:
            raise ValidationError("repo_backup: backup id is required")
        out = os.path.join(self.config.backup_dir, self._database, backup_id)
        await self._run_process(
            MONGODUMP_BINARY, "--uri", self._connection, "--db", self._database, "--out", out
        )
        logger.info(f"Backed up database '{self._database}' to {out}")
        return RepoResponse()

    async def repo_restore(self, request: RepoRequest, backup_id: str) -> RepoResponse:
        """Drop the repository database and restore it from a ``repo_backup`` dump."""
        if not backup_id:
            raise ValidationError("repo_restore: backup id is required")
        source = os.path.join(self.config.backup_dir, self._database, backup_id)
        if not os.path.isdir(os.path.join(source, self._database)):
            raise ValidationError(
                f"repo_restore: no backup found at {source}", context={"backup_id": backup_id}
            )
        await self.delete_database(self._connection, self._database)
        await self._run_process(
            MONGORESTORE_BINARY,
            "--uri",
            self._connection,
            "--nsInclude",
            f"{self._database}.*",
            "--dir",
            source,
        )
        logger.info(f"Restored database '{self._database}' from {source}")
        return RepoResponse()

    async def delete_database(self, connection: str, database: str) -> None:
        if not database:
            raise ConfigurationError("delete_database: database can not be empty")
        try:
            await self.router.drop_database(connection or self._connection, database)
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            raise ConnectivityError(f"delete_database failed: {e}", database=database) from e
        except PyMongoError as e:
            raise StoreError(f"delete_database failed: {e}", context={"database": database}) from e

    # implementation

    async def _collection(self) -> AsyncIOMotorCollection:
        db = await self.router.get_database(self._connection, self._database)
        return db[self._collection_name]

    async def _execute(self, operation: str, request: RepoRequest, work: Awaitable) -> RepoResponse:
        """
        Await ``work`` under the request deadline and convert driver errors.
        """
        context = {"collection": self._collection_name, "database": self._database}
        try:
            if request.timeout:
                return await asyncio.wait_for(work, timeout=request.timeout)
            return await work
        except asyncio.TimeoutError as e:
            raise DeadlineExceededError(
                f"MongoRepository.{operation}.{self._collection_name}: deadline exceeded",
                timeout=request.timeout,
                context=context,
            ) from e
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(f"MongoRepository.{operation}: connection error: {e}", exc_info=True)
            raise ConnectivityError(
                f"MongoRepository.{operation}.{self._collection_name}: {e}",
                database=self._database,
                context=context,
            ) from e
        except PyMongoError as e:
            logger.error(f"MongoRepository.{operation}: store error: {e}", exc_info=True)
            raise StoreError(
                f"MongoRepository.{operation}.{self._collection_name}: {e}", context=context
            ) from e
        except BSONError as e:
            logger.warning(f"MongoRepository.{operation}: document not encodable: {e}")
            raise ValidationError(
                f"MongoRepository.{operation}.{self._collection_name}: {e}", context=context
            ) from e

    def _require_model(self, request: RepoRequest, operation: str) -> RepositoryModel:
        if request.model is None:
            raise ValidationError(
                f"MongoRepository.{operation}: request model is required",
                context={"collection": self._collection_name},
            )
        return request.model

    def _user_log(self, request: RepoRequest, operation: str) -> UserLog:
        if request.user is None:
            raise ValidationError(
                f"MongoRepository.{operation}: request user is required",
                context={"collection": self._collection_name},
            )
        return request.user.get_user_log()

    def _guard(self, options: FindOptions, operation: str) -> None:
        if options.filter_is_empty():
            logger.warning(
                f"Refusing {operation} on '{self._collection_name}' with an empty filter"
            )
            raise EmptyFilterError(
                f"{operation}: {self._collection_name} model can not be empty. Filter is empty",
                collection=self._collection_name,
            )

    @staticmethod
    def _check_field(field: str) -> None:
        if not field or field.startswith("$"):
            raise ValidationError(f"Invalid field name '{field}'", context={"field": field})
        if field == VERSION_FIELD:
            raise ValidationError(
                f"Field '{field}' is managed by the repository", context={"field": field}
            )

    @staticmethod
    def _decode(document: dict[str, Any], list_type: type | None) -> Any:
        if list_type is None or not hasattr(list_type, "from_document"):
            return document
        return list_type.from_document(document)

    async def _find(self, request: RepoRequest) -> RepoResponse:
        model = self._require_model(request, "find")

        if model.get_id() is not None:
            response = RepoResponse()
            try:
                response = await self._find_one(request)
            except DocumentNotFoundError as e:
                logger.debug(f"find absorbed not-found: {e}")
            response.paginate(response.total_rows, request.page_size, request.current_page)
            return response

        collection = await self._collection()
        query = self.get_filter(request.find_options)
        sort = self.get_order(request.find_options)
        self.validator.validate_sort(sort)
        total = await collection.count_documents(query, limit=MAX_COUNT_LIMIT)

        kwargs: dict[str, Any] = {}
        if sort:
            kwargs["sort"] = sort
        if request.page_size > 0:
            kwargs["skip"] = max(request.page_size * (request.current_page - 1), 0)
        if request.current_page > 0:
            kwargs["limit"] = request.page_size

        documents = await collection.find(query, **kwargs).to_list(length=None)
        list_type = request.list_type or type(model)

        response = RepoResponse(items=[self._decode(doc, list_type) for doc in documents])
        response.paginate(total, request.page_size, request.current_page)
        contextual_logger.debug(
            "find completed",
            extra={"collection": self._collection_name, "rows": len(documents), "total": total},
        )
        return response

    async def _find_one(self, request: RepoRequest) -> RepoResponse:
        model = self._require_model(request, "find_one")
        document_id = model.get_id()
        if document_id is None:
            raise ValidationError(
                f"MongoRepository.find_one.{self._collection_name}: model has no identity"
            )

        collection = await self._collection()
        document = await collection.find_one({ID_FIELD: document_id})
        if document is None:
            raise DocumentNotFoundError(
                f"MongoRepository.find_one.{self._collection_name}: "
                f"no document found, ID: {document_id}",
                collection=self._collection_name,
                document_id=document_id,
            )

        model.apply_document(document)
        response = RepoResponse(items=[model])
        response.paginate(1, request.page_size, request.current_page)
        return response

    async def _count(self, request: RepoRequest) -> RepoResponse:
        collection = await self._collection()
        query = self.get_filter(request.find_options)
        total = await collection.count_documents(query, limit=MAX_COUNT_LIMIT)
        response = RepoResponse()
        response.paginate(total, request.page_size, request.current_page)
        return response

    async def _create(self, request: RepoRequest, model: RepositoryModel) -> RepoResponse:
        model.set_created(request.user)
        collection = await self._collection()
        await collection.insert_one(model.to_document())
        logger.debug(f"Created document {model.get_id()} in '{self._collection_name}'")
        return RepoResponse(items=[model], total_rows=1)

    async def _update(self, request: RepoRequest) -> RepoResponse:
        model = self._require_model(request, "update")
        self._user_log(request, "update")
        model.set_updated(request.user)

        if model.is_new():
            return await self._create(request, model)

        document_id = model.get_id()
        if document_id is None:
            if self.config.allow_create_fallback:
                logger.warning(
                    f"update on '{self._collection_name}' has no identity, creating instead"
                )
                model.become_new()
                model.set_updated(request.user)
                return await self._create(request, model)
            raise ValidationError(
                f"MongoRepository.update.{self._collection_name}: model has no identity"
            )

        expected = getattr(model, VERSION_FIELD, 0) or 0
        setattr(model, VERSION_FIELD, expected + 1)
        document = model.to_document()
        document.pop(ID_FIELD, None)
        version_filter: Any = expected if expected else {"$in": [0, None]}
        changes: dict[str, Any] = {"$set": document}
        recovering = getattr(model, "recovered", False) and DELETED_BY_FIELD not in document
        if recovering:
            changes["$unset"] = {DELETED_BY_FIELD: ""}

        collection = await self._collection()
        try:
            result = await collection.update_one(
                {ID_FIELD: document_id, VERSION_FIELD: version_filter}, changes
            )
        except (PyMongoError, BSONError):
            setattr(model, VERSION_FIELD, expected)
            raise

        if result.matched_count:
            if recovering:
                model.recovered = False
            return RepoResponse(items=[model], total_rows=1)

        setattr(model, VERSION_FIELD, expected)
        exists = await collection.count_documents({ID_FIELD: document_id}, limit=1)
        if exists:
            raise VersionConflictError(
                f"MongoRepository.update.{self._collection_name}: document {document_id} "
                f"was modified concurrently",
                expected_version=expected,
                context={"collection": self._collection_name, "id": str(document_id)},
            )
        if self.config.allow_create_fallback:
            logger.warning(
                f"update target {document_id} missing in '{self._collection_name}', creating"
            )
            model.become_new_but_keep_id()
            model.set_updated(request.user)
            return await self._create(request, model)
        raise DocumentNotFoundError(
            f"MongoRepository.update.{self._collection_name}: "
            f"no document found, ID: {document_id}",
            collection=self._collection_name,
            document_id=document_id,
        )

    async def _update_many(self, request: RepoRequest, values: dict[str, Any]) -> RepoResponse:
        self._guard(request.find_options, "update_many")
        user_log = self._user_log(request, "update_many")
        query = self.get_filter(request.find_options)
        changes = {**values, UPDATED_BY_FIELD: user_log.to_dict()}

        collection = await self._collection()
        result = await collection.update_many(
            query, {"$set": changes, "$inc": {VERSION_FIELD: 1}}
        )
        return RepoResponse(total_rows=result.modified_count)

    async def _delete_soft(self, request: RepoRequest) -> RepoResponse:
        if self.config.soft_delete_requires_filter:
            self._guard(request.find_options, "delete_soft")
        user_log = self._user_log(request, "delete_soft")
        query = self.get_filter(request.find_options)

        collection = await self._collection()
        result = await collection.update_many(
            query, {"$set": {DELETED_BY_FIELD: user_log.to_dict()}, "$inc": {VERSION_FIELD: 1}}
        )
        model = request.model
        if model is not None and model.get_id() is not None:
            model.set_deleted(request.user)
            if result.modified_count:
                setattr(model, VERSION_FIELD, (getattr(model, VERSION_FIELD, 0) or 0) + 1)
        return RepoResponse(total_rows=result.modified_count)

    async def _delete(self, request: RepoRequest) -> RepoResponse:
        model = self._require_model(request, "delete")
        collection = await self._collection()

        document_id = model.get_id()
        if document_id is not None:
            result = await collection.delete_one({ID_FIELD: document_id})
            return RepoResponse(total_rows=result.deleted_count)

        self._guard(request.find_options, "delete")
        result = await collection.delete_many(self.get_filter(request.find_options))
        return RepoResponse(total_rows=result.deleted_count)

    async def _remove_field(self, request: RepoRequest, field: str) -> RepoResponse:
        user_log = self._user_log(request, "remove_field")
        query = self.get_filter(request.find_options)

        collection = await self._collection()
        result = await collection.update_many(
            query,
            {
                "$set": {field: None, UPDATED_BY_FIELD: user_log.to_dict()},
                "$inc": {VERSION_FIELD: 1},
            },
        )
        return RepoResponse(total_rows=result.modified_count)

    async def _move(self, request: RepoRequest) -> RepoResponse:
        if not request.target_collection:
            raise ValidationError(
                f"move: target collection is required for '{self._collection_name}'"
            )
        self._guard(request.find_options, "move")
        query = self.get_filter(request.find_options)

        collection = await self._collection()
        await collection.aggregate(
            [{"$match": query}, {"$merge": {"into": request.target_collection}}]
        ).to_list(length=None)

        try:
            result = await collection.delete_many(query)
        except PyMongoError as e:
            logger.error(
                f"move: copied '{self._collection_name}' into '{request.target_collection}' "
                f"but the delete failed: {e}",
                exc_info=True,
            )
            raise PartialFailureError(
                f"move: documents were copied to '{request.target_collection}' but not "
                f"removed from '{self._collection_name}': {e}",
                completed_step="merge",
                context={
                    "collection": self._collection_name,
                    "target_collection": request.target_collection,
                },
            ) from e
        return RepoResponse(total_rows=result.deleted_count)

    async def _aggregate(self, request: RepoRequest) -> RepoResponse:
        pipeline = request.pipeline or request.find_options.pipeline
        if not pipeline:
            raise ValidationError(f"aggregate: pipeline is required for '{self._collection_name}'")
        self.validator.validate_pipeline(pipeline)

        collection = await self._collection()
        documents = await collection.aggregate(list(pipeline)).to_list(length=None)
        counted = await collection.aggregate(
            [*pipeline, {"$count": COUNT_TOTAL_FIELD}]
        ).to_list(length=None)
        total = counted[0][COUNT_TOTAL_FIELD] if counted else 0

        response = RepoResponse(items=[self._decode(doc, request.list_type) for doc in documents])
        response.paginate(total, request.page_size, request.current_page)
        return response

    def _array_pipeline(
        self, document_id: Any, field: str, value: Any, mode: str
    ) -> list[dict[str, Any]]:
        path = f"${field}"
        item = {"$literal": value}
        is_array = {"$eq": [{"$type": path}, "array"]}
        present = {"$in": [item, path]}
        appended = {"$concatArrays": [path, [item]]}
        removed = {"$filter": {"input": path, "cond": {"$ne": ["$$this", item]}}}

        if mode == "add":
            on_array, seed = {"$cond": [present, path, appended]}, [item]
        elif mode == "remove":
            on_array, seed = removed, []
        else:
            on_array, seed = {"$cond": [present, removed, appended]}, [item]

        return [
            {"$match": {ID_FIELD: document_id}},
            {
                "$addFields": {
                    field: {"$cond": [is_array, on_array, seed]},
                    VERSION_FIELD: {"$add": [{"$ifNull": [f"${VERSION_FIELD}", 0]}, 1]},
                }
            },
            {
                "$merge": {
                    "into": self._collection_name,
                    "on": ID_FIELD,
                    "whenMatched": "merge",
                    "whenNotMatched": "discard",
                }
            },
        ]

    async def _mutate_array(
        self, request: RepoRequest, field: str, value: Any, mode: str
    ) -> RepoResponse:
        self._check_field(field)
        raw_id = request.id
        if raw_id is None and request.model is not None:
            raw_id = request.model.get_id()
        document_id = to_object_id(raw_id)

        collection = await self._collection()
        await collection.aggregate(self._array_pipeline(document_id, field, value, mode)).to_list(
            length=None
        )

        if mode != "switch":
            return RepoResponse(total_rows=1)

        sized = await collection.aggregate(
            [
                {"$match": {ID_FIELD: document_id}},
                {"$project": {"count": {"$size": {"$ifNull": [f"${field}", []]}}}},
            ]
        ).to_list(length=None)
        return RepoResponse(total_rows=sized[0]["count"] if sized else 0)

    async def _run_process(self, *args: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *args, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"{args[0]} is not installed or not on PATH", config_key=args[0]
            ) from e
        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            logger.error(f"{args[0]} exited with code {process.returncode}: {message}")
            raise StoreError(
                f"{args[0]} exited with code {process.returncode}: {message}",
                context={"database": self._database},
            )
