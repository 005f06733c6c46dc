"""
Unit tests for BaseRequest.

Tests repository wiring, soft-delete visibility, id filters, cloning
across tenants and the error-carrying verbs.
"""

import logging
from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from bson.errors import InvalidDocument
from entities import SalesOrder, Trace, make_cursor

from mdb_tenant.exceptions import (CardinalityError, ConfigurationError,
                                   DocumentNotFoundError, EmptyFilterError,
                                   ErrorKind, FilterTranslationError,
                                   ValidationError)
from mdb_tenant.models import User
from mdb_tenant.observability import get_logging_context
from mdb_tenant.query import Filter, FilterOperator, FindOptions
from mdb_tenant.requests import BaseRequest


def not_deleted():
    return {"deleted_by": {"$exists": False}}


@pytest.mark.unit
class TestConstruction:
    def test_with_model_uses_user_tenant(self, order_request):
        assert order_request.model.repo_id == "tenant_a"
        assert order_request.repo.get_database() == "tenant_a"
        assert order_request.repo.get_collection_name() == "orders"

    def test_with_model_keeps_model_tenant(self, router, acting_user):
        request = BaseRequest.with_model(SalesOrder(repo_id="tenant_b"), acting_user, router)

        assert request.repo.get_database() == "tenant_b"

    def test_with_model_global_entity(self, router, acting_user):
        request = BaseRequest.with_model(Trace(), acting_user, router)

        assert request.repo.get_database() == "shared_db"
        assert request.repo.is_global() is True
        assert request.model.repo_id is None

    def test_create_requires_user_identity(self, orders_repo):
        with pytest.raises(ValidationError, match="user id is required"):
            BaseRequest.create(SalesOrder(), orders_repo, User(username="bob"))

    def test_create_requires_repository(self, acting_user):
        with pytest.raises(ConfigurationError, match="repository is required"):
            BaseRequest.create(SalesOrder(), None, acting_user)


@pytest.mark.unit
class TestIds:
    def test_get_object_ids_skips_invalid(self, order_request):
        valid = ObjectId()
        order_request.ids = [str(valid), "not-an-id", valid]

        assert order_request.get_object_ids() == [valid, valid]
        assert order_request.has_ids() is True

    def test_only_invalid_ids(self, order_request):
        order_request.ids = ["nope"]

        assert order_request.has_ids() is False

    def test_custom_query_field_keeps_raw_values(self, order_request):
        order_request.query_field = "number"
        order_request.ids = ["A-1", "A-2"]

        assert order_request.has_ids() is True
        options = order_request.model.get_find_options(order_request)
        assert Filter("number", FilterOperator.IN, ["A-1", "A-2"]) in options.filters

    def test_ids_and_excluded_ids_become_filters(self, order_request):
        wanted, unwanted = ObjectId(), ObjectId()
        order_request.ids = [str(wanted)]
        order_request.excluded_ids = [str(unwanted)]

        options = order_request.model.get_find_options(order_request)

        assert Filter("_id", FilterOperator.IN, [wanted]) in options.filters
        assert Filter("_id", FilterOperator.NOT_IN, [unwanted]) in options.filters

    def test_order_is_deduplicated(self, order_request):
        order_request.add_order_desc("number", "", "number")
        order_request.add_order_asc("status")

        assert len(order_request.order) == 2


@pytest.mark.unit
class TestRepoRequest:
    def test_reads_hide_soft_deleted(self, order_request):
        repo_request = order_request.get_repo_request(reading=True)

        assert repo_request.find_options.has_filter("deleted_by")

    def test_include_deleted(self, order_request):
        order_request.include_deleted = True

        repo_request = order_request.get_repo_request(reading=True)

        assert not repo_request.find_options.has_filter("deleted_by")

    def test_mutations_see_soft_deleted(self, order_request):
        assert not order_request.get_repo_request().find_options.has_filter("deleted_by")

    def test_bound_options_are_not_mutated(self, order_request):
        options = FindOptions()
        options.add_equals("status", "open")
        order_request.set_find_options(options)

        order_request.get_repo_request(reading=True)

        assert len(options.filters) == 1

    def test_carries_request_fields(self, order_request):
        order_request.page_size, order_request.current_page = 10, 3
        order_request.timeout = 2.5
        order_request.target_collection = "archive"

        repo_request = order_request.get_repo_request()

        assert repo_request.page_size == 10
        assert repo_request.current_page == 3
        assert repo_request.timeout == 2.5
        assert repo_request.target_collection == "archive"
        assert repo_request.user is order_request.user


@pytest.mark.unit
class TestCloning:
    def test_clone_copies_request_state(self, order_request):
        order_request.page_size, order_request.current_page = 5, 2
        order_request.include_deleted = True
        order_request.ids = ["a"]
        order_request.add_order_asc("number")

        clone = order_request.clone(SalesOrder())

        assert clone.page_size == 5
        assert clone.current_page == 2
        assert clone.include_deleted is True
        assert clone.ids == ["a"]
        assert clone.ids is not order_request.ids
        assert clone.order == order_request.order
        assert clone.user is order_request.user
        assert clone.repo is not order_request.repo
        assert clone.repo.get_database() == "tenant_a"

    def test_clone_for_global_entity(self, order_request):
        clone = order_request.clone(Trace())

        assert clone.repo.get_database() == "shared_db"
        assert clone.repo.get_collection_name() == "traces"

    def test_clone_model_to_new_domain(self, order_request, acting_user):
        model = order_request.model
        model.id = ObjectId()
        model.set_created(acting_user)

        clone = order_request.clone_model_to_new_domain("tenant_b")

        assert clone.model is not model
        assert clone.model.id == model.id
        assert clone.model.is_new()
        assert clone.model.repo_id == "tenant_b"
        assert clone.repo.get_database() == "tenant_b"
        assert model.repo_id == "tenant_a"
        assert not model.is_new()
        assert order_request.repo.get_database() == "tenant_a"

    def test_clone_model_to_empty_domain(self, order_request):
        with pytest.raises(ConfigurationError):
            order_request.clone_model_to_new_domain("")


@pytest.mark.unit
@pytest.mark.asyncio
class TestVerbs:
    """Test verbs against the mocked collection."""

    async def test_find_filters_and_context(self, order_request, mock_mongo_collection, caplog):
        mock_mongo_collection.count_documents = AsyncMock(return_value=1)
        mock_mongo_collection.find.return_value = make_cursor([{"_id": ObjectId()}])

        with caplog.at_level(logging.DEBUG, logger="mdb_tenant.requests.request"):
            response = await SalesOrder(repo_id="tenant_a", status="open").find(order_request)

        query = mock_mongo_collection.find.call_args.args[0]
        assert query == {
            "$and": [{"repo_id": "tenant_a"}, {"status": "open"}, not_deleted()]
        }
        assert response.ok
        assert response.total_rows == 1
        record = [r for r in caplog.records if r.name == "mdb_tenant.requests.request"][-1]
        assert record.operation == "request.find"
        assert record.tenant_id == "tenant_a"
        assert record.collection == "orders"
        assert record.rows == 1
        assert "tenant_id" not in get_logging_context()

    async def test_count(self, order_request, mock_mongo_collection):
        mock_mongo_collection.count_documents = AsyncMock(return_value=12)
        order_request.page_size = 5

        response = await order_request.model.count(order_request)

        assert response.total_rows == 12
        assert response.total_pages == 0
        mock_mongo_collection.find.assert_not_called()

    async def test_error_is_carried_not_raised(self, order_request):
        options = FindOptions()
        options.add_multiple([Filter("status", FilterOperator.EQUALS, "open")])
        order_request.set_find_options(options)

        response = await order_request.find()

        assert isinstance(response.error, FilterTranslationError)
        assert response.error.context["operation"] == "find"
        assert not response.ok
        with pytest.raises(FilterTranslationError):
            response.raise_for_error()

    async def test_empty_filter_guard(self, order_request, mock_mongo_collection):
        response = await order_request.update_many({"status": "closed"})

        assert response.error.kind is ErrorKind.EMPTY_FILTER
        assert isinstance(response.error, EmptyFilterError)
        mock_mongo_collection.update_many.assert_not_awaited()

    async def test_missing_user(self, order_request):
        order_request.user = None

        response = await order_request.find()

        assert isinstance(response.error, ValidationError)

    async def test_unencodable_field_is_carried(self, order_request, mock_mongo_collection):
        mock_mongo_collection.insert_one = AsyncMock(
            side_effect=InvalidDocument("cannot encode object: Decimal('1.5')")
        )

        response = await order_request.update()

        assert isinstance(response.error, ValidationError)
        assert response.error.context["operation"] == "update"

    async def test_find_one_by_filters(self, order_request, mock_mongo_collection):
        document_id = ObjectId()
        mock_mongo_collection.count_documents = AsyncMock(return_value=1)
        mock_mongo_collection.find.return_value = make_cursor(
            [{"_id": document_id, "number": "A-7"}]
        )
        model = SalesOrder(number="A-7")

        response = await model.find_one(order_request)

        assert response.ok
        assert response.items == [model]
        assert model.id == document_id

    async def test_find_one_without_match(self, order_request):
        response = await SalesOrder(number="A-7").find_one(order_request)

        assert isinstance(response.error, DocumentNotFoundError)
        assert "orders" in response.str_error

    async def test_find_one_with_many_matches(self, order_request, mock_mongo_collection):
        mock_mongo_collection.count_documents = AsyncMock(return_value=2)
        mock_mongo_collection.find.return_value = make_cursor(
            [{"_id": ObjectId()}, {"_id": ObjectId()}]
        )

        response = await SalesOrder(status="open").find_one(order_request)

        assert isinstance(response.error, CardinalityError)
        assert response.error.found == 2

    async def test_find_one_by_identity(self, order_request, mock_mongo_collection):
        document_id = ObjectId()
        mock_mongo_collection.find_one = AsyncMock(
            return_value={"_id": document_id, "status": "open"}
        )
        model = SalesOrder(id=document_id)

        response = await model.find_one(order_request)

        assert response.items == [model]
        assert model.status == "open"

    async def test_get_one_raises(self, order_request):
        with pytest.raises(DocumentNotFoundError):
            await SalesOrder(number="missing").get_one(order_request)

    async def test_move(self, order_request, mock_mongo_collection):
        order_request.set_find_options(SalesOrder(status="closed").get_find_options(order_request))

        response = await order_request.move("orders_archive")

        pipeline = mock_mongo_collection.aggregate.call_args.args[0]
        assert pipeline[-1] == {"$merge": {"into": "orders_archive"}}
        assert response.total_rows == 2

    async def test_aggregate(self, order_request, mock_mongo_collection):
        pipeline = [{"$group": {"_id": "$status"}}]

        response = await order_request.aggregate(pipeline)

        assert mock_mongo_collection.aggregate.call_args_list[0].args[0] == pipeline
        assert response.ok

    async def test_array_verb_defaults_to_model_id(self, order_request, mock_mongo_collection):
        order_request.model.id = ObjectId()

        response = await order_request.add_item_in_array("tags", "vip")

        pipeline = mock_mongo_collection.aggregate.call_args.args[0]
        assert pipeline[0] == {"$match": {"_id": order_request.model.id}}
        assert response.total_rows == 1

    async def test_array_verb_with_explicit_id(self, order_request, mock_mongo_collection):
        document_id = ObjectId()
        order_request.id = str(document_id)

        await order_request.remove_item_in_array("tags", "vip")

        pipeline = mock_mongo_collection.aggregate.call_args.args[0]
        assert pipeline[0] == {"$match": {"_id": document_id}}

    async def test_update_field_and_remove_field(self, order_request, mock_mongo_collection):
        order_request.set_find_options(SalesOrder(status="open").get_find_options(order_request))

        await order_request.update_field("amount", 3)
        await order_request.remove_field("tags")

        first, second = mock_mongo_collection.update_many.call_args_list
        assert first.args[1]["$set"]["amount"] == 3
        assert second.args[1]["$set"]["tags"] is None
