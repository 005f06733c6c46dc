"""
Unit tests for the repository factories.
"""

import pytest
from entities import SalesOrder, Trace

from mdb_tenant.config import RepositoryConfig
from mdb_tenant.exceptions import ConfigurationError
from mdb_tenant.models import RepoType
from mdb_tenant.repositories import (MongoRepository, clone_repository,
                                     new_repository, new_repository_from_model)


@pytest.mark.unit
class TestNewRepository:
    def test_mongodb(self, router):
        repo = new_repository(router, "", RepoType.MONGODB, "tenant_a", "orders", False)

        assert isinstance(repo, MongoRepository)
        assert repo.get_database() == "tenant_a"

    def test_unsupported_type(self, router):
        with pytest.raises(ConfigurationError) as exc_info:
            new_repository(router, "", RepoType.UNKNOWN, "tenant_a", "orders", False)

        assert exc_info.value.config_key == "repo_type"

    def test_from_model(self, router):
        repo = new_repository_from_model(router, SalesOrder(repo_id="tenant_c"))

        assert repo.get_collection_name() == "orders"
        assert repo.get_database() == "tenant_c"

    def test_from_model_without_tenant(self, router):
        with pytest.raises(ConfigurationError):
            new_repository_from_model(router, SalesOrder())

    def test_from_global_model(self, router):
        repo = new_repository_from_model(router, Trace(repo_id="ignored"))

        assert repo.get_database() == "shared_db"
        assert repo.is_global()


@pytest.mark.unit
class TestCloneRepository:
    def test_keeps_tenant_connection_and_config(self, router):
        config = RepositoryConfig(
            mongo_uri="mongodb://localhost:27017",
            default_database="shared_db",
            allow_create_fallback=True,
        )
        source = MongoRepository(
            router,
            "orders",
            database="tenant_a",
            connection="mongodb://other:27017",
            config=config,
        )

        clone = clone_repository(source, Trace())
        tenant_clone = clone_repository(source, SalesOrder())

        assert clone.get_collection_name() == "traces"
        assert clone.get_database() == "shared_db"
        assert tenant_clone.get_connection() == "mongodb://other:27017"
        assert tenant_clone.get_database() == "tenant_a"
        assert tenant_clone.config is config
        assert tenant_clone.router is router

    def test_model_tenant_wins(self, orders_repo):
        clone = clone_repository(orders_repo, SalesOrder(repo_id="tenant_b"))

        assert clone.get_database() == "tenant_b"

    def test_requires_mongo_repository(self):
        with pytest.raises(ConfigurationError, match="Cannot clone"):
            clone_repository(object(), SalesOrder())
