"""
Repository factories.

Requests never construct repositories directly; they go through these
functions so the store type, tenant database and global flag are always
derived the same way from an entity.
"""

import logging

from ..config import RepositoryConfig
from ..database import ConnectionRouter
from ..exceptions import ConfigurationError
from ..models import RepositoryModel, RepoType
from .base import Repository
from .mongo import MongoRepository

logger = logging.getLogger(__name__)


def new_repository(
    router: ConnectionRouter,
    connection: str,
    repo_type: RepoType,
    database: str,
    collection: str,
    is_global: bool,
    config: RepositoryConfig | None = None,
) -> Repository:
    """
    Create a repository of ``repo_type`` for one collection.

    Raises:
        ConfigurationError: If the store type is not supported or routing fails
    """
    if repo_type is RepoType.MONGODB:
        return MongoRepository(
            router,
            collection,
            database=database,
            connection=connection,
            is_global=is_global,
            config=config,
        )
    raise ConfigurationError(
        f"Repository type '{repo_type}' is not supported",
        config_key="repo_type",
        config_value=repo_type,
    )


def new_repository_from_model(
    router: ConnectionRouter,
    model: RepositoryModel,
    connection: str = "",
    config: RepositoryConfig | None = None,
) -> Repository:
    """Create the repository an entity lives in, using its collection and tenant id."""
    collection, is_global = model.get_collection()
    return new_repository(
        router,
        connection,
        model.get_repo_type(),
        model.get_repo_id(),
        collection,
        is_global,
        config=config,
    )


def clone_repository(repo: Repository, model: RepositoryModel) -> Repository:
    """
    Create a repository for ``model`` on the same router and connection as ``repo``.

    The model's tenant id wins; without one the source repository's tenant is kept.
    """
    if not isinstance(repo, MongoRepository):
        raise ConfigurationError(
            f"Cannot clone repository of type '{type(repo).__name__}'",
            config_key="repo_type",
        )
    collection, is_global = model.get_collection()
    repo_id = model.get_repo_id() or repo.get_repo_id()
    logger.debug(f"Cloning repository {repo!r} for collection '{collection}' ({repo_id})")
    return new_repository(
        repo.router,
        repo.tenant_connection,
        model.get_repo_type(),
        repo_id,
        collection,
        is_global,
        config=repo.config,
    )
