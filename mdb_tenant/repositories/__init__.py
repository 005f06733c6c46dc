"""
Repository Pattern

Abstract repository interface, its MongoDB implementation and the
factories requests use to obtain one.

Usage:
    from mdb_tenant.repositories import RepoRequest, new_repository_from_model

    repo = new_repository_from_model(router, order)
    response = await repo.find(RepoRequest(model=order, user=user))
"""

from .base import RepoRequest, RepoResponse, Repository
from .factory import clone_repository, new_repository, new_repository_from_model
from .mongo import MongoRepository

__all__ = [
    "Repository",
    "RepoRequest",
    "RepoResponse",
    "MongoRepository",
    "new_repository",
    "new_repository_from_model",
    "clone_repository",
]
