"""
Repository layer for data access.

Provides a generic data access abstraction following the Repository
pattern, isolating query composition, change tracking and transaction
handling from business logic.
"""

from repository_pattern.repositories.base import AsyncRepository, RepositoryBase
from repository_pattern.repositories.interfaces import IRepository, ISyncRepository
from repository_pattern.repositories.query import (
    PageRequest,
    QueryOptions,
    SortKey,
    compose,
    compose_options,
)
from repository_pattern.repositories.sync import Repository

__all__ = [
    "AsyncRepository",
    "IRepository",
    "ISyncRepository",
    "PageRequest",
    "QueryOptions",
    "Repository",
    "RepositoryBase",
    "SortKey",
    "compose",
    "compose_options",
]
