"""
Generic repository pattern on top of SQLAlchemy.

Typical use:

    from repository_pattern import AsyncRepository, QueryOptions

    repo = AsyncRepository(City, session)
    cities = await repo.get_all(
        QueryOptions(tracked=False).paginate(1, 50),
        order_by=[(City.name, False), (City.population, True)],
    )
"""

from repository_pattern.core.exceptions import (
    Cancelled,
    ConcurrencyConflict,
    ConstraintViolation,
    InvalidArgument,
    RepositoryError,
    TransactionStateError,
)
from repository_pattern.repositories import (
    AsyncRepository,
    IRepository,
    ISyncRepository,
    PageRequest,
    QueryOptions,
    Repository,
    SortKey,
    compose,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncRepository",
    "Cancelled",
    "ConcurrencyConflict",
    "ConstraintViolation",
    "IRepository",
    "ISyncRepository",
    "InvalidArgument",
    "PageRequest",
    "QueryOptions",
    "Repository",
    "RepositoryError",
    "SortKey",
    "TransactionStateError",
    "compose",
]
