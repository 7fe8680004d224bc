"""
Repository Interfaces (IRepository, ISyncRepository)

Abstract base classes defining the data-access contract shared by every
entity type. Reads are parameterized by a single QueryOptions object
instead of one method per tracking/filter/sort/page combination.

Implementation guide:
- IRepository I/O methods are async; ISyncRepository mirrors them for
  blocking sessions
- query() must stay lazy (no I/O)
- Writes only mark entities; nothing reaches the database before save()/commit()
- At most one transaction may be active per session; every repository
  over that session sees it and save() only flushes while it is open
"""

from abc import ABC, abstractmethod
from typing import (
    Any,
    AsyncContextManager,
    ContextManager,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from sqlalchemy import Select

from repository_pattern.repositories.query import Predicate, QueryOptions


T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    """
    Abstract interface for generic entity persistence.

    Lookups that find nothing return None rather than raising.
    """

    @abstractmethod
    def query(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Select:
        """Build the composed statement for options without executing it."""
        pass

    @abstractmethod
    async def get_all(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        """Execute query(options) and return every row."""
        pass

    @abstractmethod
    async def find(
        self,
        predicate: Predicate,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        """Like get_all(), but a predicate is mandatory."""
        pass

    @abstractmethod
    async def get_by_id(self, key: Any, tracked: bool = True) -> Optional[T]:
        """Primary-key lookup."""
        pass

    @abstractmethod
    async def first(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        """First row of query(options), or None."""
        pass

    @abstractmethod
    async def add(self, entity: T) -> T:
        pass

    @abstractmethod
    async def add_many(self, entities: Iterable[T]) -> List[T]:
        pass

    @abstractmethod
    async def update(self, entity: T) -> T:
        pass

    @abstractmethod
    async def update_many(self, entities: Iterable[T]) -> List[T]:
        pass

    @abstractmethod
    async def remove(self, entity: T) -> None:
        pass

    @abstractmethod
    async def remove_many(self, entities: Iterable[T]) -> None:
        pass

    @abstractmethod
    async def count(self, predicate: Optional[Predicate] = None) -> int:
        pass

    @abstractmethod
    async def any(self, predicate: Optional[Predicate] = None) -> bool:
        pass

    @abstractmethod
    async def save(self) -> int:
        """Flush pending writes and return the number of entities written."""
        pass

    @abstractmethod
    async def begin_transaction(self) -> Any:
        pass

    @abstractmethod
    async def commit(self) -> int:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    @abstractmethod
    def transaction(self) -> AsyncContextManager[Any]:
        """Begin, then commit on success or roll back on error."""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass


class ISyncRepository(ABC, Generic[T]):
    """
    Blocking counterpart of IRepository.

    Same verbs and semantics; every method returns its result directly and
    transaction() is a plain context manager.
    """

    @abstractmethod
    def query(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Select:
        pass

    @abstractmethod
    def get_all(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        pass

    @abstractmethod
    def find(
        self,
        predicate: Predicate,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        pass

    @abstractmethod
    def get_by_id(self, key: Any, tracked: bool = True) -> Optional[T]:
        pass

    @abstractmethod
    def first(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        pass

    @abstractmethod
    def add(self, entity: T) -> T:
        pass

    @abstractmethod
    def add_many(self, entities: Iterable[T]) -> List[T]:
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        pass

    @abstractmethod
    def update_many(self, entities: Iterable[T]) -> List[T]:
        pass

    @abstractmethod
    def remove(self, entity: T) -> None:
        pass

    @abstractmethod
    def remove_many(self, entities: Iterable[T]) -> None:
        pass

    @abstractmethod
    def count(self, predicate: Optional[Predicate] = None) -> int:
        pass

    @abstractmethod
    def any(self, predicate: Optional[Predicate] = None) -> bool:
        pass

    @abstractmethod
    def save(self) -> int:
        pass

    @abstractmethod
    def begin_transaction(self) -> Any:
        pass

    @abstractmethod
    def commit(self) -> int:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def transaction(self) -> ContextManager[Any]:
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        pass
