"""
Generic async repository over a SQLAlchemy AsyncSession.

Provides one facade per mapped entity type covering reads (with tracking,
filtering, multi-key ordering and pagination), write marking, counting,
existence checks and transaction demarcation.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, Iterable, List, Optional, Sequence, Set, Type, TypeVar

from sqlalchemy import Select, func, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import Session

from repository_pattern.core.exceptions import InvalidArgument, TransactionStateError
from repository_pattern.core.logging_config import get_logger, log_with_context
from repository_pattern.repositories.interfaces import IRepository
from repository_pattern.repositories.query import (
    Predicate,
    QueryOptions,
    compose,
    to_predicates,
    to_sort_keys,
)


logger = get_logger(__name__)

T = TypeVar("T")

# Session.info key for the transaction opened through begin_transaction().
# Repositories over the same session share it, so they form one unit of work.
TRANSACTION_KEY = "repository_transaction"


class RepositoryBase(Generic[T]):
    """
    Session-agnostic half of a repository.

    Builds statements and handles identity-map bookkeeping; the async and
    sync subclasses only differ in how they execute.

    Attributes:
        model: Mapped class this repository serves
        session: Session or AsyncSession the repository wraps
    """

    def __init__(self, model: Type[T], session: Any):
        self.model = model
        self.session = session

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    @property
    def _transaction(self) -> Any:
        """Transaction handle held by any repository sharing this session."""
        return self._sync_session.info.get(TRANSACTION_KEY)

    @_transaction.setter
    def _transaction(self, handle: Any) -> None:
        if handle is None:
            self._sync_session.info.pop(TRANSACTION_KEY, None)
        else:
            self._sync_session.info[TRANSACTION_KEY] = handle

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    @property
    def _sync_session(self) -> Session:
        return getattr(self.session, "sync_session", self.session)

    def query(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Select:
        """
        Build the statement a read with these options would run.

        Args:
            options: Filter, sort, page and tracking settings
            order_by: Explicit sort specification. Passing it (even empty)
                makes ordering mandatory; its keys go before any in options.

        Returns:
            Lazy Select over the mapped class

        Raises:
            InvalidArgument: If order_by is passed empty, or a page is
                requested without any sort key
        """
        return self._compose(options, order_by)

    def _compose(
        self,
        options: Optional[QueryOptions],
        order_by: Optional[Sequence[Any]],
        predicate: Any = None,
        require_filter: bool = False,
    ) -> Select:
        options = options or QueryOptions()

        if require_filter and predicate is None:
            raise InvalidArgument("predicate cannot be None")

        if order_by is not None and not order_by:
            raise InvalidArgument("Order by selectors cannot be null or empty")

        keys = to_sort_keys(order_by) + to_sort_keys(options.order_by)
        predicates = to_predicates(predicate) + to_predicates(options.filter)

        return compose(
            select(self.model),
            predicates,
            keys,
            options.page,
            entity=self.model,
            require_filter=require_filter,
            require_order=order_by is not None,
        )

    def _count_statement(self, predicate: Optional[Predicate]) -> Select:
        return compose(
            select(func.count()).select_from(self.model),
            predicate,
            entity=self.model,
        )

    def _exists_statement(self, predicate: Optional[Predicate]) -> Select:
        return select(compose(select(self.model), predicate, entity=self.model).exists())

    def _identity_keys(self) -> Set[Any]:
        return set(self._sync_session.identity_map.keys())

    def _detach_new(self, instances: Iterable[Any], known: Set[Any]) -> None:
        """Expunge instances that a read just loaded into the identity map."""
        session = self._sync_session
        for instance in instances:
            if instance is None or instance not in session:
                continue
            if inspect(instance).key not in known:
                session.expunge(instance)

    def _pending_writes(self) -> int:
        session = self._sync_session
        modified = sum(1 for instance in session.dirty if session.is_modified(instance))
        return len(session.new) + modified + len(session.deleted)

    def _log(self, message: str, operation: str, **fields: Any) -> None:
        log_with_context(
            logger,
            "debug",
            message,
            entity=self.entity_name,
            operation=operation,
            **fields,
        )


class AsyncRepository(RepositoryBase[T], IRepository[T]):
    """
    Async repository for a single mapped entity type.

    Wraps one AsyncSession; like the session itself, an instance must not be
    shared by concurrently running tasks.

    Example:
        >>> repo = AsyncRepository(City, session)
        >>> await repo.add(City(name="Oslo", population=700_000))
        >>> await repo.save()
        >>> biggest = await repo.first(QueryOptions().order_desc(City.population))
    """

    session: AsyncSession

    def __init__(self, model: Type[T], session: AsyncSession):
        """
        Initialize repository with database session.

        Args:
            model: Mapped class served by this repository
            session: SQLAlchemy async session
        """
        super().__init__(model, session)

    async def _execute_all(self, statement: Select, tracked: bool) -> List[T]:
        known = set() if tracked else self._identity_keys()
        result = await self.session.scalars(statement)
        instances = list(result.all())
        if not tracked:
            self._detach_new(instances, known)
        return instances

    async def get_all(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        """
        Retrieve every entity matching options.

        Args:
            options: Filter, sort, page and tracking settings
            order_by: Mandatory sort specification (see query())

        Returns:
            List of entities, possibly empty

        Example:
            >>> page = await repo.get_all(
            ...     QueryOptions(tracked=False).paginate(2, 20),
            ...     order_by=[(City.name, False), (City.population, True)],
            ... )
        """
        options = options or QueryOptions()
        statement = self._compose(options, order_by)
        return await self._execute_all(statement, options.tracked)

    async def find(
        self,
        predicate: Predicate,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        """
        Retrieve every entity matching predicate (and any filter in options).

        Raises:
            InvalidArgument: If predicate is None
        """
        options = options or QueryOptions()
        statement = self._compose(options, order_by, predicate, require_filter=True)
        return await self._execute_all(statement, options.tracked)

    async def get_by_id(self, key: Any, tracked: bool = True) -> Optional[T]:
        """
        Retrieve an entity by primary key.

        Args:
            key: Primary key value (int, str, UUID, or a tuple for composite keys)
            tracked: Keep the instance in the session

        Returns:
            Entity instance if found, None otherwise
        """
        known = set() if tracked else self._identity_keys()
        instance = await self.session.get(self.model, key)
        if not tracked:
            self._detach_new([instance], known)
        return instance

    async def first(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        """First entity matching options, or None when nothing matches."""
        options = options or QueryOptions()
        statement = self._compose(options, order_by).limit(1)
        instances = await self._execute_all(statement, options.tracked)
        return instances[0] if instances else None

    async def add(self, entity: T) -> T:
        """Mark entity for insertion on the next save()."""
        self.session.add(entity)
        self._log("Marked for insert", "add")
        return entity

    async def add_many(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)
        self.session.add_all(entities)
        self._log("Marked for insert", "add_many", count=len(entities))
        return entities

    async def update(self, entity: T) -> T:
        """
        Mark entity for modification on the next save().

        Detached (e.g. untracked) instances are merged back into the session.
        Always use the returned instance afterwards.
        """
        merged = await self.session.merge(entity)
        self._log("Marked for update", "update")
        return merged

    async def update_many(self, entities: Iterable[T]) -> List[T]:
        merged = [await self.session.merge(entity) for entity in entities]
        self._log("Marked for update", "update_many", count=len(merged))
        return merged

    async def remove(self, entity: T) -> None:
        """Mark entity for deletion on the next save()."""
        await self.session.delete(entity)
        self._log("Marked for delete", "remove")

    async def remove_many(self, entities: Iterable[T]) -> None:
        count = 0
        for entity in entities:
            await self.session.delete(entity)
            count += 1
        self._log("Marked for delete", "remove_many", count=count)

    async def count(self, predicate: Optional[Predicate] = None) -> int:
        """Number of entities matching predicate (all entities when None)."""
        return await self.session.scalar(self._count_statement(predicate))

    async def any(self, predicate: Optional[Predicate] = None) -> bool:
        """Whether at least one entity matches predicate."""
        return bool(await self.session.scalar(self._exists_statement(predicate)))

    async def save(self) -> int:
        """
        Write all pending inserts, updates and deletes.

        Inside a transaction begun by any repository on this session this
        only flushes and commit() finishes the job. Otherwise the session is
        committed, and rolled back again if that commit fails.

        Returns:
            Number of entities written

        Raises:
            ConstraintViolation: Database constraint rejected a write
            ConcurrencyConflict: A row changed or vanished underneath an update
        """
        affected = self._pending_writes()
        if self.in_transaction:
            await self.session.flush()
        else:
            try:
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise
        self._log("Saved pending changes", "save", affected=affected)
        return affected

    async def begin_transaction(self) -> AsyncSessionTransaction:
        """
        Start a transaction and hold on to it.

        A transaction the session already autobegun (from earlier reads) is
        adopted instead of starting a new one.

        Raises:
            TransactionStateError: If a repository on the same session
                already holds one
        """
        if self._transaction is not None:
            raise TransactionStateError(
                "A transaction is already active on the session behind this "
                f"{self.entity_name} repository"
            )
        if self.session.in_transaction():
            self._transaction = self.session.get_transaction()
        else:
            self._transaction = await self.session.begin()
        self._log("Transaction started", "begin_transaction")
        return self._transaction

    async def commit(self) -> int:
        """
        save() and commit the active transaction.

        If anything fails, rollback() runs once before the original error is
        re-raised. The held transaction is released in every case.

        Returns:
            Number of entities written
        """
        try:
            affected = await self.save()
            if self._transaction is not None and self.session.in_transaction():
                await self.session.commit()
        except Exception:
            await self._rollback_after_failure()
            raise
        finally:
            self._transaction = None
        self._log("Transaction committed", "commit", affected=affected)
        return affected

    async def rollback(self) -> None:
        """Roll back the active transaction, if any, and release it."""
        try:
            if self._transaction is not None and self.session.in_transaction():
                await self.session.rollback()
                self._log("Transaction rolled back", "rollback")
        finally:
            self._transaction = None

    async def _rollback_after_failure(self) -> None:
        try:
            await self.rollback()
        except Exception:
            logger.exception(
                "Rollback after failed commit also failed",
                extra={"entity": self.entity_name, "operation": "commit"},
            )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSessionTransaction]:
        """
        Scope a block of work to one transaction.

        Example:
            >>> async with repo.transaction():
            ...     await repo.add(City(name="Bergen"))
        """
        handle = await self.begin_transaction()
        try:
            yield handle
        except BaseException:
            await self.rollback()
            raise
        await self.commit()
