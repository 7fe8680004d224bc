"""
Generic synchronous repository over a SQLAlchemy Session.

Same contract as AsyncRepository, for code that runs without an event loop
(scripts, migrations, sync web frameworks).
"""

from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select
from sqlalchemy.orm import Session, SessionTransaction

from repository_pattern.core.exceptions import TransactionStateError
from repository_pattern.repositories.base import RepositoryBase, logger
from repository_pattern.repositories.interfaces import ISyncRepository
from repository_pattern.repositories.query import Predicate, QueryOptions


T = TypeVar("T")


class Repository(RepositoryBase[T], ISyncRepository[T]):
    """
    Synchronous repository for a single mapped entity type.

    Example:
        >>> with Session(engine) as session:
        ...     repo = Repository(City, session)
        ...     repo.add(City(name="Oslo", population=700_000))
        ...     repo.save()
    """

    session: Session

    def __init__(self, model: Type[T], session: Session):
        super().__init__(model, session)

    def _execute_all(self, statement: Select, tracked: bool) -> List[T]:
        known = set() if tracked else self._identity_keys()
        instances = list(self.session.scalars(statement).all())
        if not tracked:
            self._detach_new(instances, known)
        return instances

    def get_all(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        options = options or QueryOptions()
        return self._execute_all(self._compose(options, order_by), options.tracked)

    def find(
        self,
        predicate: Predicate,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> List[T]:
        options = options or QueryOptions()
        statement = self._compose(options, order_by, predicate, require_filter=True)
        return self._execute_all(statement, options.tracked)

    def get_by_id(self, key: Any, tracked: bool = True) -> Optional[T]:
        known = set() if tracked else self._identity_keys()
        instance = self.session.get(self.model, key)
        if not tracked:
            self._detach_new([instance], known)
        return instance

    def first(
        self,
        options: Optional[QueryOptions] = None,
        *,
        order_by: Optional[Sequence[Any]] = None,
    ) -> Optional[T]:
        options = options or QueryOptions()
        statement = self._compose(options, order_by).limit(1)
        instances = self._execute_all(statement, options.tracked)
        return instances[0] if instances else None

    def add(self, entity: T) -> T:
        self.session.add(entity)
        self._log("Marked for insert", "add")
        return entity

    def add_many(self, entities: Iterable[T]) -> List[T]:
        entities = list(entities)
        self.session.add_all(entities)
        self._log("Marked for insert", "add_many", count=len(entities))
        return entities

    def update(self, entity: T) -> T:
        merged = self.session.merge(entity)
        self._log("Marked for update", "update")
        return merged

    def update_many(self, entities: Iterable[T]) -> List[T]:
        merged = [self.session.merge(entity) for entity in entities]
        self._log("Marked for update", "update_many", count=len(merged))
        return merged

    def remove(self, entity: T) -> None:
        self.session.delete(entity)
        self._log("Marked for delete", "remove")

    def remove_many(self, entities: Iterable[T]) -> None:
        count = 0
        for entity in entities:
            self.session.delete(entity)
            count += 1
        self._log("Marked for delete", "remove_many", count=count)

    def count(self, predicate: Optional[Predicate] = None) -> int:
        return self.session.scalar(self._count_statement(predicate))

    def any(self, predicate: Optional[Predicate] = None) -> bool:
        return bool(self.session.scalar(self._exists_statement(predicate)))

    def save(self) -> int:
        """Flush inside a transaction, commit outside one. Returns entities written."""
        affected = self._pending_writes()
        if self.in_transaction:
            self.session.flush()
        else:
            try:
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise
        self._log("Saved pending changes", "save", affected=affected)
        return affected

    def begin_transaction(self) -> SessionTransaction:
        if self._transaction is not None:
            raise TransactionStateError(
                "A transaction is already active on the session behind this "
                f"{self.entity_name} repository"
            )
        if self.session.in_transaction():
            self._transaction = self.session.get_transaction()
        else:
            self._transaction = self.session.begin()
        self._log("Transaction started", "begin_transaction")
        return self._transaction

    def commit(self) -> int:
        try:
            affected = self.save()
            if self._transaction is not None and self.session.in_transaction():
                self.session.commit()
        except Exception:
            self._rollback_after_failure()
            raise
        finally:
            self._transaction = None
        self._log("Transaction committed", "commit", affected=affected)
        return affected

    def rollback(self) -> None:
        try:
            if self._transaction is not None and self.session.in_transaction():
                self.session.rollback()
                self._log("Transaction rolled back", "rollback")
        finally:
            self._transaction = None

    def _rollback_after_failure(self) -> None:
        try:
            self.rollback()
        except Exception:
            logger.exception(
                "Rollback after failed commit also failed",
                extra={"entity": self.entity_name, "operation": "commit"},
            )

    @contextmanager
    def transaction(self) -> Iterator[SessionTransaction]:
        handle = self.begin_transaction()
        try:
            yield handle
        except BaseException:
            self.rollback()
            raise
        self.commit()
