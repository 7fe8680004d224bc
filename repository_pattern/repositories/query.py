"""
Query composition for repository reads.

Turns a filter, an ordered list of sort keys and an optional page request
into a single lazy SQLAlchemy Select. Nothing here touches a session;
the repositories execute the composed statement.

Example:
    >>> options = (
    ...     QueryOptions()
    ...     .where(lambda c: c.population > 1_000)
    ...     .order_asc(City.name)
    ...     .order_desc(City.population)
    ...     .paginate(2, 20)
    ... )
    >>> stmt = compose(select(City), options.filter, options.order_by, options.page)
"""

from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Any, Callable, Optional, Sequence, Tuple, Union

from sqlalchemy import Select
from sqlalchemy.sql import ClauseElement, ColumnElement

from repository_pattern.core.exceptions import InvalidArgument


# A SQL expression, or a callable that builds one from the mapped class
Selector = Union[ColumnElement[Any], Callable[[type], ColumnElement[Any]]]
Predicate = Union[ColumnElement[bool], Callable[[type], ColumnElement[bool]]]
Filter = Union[Predicate, Sequence[Predicate]]


def _is_expression(value: Any) -> bool:
    return isinstance(value, ClauseElement) or hasattr(value, "__clause_element__")


def resolve_clause(value: Any, entity: Optional[type]) -> ColumnElement[Any]:
    """
    Turn a selector or predicate into a SQL expression.

    Column expressions pass through unchanged; callables are invoked with
    the mapped class.
    """
    if _is_expression(value):
        return value
    if callable(value):
        if entity is None:
            raise InvalidArgument(
                "Callable selectors need a statement selecting a mapped entity"
            )
        clause = value(entity)
        if not _is_expression(clause):
            raise InvalidArgument(
                f"Selector returned {type(clause).__name__}, expected a SQL expression"
            )
        return clause
    raise InvalidArgument(
        f"Expected a SQL expression or a callable, got {type(value).__name__}"
    )


@dataclass(frozen=True)
class SortKey:
    """
    One level of a multi-key sort.

    Attributes:
        selector: Column expression or callable returning one
        descending: Sort this level high-to-low
    """

    selector: Selector
    descending: bool = False

    @classmethod
    def asc(cls, selector: Selector) -> "SortKey":
        return cls(selector, False)

    @classmethod
    def desc(cls, selector: Selector) -> "SortKey":
        return cls(selector, True)

    def clause(self, entity: Optional[type]) -> ColumnElement[Any]:
        column = resolve_clause(self.selector, entity)
        return column.desc() if self.descending else column.asc()


def to_sort_keys(order_by: Optional[Sequence[Any]]) -> Tuple[SortKey, ...]:
    """
    Normalize a sort specification.

    Accepts SortKey instances, (selector, descending) pairs and bare
    selectors (ascending).

    Raises:
        InvalidArgument: If an element has none of those shapes
    """
    if not order_by:
        return ()

    keys = []
    for item in order_by:
        if isinstance(item, SortKey):
            keys.append(item)
        elif isinstance(item, tuple):
            if len(item) != 2 or not isinstance(item[1], bool):
                raise InvalidArgument(
                    f"Sort pairs must be (selector, descending: bool), got {item!r}"
                )
            keys.append(SortKey(item[0], item[1]))
        else:
            keys.append(SortKey(item))
    return tuple(keys)


def to_predicates(filter: Optional[Filter]) -> Tuple[Predicate, ...]:
    if filter is None:
        return ()
    if isinstance(filter, (list, tuple)):
        return tuple(filter)
    return (filter,)


@dataclass(frozen=True)
class PageRequest:
    """
    A 1-based page of an ordered result set.

    Raises:
        InvalidArgument: If page_number or page_size is below 1
    """

    page_number: int
    page_size: int

    def __post_init__(self):
        for name in ("page_number", "page_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidArgument(f"{name} must be a positive integer, got {value!r}")

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


@dataclass(frozen=True)
class QueryOptions:
    """
    Everything a read can be parameterized by.

    Builder methods return a new instance, so a base set of options can be
    shared and refined per call.

    Attributes:
        tracked: Keep loaded instances in the session's identity map
        filter: Predicate or tuple of predicates, AND-ed together
        order_by: Sort keys, primary first
        page: Optional page slice; requires order_by
    """

    tracked: bool = True
    filter: Optional[Filter] = None
    order_by: Tuple[Any, ...] = field(default_factory=tuple)
    page: Optional[PageRequest] = None

    def where(self, predicate: Predicate) -> "QueryOptions":
        return replace(self, filter=to_predicates(self.filter) + (predicate,))

    def order(self, selector: Selector, descending: bool = False) -> "QueryOptions":
        return replace(self, order_by=tuple(self.order_by) + (SortKey(selector, descending),))

    def order_asc(self, selector: Selector) -> "QueryOptions":
        return self.order(selector, False)

    def order_desc(self, selector: Selector) -> "QueryOptions":
        return self.order(selector, True)

    def paginate(self, page_number: int, page_size: int) -> "QueryOptions":
        return replace(self, page=PageRequest(page_number, page_size))

    def untracked(self) -> "QueryOptions":
        return replace(self, tracked=False)


def _statement_entity(statement: Select) -> Optional[type]:
    descriptions = statement.column_descriptions
    if not descriptions:
        return None
    return descriptions[0].get("entity")


def compose(
    statement: Select,
    filter: Optional[Filter] = None,
    order_by: Optional[Sequence[Any]] = None,
    page: Optional[PageRequest] = None,
    *,
    entity: Optional[type] = None,
    require_filter: bool = False,
    require_order: bool = False,
) -> Select:
    """
    Apply filter, then ordering, then pagination to statement.

    The first sort key becomes the primary ORDER BY term and each further
    key only breaks ties left by the ones before it.

    Args:
        statement: Base select, usually select(Model)
        filter: Predicate or sequence of predicates
        order_by: Sort keys (see to_sort_keys for accepted shapes)
        page: Optional page request, applied last
        entity: Mapped class passed to callable selectors; derived from
            statement when omitted
        require_filter: Reject a missing filter
        require_order: Reject an empty sort specification

    Returns:
        The composed Select; nothing is executed

    Raises:
        InvalidArgument: Missing required filter, empty required (or paged)
            sort specification, or a malformed sort key
    """
    predicates = to_predicates(filter)
    keys = to_sort_keys(order_by)

    if require_filter and not predicates:
        raise InvalidArgument("A filter predicate is required")
    if (require_order or page is not None) and not keys:
        raise InvalidArgument("Order by selectors cannot be null or empty")
    if page is not None and not isinstance(page, PageRequest):
        raise InvalidArgument(f"page must be a PageRequest, got {type(page).__name__}")

    if entity is None:
        entity = _statement_entity(statement)

    if predicates:
        statement = statement.where(*(resolve_clause(p, entity) for p in predicates))

    statement = reduce(
        lambda stmt, key: stmt.order_by(key.clause(entity)),
        keys,
        statement,
    )

    if page is not None:
        statement = statement.offset(page.offset).limit(page.limit)

    return statement


def compose_options(
    statement: Select,
    options: QueryOptions,
    *,
    entity: Optional[type] = None,
    require_filter: bool = False,
    require_order: bool = False,
) -> Select:
    """compose() driven by a QueryOptions instance."""
    return compose(
        statement,
        options.filter,
        options.order_by,
        options.page,
        entity=entity,
        require_filter=require_filter,
        require_order=require_order,
    )
