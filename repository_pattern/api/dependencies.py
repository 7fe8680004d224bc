"""
FastAPI dependency functions.

Registers a repository per entity type against a request-scoped session.
FastAPI caches a dependency per request, so every repository injected into
one handler wraps the same session and the request is a single unit of
work: committed when the handler finishes, rolled back if it raises.
"""

from functools import lru_cache
from typing import Annotated, AsyncGenerator, Callable, Optional, Type, TypeVar

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from repository_pattern.core.database import async_session_maker
from repository_pattern.repositories.base import TRANSACTION_KEY, AsyncRepository


T = TypeVar("T")

SessionProvider = Callable[[], AsyncGenerator[AsyncSession, None]]


@lru_cache(maxsize=None)
def _session_provider(factory: async_sessionmaker[AsyncSession]) -> SessionProvider:
    async def provide_session() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                session.info.pop(TRANSACTION_KEY, None)
                await session.close()

    return provide_session


def session_provider(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> SessionProvider:
    """
    Request-scoped session dependency for session_factory.

    The same callable is returned for the same factory, which is what lets
    FastAPI share one session between all repositories of a request.

    Args:
        session_factory: Session factory; defaults to core.database.async_session_maker

    Note:
        - Commits after the handler, rolls back on error, always closes
        - Anything still pending when the handler returns is committed
    """
    return _session_provider(session_factory or async_session_maker)


def repository_provider(
    model: Type[T],
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Callable[..., AsyncRepository[T]]:
    """
    Build a dependency yielding AsyncRepository[model] over the request session.

    Args:
        model: Mapped class the repository serves
        session_factory: Session factory; defaults to core.database.async_session_maker

    Returns:
        Async dependency function usable with Depends()

    Example:
        get_cities = repository_provider(City)
        get_countries = repository_provider(Country)

        @router.post("/countries/{code}/cities")
        async def add_city(
            code: str,
            cities: Annotated[AsyncRepository[City], Depends(get_cities)],
            countries: Annotated[AsyncRepository[Country], Depends(get_countries)],
        ):
            # cities.session is countries.session
            ...
    """
    get_session = session_provider(session_factory)

    async def provide(
        session: Annotated[AsyncSession, Depends(get_session)],
    ) -> AsyncRepository[T]:
        return AsyncRepository(model, session)

    provide.__name__ = f"get_{model.__name__.lower()}_repository"
    return provide


# Type alias for dependency injection
get_request_session = session_provider()
DatabaseSession = Annotated[AsyncSession, Depends(get_request_session)]
