"""
Database configuration and session management.

Provides SQLAlchemy engine setup (async and sync), session factories,
and request-scoped session generators. The repositories themselves never
create sessions; they receive one from these helpers or from the caller.
"""

from typing import AsyncGenerator, Generator, Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from repository_pattern.core.config import settings


def _engine_kwargs(url: str) -> dict:
    is_sqlite = url.startswith("sqlite")

    # SQLite-specific connection arguments (noop for other drivers)
    connect_args: dict = {"check_same_thread": False} if is_sqlite else {}

    engine_kwargs = {
        "echo": settings.database_echo,
        "connect_args": connect_args,
    }

    # SQLite works best with StaticPool; let other drivers use defaults
    if is_sqlite:
        engine_kwargs["poolclass"] = StaticPool

    return engine_kwargs


def _enable_sqlite_foreign_keys(sync_engine: Engine) -> None:
    @event.listens_for(sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_async_engine(url: Optional[str] = None) -> AsyncEngine:
    """
    Create and configure an async SQLAlchemy engine.

    For SQLite:
    - Uses StaticPool so an in-memory database survives across sessions
    - Enables check_same_thread=False for async compatibility
    - Turns on foreign key enforcement for every new connection

    Args:
        url: Database URL; defaults to settings.database_url

    Returns:
        Configured AsyncEngine instance
    """
    url = url or settings.database_url
    engine = create_async_engine(url, **_engine_kwargs(url))

    if url.startswith("sqlite"):
        _enable_sqlite_foreign_keys(engine.sync_engine)

    return engine


# Async driver -> blocking driver for the same backend
SYNC_DRIVERS = {
    "aiosqlite": "pysqlite",
    "asyncpg": "psycopg2",
    "psycopg_async": "psycopg",
    "aiomysql": "pymysql",
}


def sync_url(url: str) -> str:
    """
    Rewrite an async driver URL for create_engine().

    "sqlite+aiosqlite:///app.db" becomes "sqlite+pysqlite:///app.db". URLs
    that already name a blocking driver are returned unchanged.
    """
    parsed = make_url(url)
    driver = SYNC_DRIVERS.get(parsed.get_driver_name())
    if driver is None:
        return url
    drivername = f"{parsed.get_backend_name()}+{driver}"
    return parsed.set(drivername=drivername).render_as_string(hide_password=False)


def get_engine(url: Optional[str] = None) -> Engine:
    """
    Create and configure a synchronous SQLAlchemy engine.

    Same pooling and pragma rules as get_async_engine(). The URL, or
    settings.database_url when omitted, goes through sync_url() first, so
    the async default "sqlite+aiosqlite:///:memory:" works here too.
    """
    url = sync_url(url or settings.database_url)
    engine = create_engine(url, **_engine_kwargs(url))

    if url.startswith("sqlite"):
        _enable_sqlite_foreign_keys(engine)

    return engine


def create_async_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build an async session factory bound to engine.

    Sessions do not autoflush: pending adds/updates/removes reach the
    database only through an explicit save() or commit().
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=settings.expire_on_commit,
        autoflush=False,
    )


def create_session_maker(engine: Engine) -> sessionmaker[Session]:
    """Build a synchronous session factory bound to engine."""
    return sessionmaker(
        engine,
        class_=Session,
        expire_on_commit=settings.expire_on_commit,
        autoflush=False,
    )


# Global async engine instance, created once at import and reused
engine = get_async_engine()

# Async session factory
# Use this to create new sessions
async_session_maker = create_async_session_maker(engine)


async def init_db(
    target: Optional[AsyncEngine] = None,
    metadata: Optional[MetaData] = None,
) -> None:
    """
    Create all tables registered on metadata.

    For production, run migrations instead of create_all().

    Args:
        target: Engine to use; defaults to the module engine
        metadata: Metadata to create; defaults to models.base.Base.metadata
    """
    if metadata is None:
        # Avoiding circular imports by importing inside the function.
        from repository_pattern.models.base import Base
        metadata = Base.metadata

    async with (target or engine).begin() as conn:
        await conn.run_sync(metadata.create_all)


async def close_db(target: Optional[AsyncEngine] = None) -> None:
    """
    Close the database connection.

    Should be called at application shutdown to cleanly close
    all pooled connections.
    """
    await (target or engine).dispose()


async def get_db(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session generator.

    Yields:
        AsyncSession instance for database operations

    Note:
        - Commits when the consumer finishes without error
        - Exceptions trigger automatic rollback
        - Session is always closed afterwards
    """
    factory = session_factory or async_session_maker
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Session generator with manual commit control.

    Useful for scripts, background tasks, and tests.

    Example:
        async for session in get_session():
            repo = AsyncRepository(City, session)
            await repo.add(City(name="Oslo"))
            await repo.save()

    Note:
        - Caller must explicitly save/commit or rollback
        - Session is automatically closed after use
    """
    factory = session_factory or async_session_maker
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_sync_session(
    session_factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """Synchronous counterpart of get_session()."""
    with session_factory() as session:
        try:
            yield session
        finally:
            session.close()
