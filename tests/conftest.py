"""
Pytest configuration and shared fixtures.

This module provides:
- Environment variable setup for tests
- A fresh in-memory database per test (async and sync)
- Repository fixtures for the test entities
"""

import os

import pytest


# Set test environment variables BEFORE any imports
# This must happen first to ensure settings load with test values
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_JSON"] = "true"

from repository_pattern.core.database import (  # noqa: E402
    create_async_session_maker,
    create_session_maker,
    get_async_engine,
    get_engine,
    get_sync_session,
)
from repository_pattern.models import Base  # noqa: E402
from repository_pattern.repositories import AsyncRepository, Repository  # noqa: E402

from entities import City, Country  # noqa: E402


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_SYNC_DATABASE_URL = "sqlite://"


@pytest.fixture
def anyio_backend():
    """
    Configure anyio backend for async tests.

    Returns:
        str: Backend name ("asyncio")
    """
    return "asyncio"


@pytest.fixture
async def async_engine():
    """In-memory async engine with all tables created; disposed after the test."""
    engine = get_async_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session_factory(async_engine):
    return create_async_session_maker(async_engine)


@pytest.fixture
async def async_session(session_factory):
    """Provide an async database session bound to the per-test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def city_repo(async_session):
    return AsyncRepository(City, async_session)


@pytest.fixture
async def country_repo(async_session):
    return AsyncRepository(Country, async_session)


@pytest.fixture
def sync_session():
    """Provide a sync session on its own in-memory database."""
    engine = get_engine(TEST_SYNC_DATABASE_URL)
    Base.metadata.create_all(engine)

    yield from get_sync_session(create_session_maker(engine))

    engine.dispose()


@pytest.fixture
def sync_city_repo(sync_session):
    return Repository(City, sync_session)



@pytest.fixture
def sync_country_repo(sync_session):
    return Repository(Country, sync_session)
