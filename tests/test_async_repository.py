"""
Unit tests for AsyncRepository.

Tests reads (filter, multi-key ordering, pagination, tracking), writes,
counting and existence checks against an in-memory SQLite database.
Each test follows AAA pattern: Arrange, Act, Assert.
"""

import asyncio
import math
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from repository_pattern.core.exceptions import Cancelled, ConstraintViolation, InvalidArgument
from repository_pattern.repositories import AsyncRepository, PageRequest, QueryOptions, SortKey

from entities import City, Country, make_cities


BY_NAME_THEN_POPULATION_DESC = [(City.name, False), (City.population, True)]


async def seed(repo, *rows):
    cities = await repo.add_many(make_cities(*rows))
    await repo.save()
    return cities


class TestOrdering:
    """Multi-key ordering through get_all/find/first."""

    @pytest.mark.anyio
    async def test_name_asc_then_population_desc(self, city_repo):
        """
        Sort by (name asc, population desc) over {(A,100),(A,50),(B,10)}.

        Arrange: Seed cities in scrambled order
        Act: get_all with two sort pairs
        Assert: (A,100), (A,50), (B,10)
        """
        # Arrange
        await seed(city_repo, ("B", 10), ("A", 50), ("A", 100))

        # Act
        cities = await city_repo.get_all(order_by=BY_NAME_THEN_POPULATION_DESC)

        # Assert
        assert [(c.name, c.population) for c in cities] == [("A", 100), ("A", 50), ("B", 10)]

    @pytest.mark.anyio
    async def test_ordering_is_deterministic(self, city_repo):
        await seed(city_repo, ("C", 3), ("A", 1), ("B", 2), ("A", 7))

        first = await city_repo.get_all(order_by=BY_NAME_THEN_POPULATION_DESC)
        second = await city_repo.get_all(order_by=BY_NAME_THEN_POPULATION_DESC)

        assert [c.id for c in first] == [c.id for c in second]

    @pytest.mark.anyio
    async def test_secondary_keys_only_break_ties(self, city_repo):
        """
        Adding secondary keys never changes the primary-key sequence.

        Arrange: Dataset with duplicate primary values
        Act: Sort by name only, then by name + population desc
        Assert: Name sequence identical; ties ordered by population desc
        """
        # Arrange
        await seed(city_repo, ("B", 1), ("A", 5), ("B", 9), ("A", 2), ("C", 4), ("B", 3))

        # Act
        primary_only = await city_repo.get_all(order_by=[(City.name, False)])
        full = await city_repo.get_all(order_by=BY_NAME_THEN_POPULATION_DESC)

        # Assert
        assert [c.name for c in primary_only] == [c.name for c in full]
        b_populations = [c.population for c in full if c.name == "B"]
        assert b_populations == [9, 3, 1]

    @pytest.mark.anyio
    async def test_options_sort_keys_follow_explicit_order_by(self, city_repo):
        await seed(city_repo, ("A", 1), ("A", 2), ("B", 3))

        cities = await city_repo.get_all(
            QueryOptions().order_desc(City.population),
            order_by=[SortKey.desc(City.name)],
        )

        assert [(c.name, c.population) for c in cities] == [("B", 3), ("A", 2), ("A", 1)]

    @pytest.mark.anyio
    async def test_empty_required_order_raises(self, city_repo):
        with pytest.raises(InvalidArgument):
            await city_repo.get_all(order_by=[])

        with pytest.raises(InvalidArgument):
            await city_repo.first(order_by=[])

        with pytest.raises(InvalidArgument):
            await city_repo.find(City.population > 0, order_by=[])

    @pytest.mark.anyio
    async def test_callable_selectors(self, city_repo):
        await seed(city_repo, ("A", 1), ("B", 2))

        cities = await city_repo.get_all(order_by=[(lambda c: c.population, True)])

        assert [c.name for c in cities] == ["B", "A"]


class TestPagination:
    """Page slicing over sorted results."""

    @pytest.mark.anyio
    async def test_second_page_of_two(self, city_repo):
        """
        page(2, 2) over 5 sorted entities returns positions 2 and 3.

        Arrange: Seed 5 cities
        Act: Request page 2 of size 2 sorted by name
        Assert: Third and fourth names
        """
        # Arrange
        await seed(city_repo, ("E", 5), ("C", 3), ("A", 1), ("D", 4), ("B", 2))

        # Act
        page = await city_repo.get_all(
            QueryOptions(page=PageRequest(2, 2)),
            order_by=[(City.name, False)],
        )

        # Assert
        assert [c.name for c in page] == ["C", "D"]

    @pytest.mark.anyio
    @pytest.mark.parametrize("page_size", [1, 2, 3, 4, 7, 10])
    async def test_pages_partition_the_result(self, city_repo, page_size):
        await seed(city_repo, *[(name, population) for population, name in enumerate("GAFBECD")])
        options = QueryOptions().where(City.population >= 0).order_asc(City.name)
        everything = await city_repo.get_all(options)
        pages = math.ceil(len(everything) / page_size)

        collected = []
        for number in range(1, pages + 1):
            collected.extend(await city_repo.get_all(options.paginate(number, page_size)))

        assert [c.id for c in collected] == [c.id for c in everything]

    @pytest.mark.anyio
    async def test_page_past_the_end_is_empty(self, city_repo):
        await seed(city_repo, ("A", 1), ("B", 2))

        page = await city_repo.get_all(QueryOptions().order_asc(City.name).paginate(5, 10))

        assert page == []

    @pytest.mark.anyio
    async def test_page_without_order_raises(self, city_repo):
        with pytest.raises(InvalidArgument):
            await city_repo.get_all(QueryOptions(page=PageRequest(1, 10)))


class TestFilteringAndLookup:
    """find/first/get_by_id behaviour."""

    @pytest.mark.anyio
    async def test_find_requires_predicate(self, city_repo):
        with pytest.raises(InvalidArgument):
            await city_repo.find(None)

    @pytest.mark.anyio
    async def test_find_combines_predicate_and_options_filter(self, city_repo):
        await seed(city_repo, ("A", 10), ("B", 20), ("C", 30), ("AA", 40))

        cities = await city_repo.find(
            City.population > 15,
            QueryOptions().where(lambda c: c.name.like("A%")),
        )

        assert [c.name for c in cities] == ["AA"]

    @pytest.mark.anyio
    async def test_first_with_filter_and_order(self, city_repo):
        await seed(city_repo, ("A", 10), ("B", 20), ("C", 30))

        city = await city_repo.first(
            QueryOptions().where(City.population < 30),
            order_by=[(City.population, True)],
        )

        assert city.name == "B"

    @pytest.mark.anyio
    async def test_first_returns_none_when_empty(self, city_repo):
        assert await city_repo.first() is None
        assert await city_repo.first(QueryOptions().where(City.name == "nowhere")) is None

    @pytest.mark.anyio
    async def test_get_by_id_missing_returns_none(self, city_repo, country_repo):
        assert await city_repo.get_by_id(12345) is None
        assert await country_repo.get_by_id("00000000-0000-0000-0000-000000000000") is None

    def test_query_is_lazy(self):
        session = MagicMock()
        repo = AsyncRepository(City, session)

        statement = repo.query(QueryOptions().order_asc(City.name).paginate(1, 3))

        assert session.method_calls == []
        assert "LIMIT" in str(statement)


class TestRoundTrip:
    """add -> save -> get_by_id."""

    @pytest.mark.anyio
    async def test_add_save_get_by_uuid(self, country_repo, session_factory):
        """
        Round trip through a fresh session.

        Arrange: Add a country with a generated UUID key
        Act: save(), then load it from a new session
        Assert: Same column values (ignoring timestamps)
        """
        # Arrange
        country = await country_repo.add(Country(code="NOR", name="Norway"))

        # Act
        affected = await country_repo.save()
        async with session_factory() as other:
            loaded = await AsyncRepository(Country, other).get_by_id(country.id)

        # Assert
        assert affected == 1
        assert loaded is not None
        ignore = ("created_at", "updated_at")
        assert loaded.to_dict(exclude=ignore) == country.to_dict(exclude=ignore)

    @pytest.mark.anyio
    async def test_add_save_get_by_int(self, city_repo):
        city = await city_repo.add(City(name="Oslo", population=700_000))
        await city_repo.save()

        assert isinstance(city.id, int)
        loaded = await city_repo.get_by_id(city.id)
        assert loaded.name == "Oslo"


class TestTracking:
    """Tracked vs untracked reads."""

    @pytest.mark.anyio
    async def test_untracked_results_are_detached(self, city_repo):
        await seed(city_repo, ("A", 1))
        city_repo.session.expunge_all()

        cities = await city_repo.get_all(QueryOptions(tracked=False))

        assert len(cities) == 1
        assert cities[0] not in city_repo.session

    @pytest.mark.anyio
    async def test_untracked_changes_are_not_saved(self, city_repo, session_factory):
        # Arrange
        await seed(city_repo, ("A", 1))
        city_repo.session.expunge_all()
        city = await city_repo.first(QueryOptions().untracked())

        # Act
        city.population = 999
        affected = await city_repo.save()

        # Assert
        assert affected == 0
        async with session_factory() as other:
            stored = await other.scalar(select(City.population).where(City.id == city.id))
        assert stored == 1

    @pytest.mark.anyio
    async def test_tracked_changes_are_saved(self, city_repo, session_factory):
        await seed(city_repo, ("A", 1))
        city = await city_repo.first()

        city.population = 999
        affected = await city_repo.save()

        assert affected == 1
        async with session_factory() as other:
            stored = await other.scalar(select(City.population).where(City.id == city.id))
        assert stored == 999

    @pytest.mark.anyio
    async def test_untracked_read_keeps_already_tracked_instances(self, city_repo):
        [city] = await seed(city_repo, ("A", 1))

        results = await city_repo.get_all(QueryOptions(tracked=False))

        assert results == [city]
        assert city in city_repo.session

    @pytest.mark.anyio
    async def test_get_by_id_untracked(self, city_repo):
        [city] = await seed(city_repo, ("A", 1))
        city_id = city.id
        city_repo.session.expunge_all()

        loaded = await city_repo.get_by_id(city_id, tracked=False)

        assert loaded.name == "A"
        assert loaded not in city_repo.session


class TestWrites:
    """add/update/remove marking and save()."""

    @pytest.mark.anyio
    async def test_nothing_written_before_save(self, city_repo, session_factory):
        await city_repo.add(City(name="Pending", population=1))

        assert await city_repo.count() == 0
        assert len(city_repo.session.new) == 1

    @pytest.mark.anyio
    async def test_save_returns_affected_count(self, city_repo):
        await city_repo.add_many(make_cities(("A", 1), ("B", 2), ("C", 3)))

        assert await city_repo.save() == 3
        assert await city_repo.count() == 3

    @pytest.mark.anyio
    async def test_failed_save_leaves_session_usable(self, city_repo):
        await city_repo.add(City(name=None, population=1))

        with pytest.raises(ConstraintViolation):
            await city_repo.save()

        await seed(city_repo, ("A", 1))
        assert await city_repo.count() == 1

    @pytest.mark.anyio
    async def test_update_detached_entity(self, city_repo, session_factory):
        # Arrange
        await seed(city_repo, ("A", 1))
        city_repo.session.expunge_all()
        detached = await city_repo.first(QueryOptions(tracked=False))
        detached.population = 42

        # Act
        merged = await city_repo.update(detached)
        affected = await city_repo.save()

        # Assert
        assert merged in city_repo.session
        assert affected == 1
        async with session_factory() as other:
            stored = await other.scalar(select(City.population).where(City.id == detached.id))
        assert stored == 42

    @pytest.mark.anyio
    async def test_update_many(self, city_repo):
        cities = await seed(city_repo, ("A", 1), ("B", 2))
        for city in cities:
            city.population += 100

        merged = await city_repo.update_many(cities)
        await city_repo.save()

        assert len(merged) == 2
        assert await city_repo.count(City.population > 100) == 2

    @pytest.mark.anyio
    async def test_remove_and_remove_many(self, city_repo):
        a, b, c = await seed(city_repo, ("A", 1), ("B", 2), ("C", 3))

        await city_repo.remove(a)
        assert await city_repo.save() == 1

        await city_repo.remove_many([b, c])
        assert await city_repo.save() == 2
        assert await city_repo.count() == 0


class TestCountAndAny:
    """count() and any() agree with each other."""

    @pytest.mark.anyio
    async def test_count_all_and_filtered(self, city_repo):
        await seed(city_repo, ("A", 1), ("B", 20), ("C", 30))

        assert await city_repo.count() == 3
        assert await city_repo.count(City.population >= 20) == 2
        assert await city_repo.count(lambda c: c.name == "A") == 1

    @pytest.mark.anyio
    async def test_any_matches_count(self, city_repo):
        await seed(city_repo, ("A", 1), ("B", 20))
        predicates = [
            None,
            City.population > 10,
            City.population > 100,
            lambda c: c.name == "B",
            lambda c: c.name == "Z",
        ]

        for predicate in predicates:
            assert await city_repo.any(predicate) == (await city_repo.count(predicate) > 0)

    @pytest.mark.anyio
    async def test_any_on_empty_table(self, city_repo):
        assert await city_repo.any() is False
        assert await city_repo.count() == 0


class TestCancellation:
    """Cancellation propagates as asyncio.CancelledError."""

    @pytest.mark.anyio
    async def test_cancelled_read_raises(self):
        # Arrange
        started = asyncio.Event()

        async def slow_scalars(statement):
            started.set()
            await asyncio.sleep(60)

        session = MagicMock()
        session.scalars = AsyncMock(side_effect=slow_scalars)
        repo = AsyncRepository(City, session)

        # Act
        task = asyncio.create_task(repo.get_all())
        await started.wait()
        task.cancel()

        # Assert
        with pytest.raises(Cancelled):
            await task

    @pytest.mark.anyio
    async def test_cancellation_keeps_marked_entities_until_rollback(self, city_repo):
        """
        Cancelling a read leaves the unit of work as it was.

        Arrange: Real session with a transaction and a pending insert,
                 reads held open before they reach the database
        Act: Cancel the waiting read, then roll back
        Assert: Entity still pending after cancel, gone after rollback
        """
        # Arrange
        started = asyncio.Event()
        scalars = city_repo.session.scalars

        async def held_scalars(statement, *args, **kwargs):
            started.set()
            await asyncio.sleep(60)
            return await scalars(statement, *args, **kwargs)

        await city_repo.begin_transaction()
        city = await city_repo.add(City(name="Oslo", population=1))

        # Act
        with patch.object(city_repo.session, "scalars", side_effect=held_scalars):
            task = asyncio.create_task(city_repo.get_all())
            await started.wait()
            task.cancel()
            with pytest.raises(Cancelled):
                await task

        # Assert
        assert city in city_repo.session.new
        assert city_repo.in_transaction is True

        await city_repo.rollback()

        assert city not in city_repo.session.new
        assert city_repo.in_transaction is False
        assert await city_repo.count() == 0
