"""Test config and shared fixtures."""
import pytest
from typing import AsyncGenerator, Generator, List
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import apps.models  # noqa: F401
from apps.blogging.models import Blog
from repokit.database.sql_driver import SQLDriver
from repokit.repository import AsyncUnitOfWork, UnitOfWork

# In-memory SQLite for tests; StaticPool keeps one connection so every session sees the same data
SYNC_TEST_DATABASE_URL = "sqlite://"
TEST_DATABASE_URL = "sqlite+aiosqlite://"
ENGINE_OPTIONS = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}


@pytest.fixture
def driver() -> Generator[SQLDriver, None, None]:
    """Sync driver over a fresh in-memory database."""
    driver = SQLDriver(SYNC_TEST_DATABASE_URL, **ENGINE_OPTIONS)
    SQLModel.metadata.create_all(driver.engine)
    yield driver
    driver.engine.dispose()


@pytest.fixture
def uow(driver: SQLDriver) -> Generator[UnitOfWork, None, None]:
    uow = driver.create_unit_of_work()
    yield uow
    uow.dispose()


@pytest.fixture
def other_uow(driver: SQLDriver) -> Generator[UnitOfWork, None, None]:
    uow = driver.create_unit_of_work()
    yield uow
    uow.dispose()


@pytest.fixture
def seed_blogs(driver: SQLDriver):
    """Insert `count` blogs (rating = position % 5) and return their ids."""
    def _seed(count: int) -> List[int]:
        with driver.create_unit_of_work() as seeding:
            blogs = [Blog(url=f"https://blog{i}.example.com", title=f"Blog {i}", rating=i % 5) for i in range(1, count + 1)]
            seeding.get_repository(Blog).insert(blogs)
            seeding.save_changes()
            return [blog.id for blog in blogs]
    return _seed


@pytest.fixture
def count_rows(driver: SQLDriver):
    """Row count of a model's table, read through a fresh unit of work."""
    def _count(model) -> int:
        with driver.create_unit_of_work() as reading:
            return reading.get_repository(model).count()
    return _count


@pytest.fixture(scope="function")
async def async_driver() -> AsyncGenerator[SQLDriver, None]:
    """Driver with an async engine over a fresh in-memory database."""
    driver = SQLDriver(SYNC_TEST_DATABASE_URL, TEST_DATABASE_URL, **ENGINE_OPTIONS)
    await driver.create_tables()
    yield driver
    await driver.disconnect()


@pytest.fixture
async def async_uow(async_driver: SQLDriver) -> AsyncGenerator[AsyncUnitOfWork, None]:
    uow = async_driver.create_async_unit_of_work()
    yield uow
    await uow.dispose()


@pytest.fixture
async def client(async_driver: SQLDriver) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for the app with the unit of work bound to the test database."""
    from main import app
    from repokit.dependencies import get_async_unit_of_work

    async def _get_async_unit_of_work():
        async with async_driver.create_async_unit_of_work() as uow:
            yield uow

    app.dependency_overrides[get_async_unit_of_work] = _get_async_unit_of_work
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def async_seed_blogs(async_driver: SQLDriver):
    """Async counterpart of `seed_blogs`."""
    async def _seed(count: int) -> List[int]:
        async with async_driver.create_async_unit_of_work() as seeding:
            blogs = [Blog(url=f"https://blog{i}.example.com", title=f"Blog {i}", rating=i % 5) for i in range(1, count + 1)]
            seeding.get_repository(Blog).insert(blogs)
            await seeding.save_changes()
            return [blog.id for blog in blogs]
    return _seed


@pytest.fixture
def async_count_rows(async_driver: SQLDriver):
    async def _count(model) -> int:
        async with async_driver.create_async_unit_of_work() as reading:
            return await reading.get_repository(model).count()
    return _count
