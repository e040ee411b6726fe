"""UnitOfWork test cases (sync)."""
import pytest
from concurrent.futures import ThreadPoolExecutor
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from apps.blogging.models import Blog, Post
from repokit.database.sql_driver import SQLDriver
from repokit.exceptions.errors import (
    ActiveTransactionError,
    TransactionCoordinationError,
    UnitOfWorkDisposedError,
)
from repokit.repository import AsyncUnitOfWork, Repository, UnitOfWork, UnitOfWorkBase
from repokit.repository.metadata import retarget_table
from tests.conftest import ENGINE_OPTIONS, SYNC_TEST_DATABASE_URL, TEST_DATABASE_URL


class BlogRepository(Repository[Blog]):
    """Custom repository used to check the registry key."""


class TestUnitOfWorkRegistry:
    """Test construction and the repository registry."""

    def test_session_required(self):
        with pytest.raises(ValueError):
            UnitOfWork(None)

    def test_base_class_is_abstract(self, uow: UnitOfWork):
        with pytest.raises(TypeError):
            UnitOfWorkBase(uow.session)

    def test_repository_is_cached(self, uow: UnitOfWork):
        repository = uow.get_repository(Blog)

        assert isinstance(repository, Repository)
        assert uow.get_repository(Blog) is repository
        assert uow.get_repository(Post) is not repository
        assert repository.session is uow.session

    def test_custom_repository_class(self, uow: UnitOfWork):
        custom = uow.get_repository(Blog, BlogRepository)

        assert isinstance(custom, BlogRepository)
        assert custom is not uow.get_repository(Blog)
        assert uow.get_repository(Blog, BlogRepository) is custom

    def test_concurrent_first_access(self, uow: UnitOfWork):
        with ThreadPoolExecutor(max_workers=8) as pool:
            repositories = list(pool.map(lambda _: uow.get_repository(Blog), range(32)))

        assert all(repository is repositories[0] for repository in repositories)


class TestSaveChanges:
    """Test plain saves."""

    def test_save_returns_written_entries(self, uow: UnitOfWork, seed_blogs):
        ids = seed_blogs(3)
        repository = uow.get_repository(Blog)
        repository.find(ids[0]).rating = 5
        repository.delete(ids[1])
        repository.insert(Blog(url="https://new.example.com"))

        assert uow.save_changes() == 3

    def test_second_save_writes_nothing(self, uow: UnitOfWork):
        uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))

        assert uow.save_changes() == 1
        assert uow.save_changes() == 0

    def test_unchanged_assignment_is_not_counted(self, uow: UnitOfWork, seed_blogs):
        blog_id = seed_blogs(1)[0]
        blog = uow.get_repository(Blog).find(blog_id)
        blog.rating = blog.rating

        assert uow.save_changes() == 0

    def test_failed_save_propagates(self, uow: UnitOfWork, count_rows):
        uow.get_repository(Blog).insert(Blog(url=None))

        with pytest.raises(IntegrityError):
            uow.save_changes()
        uow.rollback()
        assert count_rows(Blog) == 0

    def test_context_manager_rolls_back_on_error(self, driver: SQLDriver, count_rows):
        with pytest.raises(RuntimeError):
            with driver.create_unit_of_work() as uow:
                uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))
                uow.flush()
                raise RuntimeError("boom")

        assert uow.disposed
        assert count_rows(Blog) == 0

    def test_context_manager_does_not_commit(self, driver: SQLDriver, count_rows):
        with driver.create_unit_of_work() as uow:
            uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))

        assert count_rows(Blog) == 0


class TestCoordinatedSave:
    """Test saving several units of work in one transaction."""

    def test_all_participants_commit(self, driver: SQLDriver, uow: UnitOfWork, other_uow: UnitOfWork, seed_blogs, count_rows):
        blog_id = seed_blogs(1)[0]
        # A read leaves a transaction open; it is ended before the shared one starts
        uow.get_repository(Blog).find(blog_id).title = "Updated"
        other_uow.get_repository(Blog).insert(Blog(url="https://b.example.com"))
        other_uow.get_repository(Post).insert(Post(title="p", blog_id=blog_id))

        assert uow.save_changes(False, other_uow) == 3
        assert count_rows(Blog) == 2
        assert count_rows(Post) == 1
        assert uow.session.bind is driver.engine
        assert other_uow.session.bind is driver.engine

    def test_failure_rolls_back_every_participant(self, driver: SQLDriver, count_rows):
        """The sibling saved first is rolled back when the last participant fails."""
        good = driver.create_unit_of_work()
        bad = driver.create_unit_of_work()
        good.get_repository(Blog).insert(Blog(url="https://good.example.com"))
        bad.get_repository(Blog).insert(Blog(url=None))

        with pytest.raises(IntegrityError):
            bad.save_changes(False, good)

        assert count_rows(Blog) == 0
        assert good.session.bind is driver.engine
        assert bad.session.bind is driver.engine
        good.dispose()
        bad.dispose()

    def test_auto_history_for_every_participant(self, uow: UnitOfWork, other_uow: UnitOfWork, seed_blogs):
        from repokit.history import AutoHistory

        ids = seed_blogs(2)
        uow.get_repository(Blog).find(ids[0]).rating = 9
        other_uow.get_repository(Blog).delete(ids[1])

        assert uow.save_changes(True, other_uow) == 4
        assert uow.get_repository(AutoHistory).count() == 2

    def test_rejects_other_engine(self, uow: UnitOfWork, count_rows):
        elsewhere = SQLDriver(SYNC_TEST_DATABASE_URL, **ENGINE_OPTIONS)
        foreign = elsewhere.create_unit_of_work()
        uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))

        with pytest.raises(TransactionCoordinationError):
            uow.save_changes(False, foreign)

        assert count_rows(Blog) == 0
        foreign.dispose()
        elsewhere.engine.dispose()

    def test_rejects_duplicates(self, uow: UnitOfWork, other_uow: UnitOfWork):
        with pytest.raises(TransactionCoordinationError):
            uow.save_changes(False, other_uow, other_uow)
        with pytest.raises(TransactionCoordinationError):
            uow.save_changes(False, uow)

    def test_rejects_disposed_participant(self, uow: UnitOfWork, driver: SQLDriver):
        disposed = driver.create_unit_of_work()
        disposed.dispose()

        with pytest.raises(TransactionCoordinationError):
            uow.save_changes(False, disposed)

    def test_rejects_other_flavour(self, uow: UnitOfWork):
        async_uow = AsyncUnitOfWork(AsyncSession(bind=create_async_engine(TEST_DATABASE_URL)))

        with pytest.raises(TransactionCoordinationError):
            uow.save_changes(False, async_uow)

    def test_rejects_flushed_changes(self, uow: UnitOfWork, other_uow: UnitOfWork, count_rows):
        other_uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))
        other_uow.flush()

        with pytest.raises(ActiveTransactionError):
            uow.save_changes(False, other_uow)
        other_uow.rollback()
        assert count_rows(Blog) == 0


class TestRawSql:
    """Test raw SQL pass-through."""

    def test_positional_parameters(self, uow: UnitOfWork, seed_blogs, count_rows):
        seed_blogs(4)

        assert uow.execute_sql_command("DELETE FROM blogs WHERE rating < ?", 3) == 2
        uow.save_changes()
        assert count_rows(Blog) == 2

    def test_named_parameters(self, uow: UnitOfWork, seed_blogs):
        ids = seed_blogs(2)

        assert uow.execute_sql_command("UPDATE blogs SET title = :title WHERE id = :id", {"title": "Raw", "id": ids[0]}) == 1
        assert uow.get_repository(Blog).get_first_or_default(Blog.title == "Raw").id == ids[0]

    def test_raw_write_blocks_coordination(self, uow: UnitOfWork, other_uow: UnitOfWork):
        uow.execute_sql_command("UPDATE blogs SET rating = 1")

        with pytest.raises(ActiveTransactionError):
            other_uow.save_changes(False, uow)

    def test_from_sql(self, uow: UnitOfWork, seed_blogs):
        seed_blogs(3)

        assert len(uow.from_sql(Blog, "SELECT * FROM blogs WHERE rating > :rating", {"rating": 1})) == 2


class TestChangeTable:
    """Test retargeting a repository to a table with the same columns."""

    @pytest.fixture
    def archive(self, driver: SQLDriver):
        table = retarget_table(Blog, "blogs_archive")
        table.create(driver.engine)
        return table

    def test_round_trip(self, uow: UnitOfWork, archive, count_rows):
        repository = uow.get_repository(Blog)
        repository.change_table("blogs_archive")
        repository.insert(Blog(url="https://old.example.com", rating=2), Blog(url="https://older.example.com"))

        assert repository.count() == 0
        assert uow.save_changes() == 2
        assert repository.count() == 2
        assert count_rows(Blog) == 0

        old = repository.get_first_or_default(lambda blog: blog.url == "https://old.example.com")
        assert old.rating == 2
        assert old not in uow.session

        old.rating = 3
        repository.update(old)
        repository.delete(repository.find(old.id + 1))
        assert uow.save_changes() == 2
        assert repository.find(old.id).rating == 3
        assert repository.count() == 1

        repository.change_table(None)
        assert repository.table_name == "blogs"
        assert repository.count() == 0

    def test_reads_are_never_tracked(self, uow: UnitOfWork, archive):
        repository = uow.get_repository(Blog)
        repository.change_table("blogs_archive")
        repository.insert(Blog(url="https://old.example.com"))
        uow.save_changes()

        page = repository.get_paged_list(disable_tracking=False)

        assert page.total_count == 1
        assert page.items[0] not in uow.session

    def test_delete_by_key(self, uow: UnitOfWork, archive):
        repository = uow.get_repository(Blog)
        repository.change_table("blogs_archive")
        repository.insert(Blog(id=7, url="https://old.example.com"))
        uow.save_changes()

        repository.delete(7, 8)

        assert uow.save_changes() == 1
        assert repository.exists() is False


class TestChangeDatabase:
    """Test switching to an attached SQLite database."""

    @pytest.fixture
    def attached(self, driver: SQLDriver):
        with driver.engine.connect() as conn:
            conn.exec_driver_sql("ATTACH DATABASE ':memory:' AS archive")
        SQLModel.metadata.create_all(driver.engine.execution_options(schema_translate_map={None: "archive"}))
        return "archive"

    def test_writes_and_reads_follow_the_database(self, uow: UnitOfWork, attached, seed_blogs, count_rows):
        seed_blogs(2)
        repository = uow.get_repository(Blog)
        assert repository.count() == 2

        uow.change_database(attached)
        assert repository.count() == 0
        repository.insert(Blog(url="https://archived.example.com"))
        assert uow.save_changes() == 1
        assert repository.count() == 1

        uow.change_database(None)
        assert repository.count() == 2
        assert count_rows(Blog) == 2

    def test_refuses_with_flushed_changes(self, uow: UnitOfWork, attached):
        uow.get_repository(Blog).insert(Blog(url="https://a.example.com"))
        uow.flush()

        with pytest.raises(ActiveTransactionError):
            uow.change_database(attached)


class TestDispose:
    """Test disposal."""

    def test_dispose_is_idempotent(self, driver: SQLDriver):
        uow = driver.create_unit_of_work()
        uow.dispose()
        uow.dispose()

        assert uow.disposed

    def test_operations_after_dispose_fail(self, driver: SQLDriver):
        uow = driver.create_unit_of_work()
        repository = uow.get_repository(Blog)
        uow.dispose()

        with pytest.raises(UnitOfWorkDisposedError):
            uow.get_repository(Blog)
        with pytest.raises(UnitOfWorkDisposedError):
            uow.save_changes()
        with pytest.raises(UnitOfWorkDisposedError):
            uow.execute_sql_command("SELECT 1")
        with pytest.raises(UnitOfWorkDisposedError):
            repository.count()
        with pytest.raises(UnitOfWorkDisposedError):
            with uow:
                pass


class TestTrackGraph:
    """Test attaching an object graph."""

    def test_callback_decides(self, uow: UnitOfWork):
        blog = Blog(url="https://graph.example.com")
        first = Post(title="first", blog=blog)
        second = Post(title="second", blog=blog)
        visited = []

        def callback(entity):
            visited.append(entity)
            return entity is blog

        uow.track_graph(blog, callback)

        assert blog in uow.session
        assert {id(entity) for entity in visited} == {id(blog), id(first), id(second)}


class TestDependencies:
    """Test the request-scoped dependency."""

    def test_get_unit_of_work_disposes(self, driver: SQLDriver, monkeypatch):
        from repokit.database.manager import DatabaseManager
        from repokit.dependencies import get_unit_of_work

        manager = DatabaseManager.__new__(DatabaseManager)
        manager.sql = driver
        monkeypatch.setattr(DatabaseManager, "_instance", manager)

        dependency = get_unit_of_work()
        uow = next(dependency)
        assert isinstance(uow, UnitOfWork)
        with pytest.raises(StopIteration):
            next(dependency)
        assert uow.disposed
