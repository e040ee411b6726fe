"""
Async Unit of Work over sqlmodel's AsyncSession.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Type
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import Session, text
from sqlmodel.ext.asyncio.session import AsyncSession
from repokit.history import ensure_auto_history as record_auto_history
from repokit.logging.logger import get_logger
from .async_repository import AsyncRepository
from .transaction import clear_pending_statements, pending_statements, release_read_transaction, staged_count
from .unit_of_work import UnitOfWorkBase

logger = get_logger("unit_of_work")


class AsyncUnitOfWork(UnitOfWorkBase):
    """
    Owns one AsyncSession and the async repositories sharing it.

    Usage:
        async with driver.create_async_unit_of_work() as uow:
            uow.get_repository(Blog).insert(Blog(url="https://example.com"))
            await uow.save_changes()
    """

    repository_class = AsyncRepository

    def __init__(self, session: Optional[AsyncSession] = None):
        super().__init__(session)

    @property
    def _sync_session(self) -> Session:
        return self._session.sync_session

    def _accepts(self, other: Any) -> bool:
        return isinstance(other, AsyncUnitOfWork)

    async def save_changes(self, ensure_auto_history: bool = False, *units_of_work: "AsyncUnitOfWork") -> int:
        """Persist every staged change atomically; see UnitOfWork.save_changes."""
        self._ensure_active()
        if units_of_work:
            return await self._save_coordinated(ensure_auto_history, units_of_work)
        return await self._save(ensure_auto_history)

    async def _save(self, ensure_auto_history: bool) -> int:
        session = self.session
        if ensure_auto_history:
            record_auto_history(session.sync_session)
        count = staged_count(session.sync_session)
        await session.flush()
        for statement in pending_statements(session):
            result = await session.exec(statement)
            count += result.rowcount
        await session.commit()
        clear_pending_statements(session)
        logger.debug(f"Saved {count} change(s)")
        return count

    async def _save_coordinated(
        self, ensure_auto_history: bool, units_of_work: Sequence["AsyncUnitOfWork"]
    ) -> int:
        participants = [*units_of_work, self]
        engine = AsyncEngine(self._check_participants(participants))
        for participant in participants:
            await participant._session.run_sync(release_read_transaction, participant._tracker)
        binds = [(participant, participant._sync_session.bind) for participant in participants]
        logger.info(f"Saving {len(participants)} units of work in one transaction")
        count = 0
        saving = None
        async with engine.connect() as connection:
            transaction = await connection.begin()
            try:
                for participant in participants:
                    participant._sync_session.bind = connection.sync_connection
                for participant in participants:
                    saving = participant
                    count += await participant._save(ensure_auto_history)
                saving = None
                await transaction.commit()
            except Exception as e:
                logger.warning(f"Coordinated save failed, rolling back: {str(e)}")
                if saving is not None:
                    await saving._session.rollback()
                if transaction.is_active:
                    await transaction.rollback()
                raise
            finally:
                for participant, bind in binds:
                    participant._sync_session.bind = bind
        return count

    async def change_database(self, database: Optional[str]) -> None:
        """Point the session at another database (schema); see UnitOfWork.change_database."""
        session = self.session
        await session.run_sync(release_read_transaction, self._tracker)
        session.sync_session.bind = self._database_bind(database)
        logger.debug(f"Unit of work switched to database {database!r}")

    async def execute_sql_command(self, sql: str, *parameters: Any) -> int:
        """Run raw SQL inside the session's transaction; see UnitOfWork.execute_sql_command."""
        session = self.session
        if len(parameters) == 1 and isinstance(parameters[0], Mapping):
            result = await session.exec(text(sql), params=parameters[0])
        else:
            connection = await session.connection()
            result = await connection.exec_driver_sql(sql, parameters or None)
        self._tracker.mark_written()
        return result.rowcount

    async def from_sql(self, model: Type[Any], sql: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        return await self.get_repository(model).from_sql(sql, params)

    async def flush(self) -> None:
        await self.session.flush()

    async def rollback(self) -> None:
        session = self.session
        await session.rollback()
        clear_pending_statements(session)

    async def dispose(self) -> None:
        """Close every repository and the session; safe to call more than once."""
        if self._disposed:
            return
        self._release_repositories()
        await self._session.close()
        logger.debug("Unit of work disposed")

    async def __aenter__(self) -> "AsyncUnitOfWork":
        self._ensure_active()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None and not self._disposed:
                await self.rollback()
        finally:
            await self.dispose()
