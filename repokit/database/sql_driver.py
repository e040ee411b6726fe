from typing import Any, Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.ext.asyncio.session import AsyncSession
from repokit.config import settings
from repokit.repository import AsyncUnitOfWork, UnitOfWork
from .base import BaseDatabaseDriver


class SQLDriver(BaseDatabaseDriver):
    """Sync and async engines for one database, plus the session and unit of work factories."""

    def __init__(self, url: str, async_url: Optional[str] = None, echo: bool = False, **engine_options: Any):
        self.engine = create_engine(url, echo=echo, **engine_options)
        self.session_factory = sessionmaker(
            self.engine,
            class_=Session,
            autoflush=settings.SESSION_AUTOFLUSH,
            expire_on_commit=settings.SESSION_EXPIRE_ON_COMMIT,
        )
        self.async_engine = None
        self.async_session_factory = None
        if async_url:
            self.async_engine = create_async_engine(async_url, echo=echo, **engine_options)
            self.async_session_factory = sessionmaker(
                self.async_engine,
                class_=AsyncSession,
                autoflush=settings.SESSION_AUTOFLUSH,
                expire_on_commit=settings.SESSION_EXPIRE_ON_COMMIT,
            )

    async def connect(self):
        """Check connectivity (SELECT 1) on every configured engine."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        if self.async_engine is not None:
            async with self.async_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

    async def disconnect(self):
        """Dispose connection pools."""
        self.engine.dispose()
        if self.async_engine is not None:
            await self.async_engine.dispose()

    async def create_tables(self):
        """Create every table registered on SQLModel.metadata."""
        if self.async_engine is not None:
            async with self.async_engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        else:
            SQLModel.metadata.create_all(self.engine)

    def _require_async(self):
        if self.async_session_factory is None:
            raise RuntimeError("No async database URL configured for this driver")
        return self.async_session_factory

    def create_unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory())

    def create_async_unit_of_work(self) -> AsyncUnitOfWork:
        return AsyncUnitOfWork(self._require_async()())

