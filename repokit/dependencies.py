"""
FastAPI dependencies handing a request-scoped unit of work to route handlers.

The unit of work is rolled back when the handler raises and disposed when the
request ends; handlers call `save_changes()` themselves.
"""

from typing import AsyncIterator, Iterator, Optional, Type
from fastapi import Depends
from repokit.database.manager import DatabaseManager
from repokit.repository import AsyncUnitOfWork, UnitOfWork


def get_unit_of_work() -> Iterator[UnitOfWork]:
    manager = DatabaseManager.get_instance()
    with manager.sql.create_unit_of_work() as uow:
        yield uow


async def get_async_unit_of_work() -> AsyncIterator[AsyncUnitOfWork]:
    manager = DatabaseManager.get_instance()
    async with manager.sql.create_async_unit_of_work() as uow:
        yield uow


def repository_dependency(model: Type, repository_class: Optional[type] = None):
    """
    Dependency factory for the repository of `model`.

    The repository comes from the request's AsyncUnitOfWork, so handlers that
    also depend on get_async_unit_of_work share its session.
    """
    def dependency(uow: AsyncUnitOfWork = Depends(get_async_unit_of_work)):
        return uow.get_repository(model, repository_class)

    return dependency
