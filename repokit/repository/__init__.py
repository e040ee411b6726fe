"""
Repository pattern: generic repositories, units of work and paged results over SQLModel sessions.
"""

from .async_repository import AsyncRepository
from .async_unit_of_work import AsyncUnitOfWork
from .base import IRepositoryFactory, QueryOptions, RepositoryBase
from .metadata import primary_key_names
from .paged_list import PagedList, to_paged_list
from .repository import Repository
from .unit_of_work import UnitOfWork, UnitOfWorkBase

__all__ = [
    "AsyncRepository",
    "AsyncUnitOfWork",
    "IRepositoryFactory",
    "PagedList",
    "QueryOptions",
    "Repository",
    "RepositoryBase",
    "UnitOfWork",
    "UnitOfWorkBase",
    "primary_key_names",
    "to_paged_list",
]
