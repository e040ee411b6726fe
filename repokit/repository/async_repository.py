"""
Async variant of the generic repository, over sqlmodel's AsyncSession.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Type
from sqlmodel import select, text
from sqlmodel.ext.asyncio.session import AsyncSession
from .base import QueryOptions, RepositoryBase, T
from .metadata import KeyResolver, identity_argument
from .paged_list import PagedList


class AsyncRepository(RepositoryBase[T]):
    """Same operations as Repository; reads and deletes are coroutines."""

    def __init__(self, session: AsyncSession, model: Type[T], key_resolver: Optional[KeyResolver] = None):
        super().__init__(session, model, key_resolver)

    @asynccontextmanager
    async def _reader(self, disable_tracking: bool) -> AsyncIterator[AsyncSession]:
        if not self._untracked(disable_tracking):
            yield self.session
            return
        connection = await self.session.connection()
        reader = AsyncSession(bind=connection, autoflush=False, expire_on_commit=False)
        try:
            yield reader
        finally:
            await reader.close()

    async def get_paged_list(
        self,
        predicate: Any = None,
        order_by: Any = None,
        include: Any = None,
        page_index: int = 0,
        page_size: Optional[int] = None,
        disable_tracking: bool = True,
        selector: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> PagedList:
        """One page of entities (or projections); see Repository.get_paged_list."""
        options = self._options(options, predicate, order_by, include, page_index, page_size, disable_tracking)
        PagedList.check_window(options.page_index, options.page_size)
        offset = PagedList.offset_of(options.page_index, options.page_size)
        statement = self._query(options, selector).offset(offset).limit(options.page_size)
        async with self._reader(options.disable_tracking) as reader:
            total_count = (await reader.exec(self._count_query(options.predicate))).one()
            items = (await reader.exec(statement)).all()
        return PagedList(
            page_index=options.page_index,
            page_size=options.page_size,
            total_count=total_count,
            items=items,
        )

    async def get_first_or_default(
        self,
        predicate: Any = None,
        order_by: Any = None,
        include: Any = None,
        disable_tracking: bool = True,
        selector: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> Optional[Any]:
        options = self._options(options, predicate, order_by, include, disable_tracking=disable_tracking)
        statement = self._query(options, selector).limit(1)
        async with self._reader(options.disable_tracking) as reader:
            result = await reader.exec(statement)
            return result.first()

    async def find(self, *key_values: Any) -> Optional[T]:
        key = self._key_from_arguments(key_values)
        if self.retargeted:
            async with self._reader(True) as reader:
                result = await reader.exec(self._find_query(key))
                return result.first()
        return await self.session.get(self.model, identity_argument(key))

    async def count(self, predicate: Any = None) -> int:
        async with self._reader(True) as reader:
            result = await reader.exec(self._count_query(predicate))
            return result.one()

    async def exists(self, predicate: Any = None) -> bool:
        async with self._reader(True) as reader:
            result = await reader.exec(self._exists_query(predicate))
            return result.first() is not None

    async def from_sql(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[T]:
        statement = select(self.model).from_statement(text(sql))
        result = await self.session.exec(statement, params=params or {})
        return list(result.scalars().all())

    def insert(self, *entities: T) -> None:
        """Stage new entities; nothing is awaited until the unit of work saves."""
        for entity in self._flatten(entities):
            if self.retargeted:
                self._stage_insert(entity)
            else:
                self.session.add(entity)

    async def update(self, *entities: T) -> None:
        for entity in self._flatten(entities):
            if self.retargeted:
                self._stage_update(entity)
            elif entity not in self.session:
                await self.session.merge(entity)

    async def delete(self, *targets: Any) -> None:
        """Mark entities or primary-key values for removal; see Repository.delete."""
        for target in self._flatten(targets, keep_tuples=True):
            if self.retargeted:
                self._stage_delete(self._retargeted_key(target))
                continue
            instance, key = self._delete_target(target)
            if instance is None and key is not None:
                instance = await self._instance_for_key(key)
            if instance is not None:
                await self.session.delete(instance)

    async def _instance_for_key(self, key) -> Optional[T]:
        instance = self._tracked_instance(key)
        if instance is not None:
            return instance
        stub = self._key_stub(key)
        if stub is not None:
            self.session.add(stub)
            return stub
        return await self.session.get(self.model, identity_argument(key))
