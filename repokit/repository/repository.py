"""
Generic repository over a SQLModel session.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Type
from sqlmodel import Session, select, text
from .base import QueryOptions, RepositoryBase, T
from .metadata import KeyResolver, identity_argument
from .paged_list import PagedList


class Repository(RepositoryBase[T]):
    """
    Read/write facade for one entity class.

    Writes are only staged in the session; the owning unit of work persists
    them on `save_changes()`.
    """

    def __init__(self, session: Session, model: Type[T], key_resolver: Optional[KeyResolver] = None):
        super().__init__(session, model, key_resolver)

    @contextmanager
    def _reader(self, disable_tracking: bool) -> Iterator[Session]:
        """Session to read with; untracked reads use a short-lived one on the same connection."""
        if not self._untracked(disable_tracking):
            yield self.session
            return
        reader = Session(bind=self.session.connection(), autoflush=False, expire_on_commit=False)
        try:
            yield reader
        finally:
            reader.close()

    def get_paged_list(
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
        """
        One page of entities (or of `selector` projections).

        Args:
            predicate: Filter expression or callable.
            order_by: Ordering expression(s) or callable.
            include: Eager-load option(s) or callable; ignored with a selector.
            page_index: Zero-based page number.
            page_size: Items per page (settings.DEFAULT_PAGE_SIZE when omitted).
            disable_tracking: Return detached entities (default).
            selector: Column(s) or entity to project each row to.
            options: Prebuilt QueryOptions; replaces the individual arguments.

        Returns:
            PagedList whose total_count covers every row matching the predicate.
        """
        options = self._options(options, predicate, order_by, include, page_index, page_size, disable_tracking)
        PagedList.check_window(options.page_index, options.page_size)
        offset = PagedList.offset_of(options.page_index, options.page_size)
        statement = self._query(options, selector).offset(offset).limit(options.page_size)
        with self._reader(options.disable_tracking) as reader:
            total_count = reader.exec(self._count_query(options.predicate)).one()
            items = reader.exec(statement).all()
        return PagedList(
            page_index=options.page_index,
            page_size=options.page_size,
            total_count=total_count,
            items=items,
        )

    def get_first_or_default(
        self,
        predicate: Any = None,
        order_by: Any = None,
        include: Any = None,
        disable_tracking: bool = True,
        selector: Any = None,
        options: Optional[QueryOptions] = None,
    ) -> Optional[Any]:
        """First matching entity (or projection), None when nothing matches."""
        options = self._options(options, predicate, order_by, include, disable_tracking=disable_tracking)
        statement = self._query(options, selector).limit(1)
        with self._reader(options.disable_tracking) as reader:
            return reader.exec(statement).first()

    def find(self, *key_values: Any) -> Optional[T]:
        """Entity with the given primary key; an already-loaded instance is returned without a query."""
        key = self._key_from_arguments(key_values)
        if self.retargeted:
            with self._reader(True) as reader:
                return reader.exec(self._find_query(key)).first()
        return self.session.get(self.model, identity_argument(key))

    def count(self, predicate: Any = None) -> int:
        """Number of rows matching `predicate` (all rows when omitted)."""
        with self._reader(True) as reader:
            return reader.exec(self._count_query(predicate)).one()

    def exists(self, predicate: Any = None) -> bool:
        with self._reader(True) as reader:
            return reader.exec(self._exists_query(predicate)).first() is not None

    def from_sql(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[T]:
        """Entities loaded from raw SQL; the query must return the entity's columns."""
        statement = select(self.model).from_statement(text(sql))
        return list(self.session.exec(statement, params=params or {}).scalars().all())

    def insert(self, *entities: T) -> None:
        """Stage new entities (variadic or one iterable)."""
        for entity in self._flatten(entities):
            if self.retargeted:
                self._stage_insert(entity)
            else:
                self.session.add(entity)

    def update(self, *entities: T) -> None:
        """Mark entities as modified; instances from elsewhere are merged into the session."""
        for entity in self._flatten(entities):
            if self.retargeted:
                self._stage_update(entity)
            elif entity not in self.session:
                self.session.merge(entity)

    def delete(self, *targets: Any) -> None:
        """
        Mark entities for removal.

        Targets are entities or primary-key values (a tuple for composite keys),
        variadic or one iterable. Deleting by key does not read the row when
        the key columns are known; a key that matches nothing is a no-op.
        """
        for target in self._flatten(targets, keep_tuples=True):
            if self.retargeted:
                self._stage_delete(self._retargeted_key(target))
                continue
            instance, key = self._delete_target(target)
            if instance is None and key is not None:
                instance = self._instance_for_key(key)
            if instance is not None:
                self.session.delete(instance)

    def _instance_for_key(self, key) -> Optional[T]:
        instance = self._tracked_instance(key)
        if instance is not None:
            return instance
        stub = self._key_stub(key)
        if stub is not None:
            self.session.add(stub)
            return stub
        return self.session.get(self.model, identity_argument(key))
