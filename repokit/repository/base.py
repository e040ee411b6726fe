"""
Repository interfaces and the statement building shared by the sync and async repositories.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar
from sqlalchemy import Table, delete as sa_delete, func, insert as sa_insert, literal_column, update as sa_update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, aliased, make_transient_to_detached
from sqlalchemy.sql import ClauseElement
from sqlmodel import select
from repokit.config import settings
from repokit.exceptions.errors import UnitOfWorkDisposedError
from .metadata import (
    KeyResolver,
    as_key_tuple,
    column_values,
    entity_key,
    identity_argument,
    key_clause,
    mapper_of,
    primary_key_names,
    retarget_table,
)
from .transaction import stage_statement

T = TypeVar("T")


@dataclass(frozen=True)
class QueryOptions:
    """
    Read options shared by the query operations.

    Callables receive the queried entity (the mapped class, or its alias when
    the repository was retargeted with `change_table`):

    - predicate: SQL expression, or callable returning one.
    - order_by: ordering expression(s), or callable returning them.
    - include: loader option(s) such as `selectinload(Blog.posts)`, or
      callable returning them. Ignored for projections.
    """
    predicate: Any = None
    order_by: Any = None
    include: Any = None
    page_index: int = 0
    page_size: int = field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE)
    disable_tracking: bool = True


def _is_clause(value: Any) -> bool:
    return isinstance(value, ClauseElement) or hasattr(value, "__clause_element__")


def _resolve(value: Any, entity: Any) -> Any:
    """Call `value` with the queried entity unless it already is an expression or option."""
    if callable(value) and not _is_clause(value) and not isinstance(value, type):
        return value(entity)
    return value


def _as_sequence(value: Any) -> Sequence[Any]:
    if isinstance(value, (list, tuple)):
        return value
    return (value,)


class IRepositoryFactory(ABC):
    """Hands out repositories that share one session."""

    @abstractmethod
    def get_repository(self, model: Type[Any], repository_class: Optional[type] = None):
        """Get (or lazily create) the repository for `model`."""
        pass


class RepositoryBase(Generic[T]):
    """State and statement building common to Repository and AsyncRepository."""

    def __init__(self, session, model: Type[T], key_resolver: Optional[KeyResolver] = None):
        if session is None:
            raise ValueError("Session must be provided.")
        self._session = session
        self.model = model
        self.key_resolver = key_resolver or primary_key_names
        self._table: Optional[Table] = None
        self._alias = None
        self._closed = False

    @property
    def session(self):
        if self._closed:
            raise UnitOfWorkDisposedError(
                f"Repository for {self.model.__name__} belongs to a disposed unit of work"
            )
        return self._session

    def close(self) -> None:
        """Detach from the session; any later use raises UnitOfWorkDisposedError."""
        self._closed = True

    @property
    def table_name(self) -> str:
        if self._table is not None:
            return self._table.name
        return mapper_of(self.model).local_table.name

    @property
    def retargeted(self) -> bool:
        return self._table is not None

    def change_table(self, table: Optional[str]) -> None:
        """
        Point this repository at another table with the same columns.

        Reads from the other table are always untracked. Writes are staged as
        Core statements and run by the unit of work's next save.
        `None` (or the mapped table's name) restores the mapped table.
        """
        if table is None or table == mapper_of(self.model).local_table.name:
            self._table = None
            self._alias = None
            return
        self._table = retarget_table(self.model, table)
        self._alias = aliased(self.model, self._table, adapt_on_names=True)

    # --- statement building ---

    @property
    def entity(self):
        """What statements select from: the mapped class or its retargeted alias."""
        return self._alias if self._alias is not None else self.model

    def get_all(self):
        """Base SELECT statement for the entity."""
        return select(self.entity)

    def _options(
        self,
        options: Optional[QueryOptions],
        predicate: Any = None,
        order_by: Any = None,
        include: Any = None,
        page_index: int = 0,
        page_size: Optional[int] = None,
        disable_tracking: bool = True,
    ) -> QueryOptions:
        if options is not None:
            return options
        return QueryOptions(
            predicate=predicate,
            order_by=order_by,
            include=include,
            page_index=page_index,
            page_size=settings.DEFAULT_PAGE_SIZE if page_size is None else page_size,
            disable_tracking=disable_tracking,
        )

    def _query(self, options: QueryOptions, selector: Any = None):
        entity = self.entity
        if selector is None:
            statement = select(entity)
            if options.include is not None:
                statement = statement.options(*_as_sequence(_resolve(options.include, entity)))
        else:
            columns = _as_sequence(_resolve(selector, entity))
            statement = select(*columns).select_from(entity)
        if options.predicate is not None:
            statement = statement.where(_resolve(options.predicate, entity))
        if options.order_by is not None:
            statement = statement.order_by(*_as_sequence(_resolve(options.order_by, entity)))
        return statement

    def _count_query(self, predicate: Any = None):
        entity = self.entity
        statement = select(func.count()).select_from(entity)
        if predicate is not None:
            statement = statement.where(_resolve(predicate, entity))
        return statement

    def _exists_query(self, predicate: Any = None):
        entity = self.entity
        statement = select(literal_column("1")).select_from(entity)
        if predicate is not None:
            statement = statement.where(_resolve(predicate, entity))
        return statement.limit(1)

    def _find_query(self, key: Tuple[Any, ...]):
        return select(self.entity).where(key_clause(self.model, self._table, key))

    def _untracked(self, disable_tracking: bool) -> bool:
        return disable_tracking or self.retargeted

    @staticmethod
    def _key_from_arguments(key_values: Tuple[Any, ...]) -> Tuple[Any, ...]:
        if len(key_values) == 1:
            return as_key_tuple(key_values[0])
        return tuple(key_values)

    # --- argument handling ---

    def _is_entity(self, value: Any) -> bool:
        return isinstance(value, self.model)

    def _flatten(self, values: Tuple[Any, ...], keep_tuples: bool = False) -> List[Any]:
        """Expand a single iterable argument; tuples stay whole when they are composite keys."""
        if len(values) == 1:
            only = values[0]
            atomic = (str, bytes, tuple) if keep_tuples else (str, bytes)
            if not self._is_entity(only) and isinstance(only, Iterable) and not isinstance(only, atomic):
                return list(only)
        return list(values)

    # --- writes against a retargeted table ---

    def _stage_insert(self, entity: T) -> None:
        values = column_values(self.model, entity, self._table)
        stage_statement(self.session, sa_insert(self._table).values(**values))

    def _stage_update(self, entity: T) -> None:
        values = column_values(self.model, entity, self._table)
        clause = key_clause(self.model, self._table, entity_key(self.model, entity))
        stage_statement(self.session, sa_update(self._table).where(clause).values(**values))

    def _retargeted_key(self, target: Any) -> Tuple[Any, ...]:
        if self._is_entity(target):
            return self._checked_key(entity_key(self.model, target))
        return self._checked_key(as_key_tuple(target))

    def _stage_delete(self, key: Tuple[Any, ...]) -> None:
        clause = key_clause(self.model, self._table, key)
        stage_statement(self.session, sa_delete(self._table).where(clause))

    # --- delete by key ---

    def _checked_key(self, key: Tuple[Any, ...]) -> Tuple[Any, ...]:
        if any(value is None for value in key):
            raise ValueError(f"Cannot delete {self.model.__name__} without a complete primary key, got {key!r}")
        return key

    def _tracked_instance(self, key: Tuple[Any, ...]) -> Optional[T]:
        identity = Session.identity_key(self.model, identity_argument(key))
        return self.session.identity_map.get(identity)

    def _key_stub(self, key: Tuple[Any, ...]) -> Optional[T]:
        """
        Detached instance carrying only `key`, to be deleted without a read.

        Returns None when the key columns cannot be resolved for the model,
        in which case the caller falls back to fetch-then-delete.
        """
        names = self.key_resolver(self.model)
        if not names or len(names) != len(key):
            return None
        # Built the way the ORM builds loaded rows: no __init__, no defaults
        stub = mapper_of(self.model).class_manager.new_instance()
        for name, value in zip(names, key):
            setattr(stub, name, value)
        make_transient_to_detached(stub)
        return stub

    def _delete_target(self, target: Any) -> Tuple[Optional[T], Optional[Tuple[Any, ...]]]:
        """
        Split a delete argument into (instance to delete, key to delete by).

        Pending instances are expunged here since they were never written.
        """
        if not self._is_entity(target):
            return None, self._checked_key(as_key_tuple(target))
        if target in self.session:
            if sa_inspect(target).pending:
                self.session.expunge(target)
                return None, None
            return target, None
        return None, self._checked_key(entity_key(self.model, target))
