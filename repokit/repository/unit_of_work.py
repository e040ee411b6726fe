"""
Unit of Work: owns one session, hands out repositories and saves their changes atomically.
"""

import threading
from abc import abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Type
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlmodel import Session, text
from repokit.exceptions.errors import (
    ActiveTransactionError,
    RepositoryError,
    TransactionCoordinationError,
    UnitOfWorkDisposedError,
)
from repokit.history import ensure_auto_history as record_auto_history
from repokit.logging.logger import get_logger
from .base import IRepositoryFactory
from .repository import Repository
from .transaction import (
    TransactionTracker,
    check_shared_engine,
    clear_pending_statements,
    pending_statements,
    release_read_transaction,
    staged_count,
)

logger = get_logger("unit_of_work")


def _related_entities(entity: Any) -> List[Any]:
    """Entities reachable through the relationships already loaded on `entity`."""
    state = sa_inspect(entity)
    related = []
    for relationship in state.mapper.relationships:
        if relationship.key not in state.dict:
            continue
        value = state.dict[relationship.key]
        if value is None:
            continue
        if relationship.uselist:
            related.extend(value)
        else:
            related.append(value)
    return related


class UnitOfWorkBase(IRepositoryFactory):
    """Repository registry, disposal and coordination checks shared by both flavours."""

    repository_class: type = Repository

    def __init__(self, session):
        if session is None:
            raise ValueError("Session must be provided. Use SQLDriver.create_unit_of_work() or pass session explicitly.")
        self._session = session
        self._repositories: Dict[Tuple[type, type], Any] = {}
        self._lock = threading.Lock()
        self._disposed = False
        self._engine = self._sync_session.bind
        self._tracker = TransactionTracker(self._sync_session)

    @property
    def _sync_session(self) -> Session:
        return self._session

    @property
    def session(self):
        self._ensure_active()
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _ensure_active(self) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedError(f"{type(self).__name__} was already disposed")

    def get_repository(self, model: Type[Any], repository_class: Optional[type] = None):
        """Get or create the repository for `model` (cached for this unit of work's lifetime)."""
        self._ensure_active()
        repository_class = repository_class or self.repository_class
        cache_key = (model, repository_class)
        with self._lock:
            if cache_key not in self._repositories:
                self._repositories[cache_key] = repository_class(self._session, model)
            return self._repositories[cache_key]

    def track_graph(self, root: Any, callback: Callable[[Any], bool]) -> None:
        """
        Walk `root` and its loaded relationships, adding each entity for which
        `callback(entity)` returns True to the session.
        """
        self._ensure_active()
        seen = set()
        pending = [root]
        while pending:
            entity = pending.pop()
            if id(entity) in seen:
                continue
            seen.add(id(entity))
            if callback(entity):
                self._session.add(entity)
            pending.extend(_related_entities(entity))

    @abstractmethod
    def _accepts(self, other: Any) -> bool:
        """Whether `other` can join this unit of work's coordinated save."""
        pass

    def _check_participants(self, participants: Sequence["UnitOfWorkBase"]) -> Engine:
        """
        Validate the units of work of a coordinated save before anything is written.

        Returns:
            The engine the shared transaction is opened on.
        """
        owner_bind = self._sync_session.bind
        seen = set()
        for index, participant in enumerate(participants):
            name = "The coordinating unit of work" if participant is self else f"Unit of work #{index + 1}"
            if not self._accepts(participant):
                raise TransactionCoordinationError(
                    f"{name} is a {type(participant).__name__}, expected a {type(self).__name__}"
                )
            if participant.disposed:
                raise TransactionCoordinationError(f"{name} was already disposed")
            if id(participant) in seen:
                raise TransactionCoordinationError(f"{name} is listed more than once")
            seen.add(id(participant))
            check_shared_engine(owner_bind, participant._sync_session.bind, name)
            if participant._tracker.has_writes:
                raise ActiveTransactionError(f"{name} holds written changes that are not committed yet")
        return owner_bind

    def _database_bind(self, database: Optional[str]):
        if not isinstance(self._engine, Engine):
            raise RepositoryError("change_database requires a session bound to an Engine")
        if database is None:
            return self._engine
        return self._engine.execution_options(schema_translate_map={None: database})

    def _release_repositories(self) -> None:
        self._disposed = True
        with self._lock:
            for repository in self._repositories.values():
                repository.close()
            self._repositories.clear()
        self._tracker.detach()


class UnitOfWork(UnitOfWorkBase):
    """
    Owns one Session and the repositories sharing it.

    Usage:
        with driver.create_unit_of_work() as uow:
            uow.get_repository(Blog).insert(Blog(url="https://example.com"))
            uow.save_changes()
    """

    def __init__(self, session: Optional[Session] = None):
        super().__init__(session)

    def _accepts(self, other: Any) -> bool:
        return isinstance(other, UnitOfWork)

    def save_changes(self, ensure_auto_history: bool = False, *units_of_work: "UnitOfWork") -> int:
        """
        Persist every staged change atomically.

        Args:
            ensure_auto_history: Write AutoHistory rows for modified and deleted entities.
            *units_of_work: Sibling units of work saved in the same database
                transaction, in the given order, before this one.

        Returns:
            Number of staged entries written (0 when nothing was staged), plus
            the row counts of statements staged by retargeted repositories.
            A delete by key counts as one entry even when no row matched it.
        """
        self._ensure_active()
        if units_of_work:
            return self._save_coordinated(ensure_auto_history, units_of_work)
        return self._save(ensure_auto_history)

    def _save(self, ensure_auto_history: bool) -> int:
        session = self.session
        if ensure_auto_history:
            record_auto_history(session)
        count = staged_count(session)
        session.flush()
        for statement in pending_statements(session):
            count += session.exec(statement).rowcount
        session.commit()
        clear_pending_statements(session)
        logger.debug(f"Saved {count} change(s)")
        return count

    def _save_coordinated(self, ensure_auto_history: bool, units_of_work: Sequence["UnitOfWork"]) -> int:
        participants = [*units_of_work, self]
        engine = self._check_participants(participants)
        for participant in participants:
            release_read_transaction(participant._session, participant._tracker)
        binds = [(participant, participant._session.bind) for participant in participants]
        logger.info(f"Saving {len(participants)} units of work in one transaction")
        count = 0
        saving = None
        with engine.connect() as connection:
            transaction = connection.begin()
            try:
                for participant in participants:
                    participant._session.bind = connection
                for participant in participants:
                    saving = participant
                    count += participant._save(ensure_auto_history)
                saving = None
                transaction.commit()
            except Exception as e:
                logger.warning(f"Coordinated save failed, rolling back: {str(e)}")
                if saving is not None:
                    saving._session.rollback()
                if transaction.is_active:
                    transaction.rollback()
                raise
            finally:
                for participant, bind in binds:
                    participant._session.bind = bind
        return count

    def change_database(self, database: Optional[str]) -> None:
        """
        Point the session at another database (schema) reachable from the same engine.

        Unqualified tables are rendered as `database.table` from now on; None
        restores the default. Works where a database is a schema of the same
        server: MySQL databases, PostgreSQL schemas, SQLite attached databases.
        """
        session = self.session
        release_read_transaction(session, self._tracker)
        session.bind = self._database_bind(database)
        logger.debug(f"Unit of work switched to database {database!r}")

    def execute_sql_command(self, sql: str, *parameters: Any) -> int:
        """
        Run raw SQL inside the session's transaction; the next save commits it.

        A single mapping binds named (`:name`) parameters; otherwise the
        parameters are passed positionally to the driver in its own paramstyle.
        Returns the affected row count.
        """
        session = self.session
        if len(parameters) == 1 and isinstance(parameters[0], Mapping):
            result = session.exec(text(sql), params=parameters[0])
        else:
            result = session.connection().exec_driver_sql(sql, parameters or None)
        self._tracker.mark_written()
        return result.rowcount

    def from_sql(self, model: Type[Any], sql: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """Entities of `model` loaded from raw SQL."""
        return self.get_repository(model).from_sql(sql, params)

    def flush(self) -> None:
        """Flush session (e.g. to get auto-increment IDs)."""
        self.session.flush()

    def rollback(self) -> None:
        """Discard staged and flushed changes."""
        session = self.session
        session.rollback()
        clear_pending_statements(session)

    def dispose(self) -> None:
        """Close every repository and the session; safe to call more than once."""
        if self._disposed:
            return
        self._release_repositories()
        self._session.close()
        logger.debug("Unit of work disposed")

    def __enter__(self) -> "UnitOfWork":
        self._ensure_active()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None and not self._disposed:
                self.rollback()
        finally:
            self.dispose()
