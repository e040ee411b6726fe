"""
Transaction bookkeeping for units of work.

A `TransactionTracker` follows the root transaction of one session through
session events, so a unit of work knows which connection it holds and whether
anything was written on it. Core statements staged by retargeted repositories
live in `session.info` until the next save.
"""

from typing import Any, List, Optional
from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session
from repokit.exceptions.errors import ActiveTransactionError, TransactionCoordinationError

PENDING_STATEMENTS_KEY = "repokit.pending_statements"


class TransactionTracker:
    """Tracks the connection and write state of a session's root transaction."""

    def __init__(self, session: Session):
        self.session = session
        self.connection: Optional[Connection] = None
        self.has_writes = False
        self._attached = False
        self.attach()

    def attach(self) -> None:
        if self._attached:
            return
        event.listen(self.session, "after_begin", self._after_begin)
        event.listen(self.session, "after_flush", self._after_flush)
        event.listen(self.session, "after_transaction_end", self._after_transaction_end)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        event.remove(self.session, "after_begin", self._after_begin)
        event.remove(self.session, "after_flush", self._after_flush)
        event.remove(self.session, "after_transaction_end", self._after_transaction_end)
        self._attached = False

    def mark_written(self) -> None:
        """Record a write that bypassed the flush (raw SQL)."""
        self.has_writes = True

    def _after_begin(self, session, transaction, connection):
        self.connection = connection

    def _after_flush(self, session, flush_context):
        self.has_writes = True

    def _after_transaction_end(self, session, transaction):
        if transaction.parent is None:
            self.connection = None
            self.has_writes = False


def release_read_transaction(session: Session, tracker: TransactionTracker) -> None:
    """
    End the session's current transaction if it has only read.

    Objects staged in the session (new, dirty, deleted) are left untouched;
    the next operation begins a fresh transaction on whatever the session is
    bound to at that time.

    Raises:
        ActiveTransactionError: the transaction holds uncommitted writes.
    """
    if tracker.has_writes:
        raise ActiveTransactionError(
            "The unit of work holds written changes that are not committed yet; save or roll back first."
        )
    transaction = session.get_transaction()
    if transaction is not None:
        transaction.close()


def check_shared_engine(owner_bind: Any, bind: Any, name: str) -> None:
    """Check that `bind` can join a transaction opened on `owner_bind`."""
    if not isinstance(bind, Engine):
        raise TransactionCoordinationError(
            f"{name} is bound to {type(bind).__name__}, an Engine is required to share a transaction"
        )
    if bind.pool is not owner_bind.pool:
        raise TransactionCoordinationError(
            f"{name} uses a different engine ({bind.url!r}) than the coordinating unit of work ({owner_bind.url!r})"
        )


def stage_statement(session: Any, statement: Any) -> None:
    """Queue a Core statement for the next save of the session's unit of work."""
    session.info.setdefault(PENDING_STATEMENTS_KEY, []).append(statement)


def pending_statements(session: Any) -> List[Any]:
    return list(session.info.get(PENDING_STATEMENTS_KEY, ()))


def clear_pending_statements(session: Any) -> None:
    session.info.pop(PENDING_STATEMENTS_KEY, None)


def staged_count(session: Session) -> int:
    """
    Entries the next flush will write: new, really modified and deleted instances.

    This counts staged entries, not affected rows.
    """
    modified = sum(1 for entity in session.dirty if session.is_modified(entity))
    return len(session.new) + modified + len(session.deleted)
