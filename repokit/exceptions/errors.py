"""Errors raised by repositories and units of work."""

from typing import Any


class RepositoryError(Exception):
    """Base class for data-access errors raised by this library."""
    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class UnitOfWorkDisposedError(RepositoryError):
    """The unit of work (or a repository it handed out) was already disposed."""


class TransactionCoordinationError(RepositoryError):
    """Units of work cannot share one transaction (different engines, duplicates, ...)."""


class ActiveTransactionError(RepositoryError):
    """The session holds flushed changes that are not committed yet."""
