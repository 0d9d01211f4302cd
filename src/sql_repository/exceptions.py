"""Error taxonomy for repository operations."""

from sqlalchemy.exc import DBAPIError

# Statements rejected by the driver or database are re-raised unchanged, so
# the execution error type is the driver-level error SQLAlchemy raises.
ExecutionError = DBAPIError


class RepositoryError(Exception):
    """Base class for errors raised by the repository layer itself."""


class ConnectionError(RepositoryError):  # noqa: A001
    """A database endpoint could not be routed to or opened."""

    def __init__(self, message: str, data_source: str | None = None):
        super().__init__(message)
        self.data_source = data_source


class TransactionStateError(RepositoryError):
    """Commit or rollback attempted without an active transaction."""


__all__ = [
    "ConnectionError",
    "ExecutionError",
    "RepositoryError",
    "TransactionStateError",
]
