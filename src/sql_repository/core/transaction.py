"""Transaction lifecycle over one dedicated connection."""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy import Connection, RootTransaction
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.ext.asyncio import AsyncTransaction as SAAsyncTransaction

from sql_repository.core.connection import data_source
from sql_repository.exceptions import TransactionStateError

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    """Lifecycle states. Every state but ACTIVE is terminal."""

    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    CLOSED = "closed"


class _BaseTransaction:
    def __init__(self, connection, transaction):
        self._connection = connection
        self._transaction = transaction
        self.state = TransactionState.ACTIVE
        self.data_source: Optional[str] = data_source(connection)

    @property
    def is_active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    @property
    def connection(self):
        """The transaction's connection; only usable while active."""
        self._require_active("use")
        return self._connection

    def _require_active(self, action: str) -> None:
        if not self.is_active:
            raise TransactionStateError(
                f"Cannot {action} a transaction that is {self.state.value}"
            )

    def _finish(self, state: TransactionState) -> None:
        logger.debug(f"Transaction on {self.data_source} {state.value}")
        self.state = state


class Transaction(_BaseTransaction):
    """A blocking transaction owning its connection."""

    def __init__(self, connection: Connection, transaction: RootTransaction):
        """
        Initialize transaction.

        Args:
            connection: Dedicated connection, closed when the transaction ends
            transaction: The transaction begun on that connection
        """
        super().__init__(connection, transaction)

    def commit(self) -> None:
        """Commit and release the connection."""
        self._require_active("commit")
        try:
            self._transaction.commit()
            self._finish(TransactionState.COMMITTED)
        finally:
            self._release()

    def rollback(self) -> None:
        """Roll back and release the connection."""
        self._require_active("roll back")
        try:
            self._transaction.rollback()
            self._finish(TransactionState.ROLLED_BACK)
        finally:
            self._release()

    def close(self) -> None:
        """Release the connection, discarding uncommitted work. Idempotent."""
        if not self.is_active:
            return
        try:
            self._transaction.rollback()
        finally:
            self._release()

    def _release(self) -> None:
        if self.is_active:
            self._finish(TransactionState.CLOSED)
        self._connection.close()

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class AsyncTransaction(_BaseTransaction):
    """An asyncio transaction owning its connection."""

    def __init__(self, connection: AsyncConnection, transaction: SAAsyncTransaction):
        super().__init__(connection, transaction)

    async def commit(self) -> None:
        """Commit and release the connection."""
        self._require_active("commit")
        try:
            await self._transaction.commit()
            self._finish(TransactionState.COMMITTED)
        finally:
            await self._release()

    async def rollback(self) -> None:
        """Roll back and release the connection."""
        self._require_active("roll back")
        try:
            await self._transaction.rollback()
            self._finish(TransactionState.ROLLED_BACK)
        finally:
            await self._release()

    async def close(self) -> None:
        """Release the connection, discarding uncommitted work. Idempotent."""
        if not self.is_active:
            return
        try:
            await self._transaction.rollback()
        finally:
            await self._release()

    async def _release(self) -> None:
        if self.is_active:
            self._finish(TransactionState.CLOSED)
        await self._connection.close()

    async def __aenter__(self) -> "AsyncTransaction":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
