"""Asyncio repository mirroring the blocking one.

Statements run through ``AsyncConnection.run_sync`` with the same helpers the
blocking repository uses, so both emit identical SQL and diagnostics.
"""

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncConnection

from sql_repository.core import executor
from sql_repository.core.connection import AsyncConnectionProvider, data_source
from sql_repository.core.diagnostics import track
from sql_repository.core.transaction import AsyncTransaction
from sql_repository.dialects import create_dialect
from sql_repository.dialects.base import BaseDialect
from sql_repository.exceptions import TransactionStateError
from sql_repository.models.config import CommandType, RepositoryConfig
from sql_repository.models.page import PageRequest, PageResult
from sql_repository.models.table import DataTable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RollbackHandler = Callable[[Optional[BaseException]], Any]


async def _notify(handler: RollbackHandler, exception: Optional[BaseException]) -> None:
    result = handler(exception)
    if inspect.isawaitable(result):
        await result


class AsyncRepository:
    """Executes SQL against a primary/replica topology from asyncio code."""

    def __init__(
        self,
        config: RepositoryConfig,
        dialect: Optional[BaseDialect] = None,
        provider: Optional[AsyncConnectionProvider] = None,
        transaction: Optional[AsyncTransaction] = None,
    ):
        """
        Initialize repository.

        Args:
            config: Repository configuration
            dialect: Dialect override; created from the configuration when omitted
            provider: Connection provider to share; created when omitted
            transaction: Transaction this repository is bound to
        """
        self.config = config
        self.dialect = dialect or create_dialect(config)
        self.provider = provider or AsyncConnectionProvider(config, self.dialect)
        self._transaction = transaction

    async def query(
        self,
        sql: Any,
        parameters: Any = None,
        *,
        use_cte: bool = False,
        model: Optional[Callable[..., T]] = None,
    ) -> list[Any]:
        """Run a query and return every row, as dicts or ``model`` records."""
        sql, parameters = executor.resolve_query(sql, parameters)
        rows = await self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_rows
        )
        return executor.map_rows(rows, model)

    async def query_one(
        self,
        sql: Any,
        parameters: Any = None,
        *,
        use_cte: bool = False,
        model: Optional[Callable[..., T]] = None,
    ) -> Optional[Any]:
        """Run a query and return its first row, or None."""
        sql, parameters = executor.resolve_query(sql, parameters)
        row = await self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_first
        )
        return executor.map_row(row, model)

    async def query_table(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> DataTable:
        """Run a query and return the result as a DataTable."""
        sql, parameters = executor.resolve_query(sql, parameters)
        return await self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_table
        )

    async def query_multiple(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> list[list[dict[str, Any]]]:
        """Run a batch of statements in one round trip and return every result set."""
        sql, parameters = executor.resolve_query(sql, parameters)
        sql = executor.intercept(
            self.config, executor.with_cte(sql, use_cte), parameters
        )
        async with self._scope() as connection:
            binds = executor.bind_parameters(parameters)
            with track(sql, parameters, data_source(connection)):
                result_sets = await executor.read_batch_async(
                    connection, self.dialect, sql, binds
                )
        return executor.result_sets_to_dicts(result_sets)

    async def execute(
        self,
        sql: Any,
        parameters: Any = None,
        command_type: CommandType = CommandType.TEXT,
    ) -> int:
        """Execute a statement or stored procedure and return the affected row count."""
        sql, parameters = executor.resolve_query(sql, parameters)
        sql = self._command_text(sql, parameters, command_type)
        return await self._run(sql, parameters, executor.execute_non_query)

    async def execute_query(
        self,
        sql: Any,
        parameters: Any = None,
        command_type: CommandType = CommandType.TEXT,
        *,
        model: Optional[Callable[..., T]] = None,
    ) -> list[Any]:
        """Execute a statement or stored procedure and return the rows it produces."""
        sql, parameters = executor.resolve_query(sql, parameters)
        sql = self._command_text(sql, parameters, command_type)
        rows = await self._run(sql, parameters, executor.fetch_rows)
        return executor.map_rows(rows, model)

    async def execute_scalar(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> Optional[Any]:
        """Run a query and return the first column of its first row, or None."""
        sql, parameters = executor.resolve_query(sql, parameters)
        return await self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_scalar
        )

    async def execute_by_proc(self, name: str, parameters: Any = None) -> int:
        """Execute a stored procedure and return the affected row count."""
        return await self.execute(name, parameters, CommandType.STORED_PROCEDURE)

    async def page(
        self, request: PageRequest, *, model: Optional[Callable[..., T]] = None
    ) -> PageResult:
        """Fetch one page of rows and the total row count in a single round trip."""
        total, table = await self._page(request)
        return PageResult(rows=executor.map_rows(table.to_dicts(), model), total=total)

    async def page_table(self, request: PageRequest) -> PageResult:
        """Fetch one page as a DataTable and the total row count."""
        total, table = await self._page(request)
        return PageResult(rows=table, total=total)

    async def _page(self, request: PageRequest) -> tuple[int, DataTable]:
        async with self._scope() as connection:
            server_version = await connection.run_sync(self.dialect.server_version)
            sql = self.dialect.build_page_sql(
                request.use_cte,
                request.sql,
                request.order_field,
                request.ascending,
                request.page_size,
                request.page_index,
                self.config.count_syntax,
                server_version,
            )
            sql = executor.intercept(self.config, sql, request.parameters)
            binds = executor.bind_parameters(request.parameters)
            with track(sql, request.parameters, data_source(connection)):
                result_sets = await executor.read_batch_async(
                    connection, self.dialect, sql, binds
                )

        total, table = executor.split_page(result_sets)
        for column in self.dialect.synthetic_columns(server_version):
            table.remove_column(column)
        return total, table

    @property
    def in_transaction(self) -> bool:
        """Whether this repository is bound to an active transaction."""
        return self._transaction is not None and self._transaction.is_active

    async def begin_transaction(self) -> "AsyncRepository":
        """Start a transaction on the primary and return a repository bound to it."""
        if self.in_transaction:
            raise TransactionStateError("A transaction is already active")

        connection = await self.provider.connect(force_master=True)
        try:
            transaction = AsyncTransaction(connection, await connection.begin())
        except Exception:
            await connection.close()
            raise
        return AsyncRepository(
            self.config,
            dialect=self.dialect,
            provider=self.provider,
            transaction=transaction,
        )

    async def commit(self) -> None:
        """Commit the bound transaction."""
        if self._transaction is None:
            raise TransactionStateError("No transaction to commit")
        await self._transaction.commit()

    async def rollback(self) -> None:
        """Roll back the bound transaction."""
        if self._transaction is None:
            raise TransactionStateError("No transaction to roll back")
        await self._transaction.rollback()

    async def close(self) -> None:
        """Release the bound transaction, rolling back uncommitted work."""
        if self._transaction is not None:
            await self._transaction.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["AsyncRepository"]:
        """Commit on normal exit, roll back when the block raises."""
        repository = await self.begin_transaction()
        try:
            yield repository
        except BaseException:
            if repository.in_transaction:
                await repository.rollback()
            raise
        if repository.in_transaction:
            await repository.commit()

    async def run_in_transaction(
        self,
        work: Callable[["AsyncRepository"], Awaitable[T]],
        on_rollback: Optional[RollbackHandler] = None,
    ) -> Optional[T]:
        """
        Await work in a transaction, committing when it returns.

        ``on_rollback`` may be a plain function or a coroutine function.
        """
        repository = None
        try:
            repository = await self.begin_transaction()
            result = await work(repository)
            if repository.in_transaction:
                await repository.commit()
        except Exception as e:
            if repository is not None and repository.in_transaction:
                await repository.rollback()
            if on_rollback is None:
                raise
            await _notify(on_rollback, e)
            return None
        return result

    async def run_in_transaction_if(
        self,
        work: Callable[["AsyncRepository"], Awaitable[bool]],
        on_rollback: Optional[RollbackHandler] = None,
    ) -> bool:
        """Await work in a transaction, committing only when it returns True."""
        repository = None
        try:
            repository = await self.begin_transaction()
            committed = bool(await work(repository))
            if committed:
                await repository.commit()
                return True
            if repository.in_transaction:
                await repository.rollback()
        except Exception as e:
            if repository is not None and repository.in_transaction:
                await repository.rollback()
            if on_rollback is None:
                raise
            await _notify(on_rollback, e)
            return False

        if on_rollback is not None:
            await _notify(on_rollback, None)
        return False

    async def dispose(self) -> None:
        """Dispose of the provider's connection pools."""
        await self.provider.dispose()

    async def __aenter__(self) -> "AsyncRepository":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._transaction is not None:
            await self.close()
        else:
            await self.dispose()

    def _command_text(self, sql: str, parameters: Any, command_type: CommandType) -> str:
        if command_type == CommandType.STORED_PROCEDURE:
            return executor.procedure_call(self.dialect, sql, parameters)
        return sql

    async def _run(self, sql: str, parameters: Any, work: Callable[..., T]) -> T:
        sql = executor.intercept(self.config, sql, parameters)
        async with self._scope() as connection:
            binds = executor.bind_parameters(parameters)
            with track(sql, parameters, data_source(connection)):
                return await connection.run_sync(work, sql, binds)

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[AsyncConnection]:
        if self._transaction is not None:
            yield self._transaction.connection
            return

        connection = await self.provider.connect()
        try:
            yield connection
            await connection.commit()
        finally:
            await connection.close()
