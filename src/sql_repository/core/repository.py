"""Blocking repository: routed, instrumented statement execution."""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from sqlalchemy import Connection

from sql_repository.core import executor
from sql_repository.core.connection import ConnectionProvider, data_source
from sql_repository.core.diagnostics import track
from sql_repository.core.transaction import Transaction
from sql_repository.dialects import create_dialect
from sql_repository.dialects.base import BaseDialect
from sql_repository.exceptions import TransactionStateError
from sql_repository.models.config import CommandType, RepositoryConfig
from sql_repository.models.page import PageRequest, PageResult
from sql_repository.models.table import DataTable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository:
    """Executes SQL against a primary/replica topology."""

    def __init__(
        self,
        config: RepositoryConfig,
        dialect: Optional[BaseDialect] = None,
        provider: Optional[ConnectionProvider] = None,
        transaction: Optional[Transaction] = None,
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
        self.provider = provider or ConnectionProvider(config, self.dialect)
        self._transaction = transaction

    # ---- queries ----

    def query(
        self,
        sql: Any,
        parameters: Any = None,
        *,
        use_cte: bool = False,
        model: Optional[Callable[..., T]] = None,
    ) -> list[Any]:
        """
        Run a query and return every row.

        Args:
            sql: SQL text, or an object exposing ``sql`` and ``parameters``
            parameters: Named parameters (mapping, model, dataclass or object)
            use_cte: Treat sql as a CTE prologue defining T
            model: Maps each row to a typed record

        Returns:
            Dict rows, or ``model`` records when given
        """
        sql, parameters = executor.resolve_query(sql, parameters)
        rows = self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_rows
        )
        return executor.map_rows(rows, model)

    def query_one(
        self,
        sql: Any,
        parameters: Any = None,
        *,
        use_cte: bool = False,
        model: Optional[Callable[..., T]] = None,
    ) -> Optional[Any]:
        """Run a query and return its first row, or None."""
        sql, parameters = executor.resolve_query(sql, parameters)
        row = self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_first
        )
        return executor.map_row(row, model)

    def query_table(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> DataTable:
        """Run a query and return the result as a DataTable."""
        sql, parameters = executor.resolve_query(sql, parameters)
        return self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_table
        )

    def query_multiple(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> list[list[dict[str, Any]]]:
        """Run a batch of statements in one round trip and return every result set."""
        sql, parameters = executor.resolve_query(sql, parameters)
        result_sets = self._run(
            executor.with_cte(sql, use_cte), parameters, self._read_batch
        )
        return executor.result_sets_to_dicts(result_sets)

    # ---- commands ----

    def execute(
        self,
        sql: Any,
        parameters: Any = None,
        command_type: CommandType = CommandType.TEXT,
    ) -> int:
        """
        Execute a statement or stored procedure.

        Returns:
            Affected row count as reported by the driver
        """
        sql, parameters = executor.resolve_query(sql, parameters)
        sql = self._command_text(sql, parameters, command_type)
        return self._run(sql, parameters, executor.execute_non_query)

    def execute_query(
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
        rows = self._run(sql, parameters, executor.fetch_rows)
        return executor.map_rows(rows, model)

    def execute_scalar(
        self, sql: Any, parameters: Any = None, *, use_cte: bool = False
    ) -> Optional[Any]:
        """Run a query and return the first column of its first row, or None."""
        sql, parameters = executor.resolve_query(sql, parameters)
        return self._run(
            executor.with_cte(sql, use_cte), parameters, executor.fetch_scalar
        )

    def execute_by_proc(self, name: str, parameters: Any = None) -> int:
        """Execute a stored procedure and return the affected row count."""
        return self.execute(name, parameters, CommandType.STORED_PROCEDURE)

    # ---- paging ----

    def page(
        self, request: PageRequest, *, model: Optional[Callable[..., T]] = None
    ) -> PageResult:
        """
        Fetch one page of rows and the total row count in a single round trip.

        Returns:
            Page of dict rows (or ``model`` records) and the unpaginated total
        """
        total, table = self._page(request)
        return PageResult(rows=executor.map_rows(table.to_dicts(), model), total=total)

    def page_table(self, request: PageRequest) -> PageResult:
        """Fetch one page as a DataTable and the total row count."""
        total, table = self._page(request)
        return PageResult(rows=table, total=total)

    def _page(self, request: PageRequest) -> tuple[int, DataTable]:
        with self._scope() as connection:
            server_version = self.dialect.server_version(connection)
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
                result_sets = self._read_batch(connection, sql, binds)

        total, table = executor.split_page(result_sets)
        for column in self.dialect.synthetic_columns(server_version):
            table.remove_column(column)
        return total, table

    # ---- transactions ----

    @property
    def in_transaction(self) -> bool:
        """Whether this repository is bound to an active transaction."""
        return self._transaction is not None and self._transaction.is_active

    def begin_transaction(self) -> "Repository":
        """
        Start a transaction on the primary.

        Returns:
            Repository bound to the new transaction; operations on it share
            the transaction's connection until commit or rollback
        """
        if self.in_transaction:
            raise TransactionStateError("A transaction is already active")

        connection = self.provider.connect(force_master=True)
        try:
            transaction = Transaction(connection, connection.begin())
        except Exception:
            connection.close()
            raise
        return Repository(
            self.config,
            dialect=self.dialect,
            provider=self.provider,
            transaction=transaction,
        )

    def commit(self) -> None:
        """Commit the bound transaction."""
        if self._transaction is None:
            raise TransactionStateError("No transaction to commit")
        self._transaction.commit()

    def rollback(self) -> None:
        """Roll back the bound transaction."""
        if self._transaction is None:
            raise TransactionStateError("No transaction to roll back")
        self._transaction.rollback()

    def close(self) -> None:
        """Release the bound transaction, rolling back uncommitted work."""
        if self._transaction is not None:
            self._transaction.close()

    @contextmanager
    def transaction(self) -> Iterator["Repository"]:
        """Commit on normal exit, roll back when the block raises."""
        repository = self.begin_transaction()
        try:
            yield repository
        except BaseException:
            if repository.in_transaction:
                repository.rollback()
            raise
        if repository.in_transaction:
            repository.commit()

    def run_in_transaction(
        self,
        work: Callable[["Repository"], T],
        on_rollback: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> Optional[T]:
        """
        Run work in a transaction, committing when it returns.

        Args:
            work: Called with a repository bound to the transaction
            on_rollback: Receives the failure after rollback; without it the
                failure is re-raised

        Returns:
            The work's result, or None when a failure was handled
        """
        repository = None
        try:
            repository = self.begin_transaction()
            result = work(repository)
            if repository.in_transaction:
                repository.commit()
        except Exception as e:
            if repository is not None and repository.in_transaction:
                repository.rollback()
            if on_rollback is None:
                raise
            on_rollback(e)
            return None
        return result

    def run_in_transaction_if(
        self,
        work: Callable[["Repository"], bool],
        on_rollback: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> bool:
        """
        Run work in a transaction, committing only when it returns True.

        A False result rolls back and calls ``on_rollback(None)`` when a
        handler is given. A failure rolls back and goes to ``on_rollback`` or
        is re-raised.

        Returns:
            Whether the transaction was committed
        """
        repository = None
        try:
            repository = self.begin_transaction()
            committed = bool(work(repository))
            if committed:
                repository.commit()
                return True
            if repository.in_transaction:
                repository.rollback()
        except Exception as e:
            if repository is not None and repository.in_transaction:
                repository.rollback()
            if on_rollback is None:
                raise
            on_rollback(e)
            return False

        if on_rollback is not None:
            on_rollback(None)
        return False

    def dispose(self) -> None:
        """Dispose of the provider's connection pools."""
        self.provider.dispose()

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._transaction is not None:
            self.close()
        else:
            self.dispose()

    # ---- internals ----

    def _command_text(self, sql: str, parameters: Any, command_type: CommandType) -> str:
        if command_type == CommandType.STORED_PROCEDURE:
            return executor.procedure_call(self.dialect, sql, parameters)
        return sql

    def _read_batch(self, connection: Connection, sql: str, binds: dict[str, Any]):
        return executor.read_batch(connection, self.dialect, sql, binds)

    def _run(self, sql: str, parameters: Any, work: Callable[..., T]) -> T:
        sql = executor.intercept(self.config, sql, parameters)
        with self._scope() as connection:
            binds = executor.bind_parameters(parameters)
            with track(sql, parameters, data_source(connection)):
                return work(connection, sql, binds)

    @contextmanager
    def _scope(self) -> Iterator[Connection]:
        if self._transaction is not None:
            yield self._transaction.connection
            return

        connection = self.provider.connect()
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()
