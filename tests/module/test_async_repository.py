"""Module Tests for AsyncRepository

Tests the asyncio repository end to end against SQLite (aiosqlite):
- Queries, commands and paging matching the blocking repository
- Diagnostics events
- Transactions and the callback helpers
"""

import asyncio

import pytest
from pydantic import BaseModel
from sqlalchemy.exc import OperationalError

from sql_repository.core import AsyncRepository, AsyncTransaction, executor
from sql_repository.exceptions import ConnectionError, ExecutionError, TransactionStateError
from sql_repository.models.diagnostics import AFTER_EXECUTE, BEFORE_EXECUTE, ERROR_EXECUTE
from sql_repository.models.page import PageRequest
from sql_repository.models.table import DataTable

ORDER_COUNT = 37

INSERT_ORDER = "INSERT INTO orders (id, customer, amount) VALUES (:id, :customer, :amount)"


class Order(BaseModel):
    id: int
    customer: str
    amount: int


async def _count(repository: AsyncRepository) -> int:
    return await repository.execute_scalar("SELECT COUNT(*) FROM orders")


async def _insert(repository: AsyncRepository, order_id: int) -> int:
    return await repository.execute(
        INSERT_ORDER, {"id": order_id, "customer": "tx", "amount": 1}
    )


async def _fail_commit(self):
    raise OperationalError("COMMIT", {}, Exception("connection lost"))


async def _fail_connect(force_master=False):
    raise ConnectionError("Failed to connect to sqlite:///orders.db", "sqlite:///orders.db")


class TestAsyncQueries:
    """Test row-returning operations."""

    async def test_query(self, async_repository: AsyncRepository):
        rows = await async_repository.query(
            "SELECT id FROM orders WHERE id <= :max_id", {"max_id": 2}
        )
        assert rows == [{"id": 1}, {"id": 2}]

    async def test_query_typed(self, async_repository: AsyncRepository):
        orders = await async_repository.query(
            "SELECT * FROM orders WHERE id = :id", {"id": 5}, model=Order
        )
        assert orders == [Order(id=5, customer="customer-0", amount=50)]

    async def test_query_one(self, async_repository: AsyncRepository):
        assert await async_repository.query_one("SELECT MAX(id) AS id FROM orders") == {"id": 37}
        assert await async_repository.query_one("SELECT id FROM orders WHERE id < 0") is None

    async def test_query_table(self, async_repository: AsyncRepository):
        table = await async_repository.query_table(
            "WITH T AS (SELECT id FROM orders WHERE id <= 2)", use_cte=True
        )
        assert isinstance(table, DataTable)
        assert table.rows == [[1], [2]]

    async def test_query_multiple(self, async_repository: AsyncRepository):
        result_sets = await async_repository.query_multiple(
            "SELECT COUNT(*) AS n FROM orders; SELECT id FROM orders WHERE id = :id",
            {"id": 4},
        )
        assert result_sets == [[{"n": ORDER_COUNT}], [{"id": 4}]]

    async def test_query_multiple_cte(self, async_repository: AsyncRepository):
        result_sets = await async_repository.query_multiple(
            "SELECT COUNT(*) AS n FROM orders; WITH T AS (SELECT id FROM orders WHERE id = :id)",
            {"id": 4},
            use_cte=True,
        )
        assert result_sets == [[{"n": ORDER_COUNT}], [{"id": 4}]]


class TestAsyncCommands:
    """Test statements and scalar reads."""

    async def test_execute(self, async_repository: AsyncRepository):
        affected = await async_repository.execute(
            "UPDATE orders SET amount = 0 WHERE customer = :customer",
            {"customer": "customer-3"},
        )
        assert affected == 7
        assert await async_repository.execute_scalar(
            "SELECT SUM(amount) FROM orders WHERE customer = 'customer-3'"
        ) == 0

    async def test_execute_query(self, async_repository: AsyncRepository):
        rows = await async_repository.execute_query("SELECT id FROM orders WHERE id = 1")
        assert rows == [{"id": 1}]

    async def test_error_propagates(self, async_repository: AsyncRepository, recorded_events):
        with pytest.raises(ExecutionError) as raised:
            await async_repository.execute("DELETE FROM missing_table")

        assert [name for name, _ in recorded_events] == [BEFORE_EXECUTE, ERROR_EXECUTE]
        assert recorded_events[1][1].exception is raised.value

    async def test_cancellation_reported_as_error(
        self, async_repository: AsyncRepository, recorded_events, monkeypatch
    ):
        started = asyncio.Event()

        async def stalled_batch(connection, dialect, sql, binds):
            started.set()
            await asyncio.Event().wait()

        monkeypatch.setattr(executor, "read_batch_async", stalled_batch)
        task = asyncio.create_task(async_repository.query_multiple("SELECT 1; SELECT 2"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert [name for name, _ in recorded_events] == [BEFORE_EXECUTE, ERROR_EXECUTE]
        assert isinstance(recorded_events[1][1].exception, asyncio.CancelledError)


class TestAsyncPaging:
    """Test single round trip paging."""

    async def test_page(self, async_repository: AsyncRepository, recorded_events):
        result = await async_repository.page(
            PageRequest(
                sql="SELECT * FROM orders", order_field="id", page_size=10, page_index=4
            ),
            model=Order,
        )
        assert result.total == ORDER_COUNT
        assert [order.id for order in result.rows] == list(range(31, 38))
        assert [name for name, _ in recorded_events] == [BEFORE_EXECUTE, AFTER_EXECUTE]

    async def test_page_table(self, async_repository: AsyncRepository):
        result = await async_repository.page_table(
            PageRequest(
                sql="SELECT id FROM orders WHERE amount > :min_amount",
                parameters={"min_amount": 300},
                order_field="id",
                ascending=False,
                page_size=3,
                page_index=1,
            )
        )
        assert result.total == 7
        assert result.rows.get_column_values("id") == [37, 36, 35]

    async def test_row_number_fallback_hides_numbering(
        self, async_sqlite_config, rownumber_dialect
    ):
        repository = AsyncRepository(async_sqlite_config, dialect=rownumber_dialect)
        try:
            table = await repository.page_table(
                PageRequest(
                    sql="SELECT id, customer FROM orders",
                    order_field="id",
                    page_size=10,
                    page_index=2,
                )
            )
            result = await repository.page(
                PageRequest(
                    sql="WITH T AS (SELECT id, amount FROM orders)",
                    use_cte=True,
                    order_field="id",
                    page_size=2,
                    page_index=1,
                )
            )
        finally:
            await repository.dispose()

        assert table.total == ORDER_COUNT
        assert table.rows.columns == ["id", "customer"]
        assert table.rows.get_column_values("id") == list(range(11, 21))
        assert result.rows == [{"id": 1, "amount": 10}, {"id": 2, "amount": 20}]


class TestAsyncTransactions:
    """Test the transaction lifecycle."""

    async def test_commit(self, async_repository: AsyncRepository):
        tx = await async_repository.begin_transaction()
        await _insert(tx, 100)
        await tx.commit()
        assert await _count(async_repository) == ORDER_COUNT + 1

    async def test_rollback(self, async_repository: AsyncRepository):
        tx = await async_repository.begin_transaction()
        await _insert(tx, 100)
        assert await _count(tx) == ORDER_COUNT + 1
        await tx.rollback()
        assert await _count(async_repository) == ORDER_COUNT

    async def test_terminal_states(self, async_repository: AsyncRepository):
        tx = await async_repository.begin_transaction()
        await tx.rollback()
        with pytest.raises(TransactionStateError):
            await tx.commit()
        await tx.close()
        await tx.close()

    async def test_unbound_commit(self, async_repository: AsyncRepository):
        with pytest.raises(TransactionStateError):
            await async_repository.commit()

    async def test_context_manager(self, async_repository: AsyncRepository):
        async with async_repository.transaction() as tx:
            await _insert(tx, 100)
        with pytest.raises(RuntimeError):
            async with async_repository.transaction() as tx:
                await _insert(tx, 101)
                raise RuntimeError("abort")
        assert await _count(async_repository) == ORDER_COUNT + 1

    async def test_run_in_transaction(self, async_repository: AsyncRepository):
        async def work(tx):
            return await _insert(tx, 100)

        assert await async_repository.run_in_transaction(work) == 1
        assert await _count(async_repository) == ORDER_COUNT + 1

    async def test_run_in_transaction_async_handler(self, async_repository: AsyncRepository):
        failures = []

        async def work(tx):
            await _insert(tx, 100)
            raise ValueError("invalid order")

        async def handler(exception):
            failures.append(exception)

        assert await async_repository.run_in_transaction(work, on_rollback=handler) is None
        assert isinstance(failures[0], ValueError)
        assert await _count(async_repository) == ORDER_COUNT

    async def test_run_in_transaction_reraises(self, async_repository: AsyncRepository):
        async def work(tx):
            raise ValueError("invalid order")

        with pytest.raises(ValueError):
            await async_repository.run_in_transaction(work)

    async def test_commit_failure_goes_to_handler(
        self, async_repository: AsyncRepository, monkeypatch
    ):
        monkeypatch.setattr(AsyncTransaction, "commit", _fail_commit)
        failures = []

        async def work(tx):
            return await _insert(tx, 100)

        assert await async_repository.run_in_transaction(
            work, on_rollback=failures.append
        ) is None
        assert await async_repository.run_in_transaction_if(
            work, on_rollback=failures.append
        ) is False
        assert [type(failure) for failure in failures] == [OperationalError, OperationalError]
        assert await _count(async_repository) == ORDER_COUNT

    async def test_begin_failure_goes_to_handler(
        self, async_repository: AsyncRepository, monkeypatch
    ):
        monkeypatch.setattr(async_repository.provider, "connect", _fail_connect)
        failures = []

        async def work(tx):
            return True

        assert await async_repository.run_in_transaction(
            work, on_rollback=failures.append
        ) is None
        assert await async_repository.run_in_transaction_if(
            work, on_rollback=failures.append
        ) is False
        assert [type(failure) for failure in failures] == [ConnectionError, ConnectionError]

    async def test_run_in_transaction_if(self, async_repository: AsyncRepository):
        notified = []

        async def keep(tx):
            await _insert(tx, 100)
            return True

        async def discard(tx):
            await _insert(tx, 101)
            return False

        assert await async_repository.run_in_transaction_if(keep) is True
        assert await async_repository.run_in_transaction_if(
            discard, on_rollback=notified.append
        ) is False
        assert await async_repository.run_in_transaction_if(discard) is False

        assert notified == [None]
        assert await _count(async_repository) == ORDER_COUNT + 1
