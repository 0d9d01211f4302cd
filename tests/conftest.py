"""Pytest configuration and shared fixtures for repository tests"""

import os
from typing import AsyncGenerator, Generator, Optional

import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, text

from sql_repository.core import AsyncRepository, Repository, diagnostic_listener
from sql_repository.dialects.mysql import MySQLDialect
from sql_repository.dialects.sqlserver import SqlServerDialect
from sql_repository.models.config import RepositoryConfig

# Load environment variables
load_dotenv()

ORDER_COUNT = 37


class _SQLiteBatches:
    """Runs dialect batches on SQLite, which executes one statement per call."""

    default_driver = None
    default_async_driver = None

    def apply_command_timeout(self, connection, seconds):
        pass

    def read_result_sets(self, cursor, statement, arguments):
        result_sets = []
        for part in _statements(statement):
            cursor.execute(part, arguments)
            if cursor.description is not None:
                columns = [column[0] for column in cursor.description]
                result_sets.append((columns, list(cursor.fetchall())))
        return result_sets

    async def read_result_sets_async(self, driver_connection, statement, arguments):
        result_sets = []
        for part in _statements(statement):
            async with driver_connection.execute(part, arguments) as cursor:
                if cursor.description is not None:
                    columns = [column[0] for column in cursor.description]
                    result_sets.append((columns, list(await cursor.fetchall())))
        return result_sets


class SQLiteBatchDialect(_SQLiteBatches, MySQLDialect):
    """MySQL paging syntax run on SQLite."""


class SQLiteRowNumberDialect(_SQLiteBatches, SqlServerDialect):
    """SQL Server paging on SQLite.

    SQLite reports major version 3, so pages use the ROW_NUMBER fallback.
    """


def _statements(batch: str) -> list[str]:
    return [part.strip() for part in batch.split(";") if part.strip()]


# ==================== Configuration Fixtures ====================


@pytest.fixture(scope="session")
def mysql_database_url() -> Optional[str]:
    """MySQL test database URL from environment"""
    return os.getenv("MYSQL_TEST_DATABASE_URL")


@pytest.fixture(scope="session")
def mssql_database_url() -> Optional[str]:
    """SQL Server test database URL from environment"""
    return os.getenv("MSSQL_TEST_DATABASE_URL")


@pytest.fixture(autouse=True)
def reset_diagnostics() -> Generator[None, None, None]:
    """Each test starts and ends with no diagnostics subscribers"""
    diagnostic_listener.reset()
    yield
    diagnostic_listener.reset()


@pytest.fixture
def recorded_events() -> Generator[list, None, None]:
    """Collect (name, event) pairs published on the diagnostics channel"""
    events: list = []
    subscription = diagnostic_listener.subscribe(
        lambda name, event: events.append((name, event))
    )
    yield events
    subscription.unsubscribe()


# ==================== SQLite Fixtures ====================


@pytest.fixture
def sqlite_dialect() -> SQLiteBatchDialect:
    return SQLiteBatchDialect()


@pytest.fixture
def rownumber_dialect() -> SQLiteRowNumberDialect:
    return SQLiteRowNumberDialect()


@pytest.fixture
def database_path(tmp_path) -> str:
    """SQLite file seeded with an orders table of ORDER_COUNT rows"""
    path = tmp_path / "orders.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE orders ("
                "id INTEGER PRIMARY KEY, customer TEXT NOT NULL, amount INTEGER NOT NULL)"
            )
        )
        conn.execute(
            text("INSERT INTO orders (id, customer, amount) VALUES (:id, :customer, :amount)"),
            [
                {"id": i, "customer": f"customer-{i % 5}", "amount": i * 10}
                for i in range(1, ORDER_COUNT + 1)
            ],
        )
    engine.dispose()
    return str(path)


@pytest.fixture
def sqlite_config(database_path: str) -> RepositoryConfig:
    return RepositoryConfig(
        master_connection_string=f"sqlite:///{database_path}",
        engine_options={"paramstyle": "named"},
    )


@pytest.fixture
def async_sqlite_config(database_path: str) -> RepositoryConfig:
    return RepositoryConfig(
        master_connection_string=f"sqlite+aiosqlite:///{database_path}",
        engine_options={"paramstyle": "named"},
    )


@pytest.fixture
def repository(
    sqlite_config: RepositoryConfig, sqlite_dialect: SQLiteBatchDialect
) -> Generator[Repository, None, None]:
    """Blocking repository over the seeded SQLite file with proper cleanup"""
    repo = Repository(sqlite_config, dialect=sqlite_dialect)
    try:
        yield repo
    finally:
        repo.dispose()


@pytest.fixture
async def async_repository(
    async_sqlite_config: RepositoryConfig, sqlite_dialect: SQLiteBatchDialect
) -> AsyncGenerator[AsyncRepository, None]:
    """Async repository over the seeded SQLite file with proper cleanup"""
    repo = AsyncRepository(async_sqlite_config, dialect=sqlite_dialect)
    try:
        yield repo
    finally:
        await repo.dispose()


# ==================== Pytest Configuration ====================


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "mysql: MySQL-specific tests")
    config.addinivalue_line("markers", "sqlserver: SQL Server-specific tests")
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring database"
    )
