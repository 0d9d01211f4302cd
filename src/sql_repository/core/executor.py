"""Statement preparation and execution helpers shared by both repositories.

Everything here works on a blocking SQLAlchemy ``Connection``; the async
repository runs the same helpers through ``AsyncConnection.run_sync`` so both
conventions send identical SQL.
"""

import dataclasses
import logging
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel
from sqlalchemy import Connection, text
from sqlalchemy.engine import Dialect
from sqlalchemy.ext.asyncio import AsyncConnection

from sql_repository.dialects.base import BaseDialect, ResultSet
from sql_repository.exceptions import RepositoryError
from sql_repository.models.config import RepositoryConfig
from sql_repository.models.table import DataTable

logger = logging.getLogger(__name__)

# Appended to a CTE prologue (which defines T) to make it a complete query
CTE_SUFFIX = "SELECT * FROM T"


def resolve_query(query: Any, parameters: Any = None) -> tuple[str, Any]:
    """
    Split SQL text or a query description into (sql, parameters).

    A query description is any object exposing ``sql`` and ``parameters``;
    explicitly passed parameters take precedence over its own.
    """
    if isinstance(query, str):
        return query, parameters

    sql = getattr(query, "sql", None)
    if not isinstance(sql, str):
        raise TypeError(
            f"Expected SQL text or an object with a 'sql' attribute, got {type(query).__name__}"
        )
    if parameters is None:
        parameters = getattr(query, "parameters", None)
    return sql, parameters


def with_cte(sql: str, use_cte: bool) -> str:
    """Complete a CTE prologue with a select over T."""
    if use_cte:
        return f"{sql} {CTE_SUFFIX}"
    return sql


def intercept(config: RepositoryConfig, sql: str, parameters: Any) -> str:
    """Pass SQL through the configured hook; None from the hook keeps the input."""
    hook = config.sql_intercept
    if hook is None:
        return sql
    rewritten = hook(sql, parameters)
    return sql if rewritten is None else rewritten


def bind_parameters(parameters: Any) -> dict[str, Any]:
    """
    Convert a caller's parameter object into driver bind values.

    Accepts None, mappings, pydantic models, dataclass instances and plain
    objects (their instance attributes).
    """
    if parameters is None:
        return {}
    if isinstance(parameters, Mapping):
        return dict(parameters)
    if isinstance(parameters, BaseModel):
        return parameters.model_dump()
    if dataclasses.is_dataclass(parameters) and not isinstance(parameters, type):
        return dataclasses.asdict(parameters)
    try:
        return dict(vars(parameters))
    except TypeError:
        raise TypeError(
            f"Unsupported parameter object of type {type(parameters).__name__}"
        )


def map_row(row: Optional[dict[str, Any]], model: Optional[Callable[..., Any]]) -> Any:
    """Map a dict row to a typed record: pydantic via model_validate, else model(**row)."""
    if row is None or model is None:
        return row
    validate = getattr(model, "model_validate", None)
    if validate is not None:
        return validate(row)
    return model(**row)


def map_rows(rows: list[dict[str, Any]], model: Optional[Callable[..., Any]]) -> list[Any]:
    if model is None:
        return rows
    return [map_row(row, model) for row in rows]


def fetch_rows(connection: Connection, sql: str, binds: dict[str, Any]) -> list[dict[str, Any]]:
    """Execute and return every row as a dict."""
    result = connection.execute(text(sql), binds)
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings()]


def fetch_first(
    connection: Connection, sql: str, binds: dict[str, Any]
) -> Optional[dict[str, Any]]:
    """Execute and return the first row as a dict, or None."""
    result = connection.execute(text(sql), binds)
    if not result.returns_rows:
        return None
    row = result.mappings().first()
    return dict(row) if row is not None else None


def fetch_table(connection: Connection, sql: str, binds: dict[str, Any]) -> DataTable:
    """Execute and return the result as a DataTable."""
    result = connection.execute(text(sql), binds)
    if not result.returns_rows:
        return DataTable()
    return DataTable.from_cursor(list(result.keys()), result.fetchall())


def fetch_scalar(connection: Connection, sql: str, binds: dict[str, Any]) -> Any:
    """Execute and return the first column of the first row, or None."""
    result = connection.execute(text(sql), binds)
    if not result.returns_rows:
        return None
    return result.scalar()


def execute_non_query(connection: Connection, sql: str, binds: dict[str, Any]) -> int:
    """Execute and return the affected row count reported by the driver."""
    result = connection.execute(text(sql), binds)
    return result.rowcount


def require_multiple_result_sets(dialect: BaseDialect) -> None:
    if not dialect.capabilities.multiple_result_sets:
        raise RepositoryError(
            f"{type(dialect).__name__} cannot return several result sets in one batch"
        )


def procedure_call(dialect: BaseDialect, name: str, parameters: Any) -> str:
    """Build the stored procedure statement for the parameters' names."""
    if not dialect.capabilities.stored_procedures:
        raise RepositoryError(f"{type(dialect).__name__} does not support stored procedures")
    return dialect.build_procedure_call(name, list(bind_parameters(parameters)))


def compile_batch(dialect: Dialect, sql: str, binds: dict[str, Any]) -> tuple[str, Any]:
    """
    Render SQL text with named binds into the driver's own parameter style.

    Returns:
        Statement string and the arguments for ``cursor.execute``: a tuple for
        positional styles, a dict otherwise
    """
    compiled = text(sql).compile(dialect=dialect)
    params = compiled.construct_params(binds)
    if compiled.positional:
        return str(compiled), tuple(params[name] for name in compiled.positiontup)
    return str(compiled), params


def read_batch(
    connection: Connection, dialect: BaseDialect, sql: str, binds: dict[str, Any]
) -> list[ResultSet]:
    """Run a multi-statement batch on the connection's DBAPI cursor."""
    require_multiple_result_sets(dialect)
    statement, arguments = compile_batch(connection.dialect, sql, binds)
    cursor = connection.connection.dbapi_connection.cursor()
    try:
        return dialect.read_result_sets(cursor, statement, arguments)
    finally:
        cursor.close()


async def read_batch_async(
    connection: AsyncConnection, dialect: BaseDialect, sql: str, binds: dict[str, Any]
) -> list[ResultSet]:
    """Run a multi-statement batch on the asyncio driver's own connection."""
    require_multiple_result_sets(dialect)
    statement, arguments = compile_batch(connection.sync_engine.dialect, sql, binds)
    raw = await connection.get_raw_connection()
    return await dialect.read_result_sets_async(raw.driver_connection, statement, arguments)


def split_page(result_sets: list[ResultSet]) -> tuple[int, DataTable]:
    """
    Read the total and the page rows out of a paging batch.

    The first result set holds the count (0 when it has no row), the second
    holds the page.
    """
    total = 0
    if result_sets:
        _, count_rows = result_sets[0]
        if count_rows and len(count_rows[0]) > 0 and count_rows[0][0] is not None:
            total = int(count_rows[0][0])

    if len(result_sets) > 1:
        columns, rows = result_sets[1]
        table = DataTable.from_cursor(columns, rows)
    else:
        table = DataTable()
    return total, table


def result_sets_to_dicts(result_sets: list[ResultSet]) -> list[list[dict[str, Any]]]:
    """Convert every result set of a batch into a list of dict rows."""
    return [
        [dict(zip(columns, row)) for row in rows] for columns, rows in result_sets
    ]
