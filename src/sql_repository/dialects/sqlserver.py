"""SQL Server dialect: OFFSET/FETCH paging with a ROW_NUMBER fallback."""

import logging
from typing import Optional, Sequence

from sqlalchemy import Connection

from sql_repository.dialects.base import BaseDialect
from sql_repository.models.capabilities import DialectCapabilities
from sql_repository.models.config import DatabaseType

logger = logging.getLogger(__name__)

# SQL Server 2012 (major version 11) introduced OFFSET ... FETCH
DEFAULT_OFFSET_FETCH_MIN_VERSION = 11

# Synthetic column added by the ROW_NUMBER paging fallback
ROWNUMBER_COLUMN = "ROWNUMBER"


class SqlServerDialect(BaseDialect):
    """Microsoft SQL Server."""

    database_type = DatabaseType.SQLSERVER
    default_driver = "pyodbc"
    default_async_driver = "aioodbc"

    def __init__(self, offset_fetch_min_version: int = DEFAULT_OFFSET_FETCH_MIN_VERSION):
        """
        Initialize SQL Server dialect.

        Args:
            offset_fetch_min_version: Lowest server major version paged with
                OFFSET/FETCH; older servers use ROW_NUMBER windowing
        """
        self.offset_fetch_min_version = offset_fetch_min_version

    @property
    def capabilities(self) -> DialectCapabilities:
        """SQL Server needs an ORDER BY for both paging strategies."""
        return DialectCapabilities(
            offset_fetch=True,
            offset_fetch_min_version=self.offset_fetch_min_version,
            multiple_result_sets=True,
            requires_order_for_paging=True,
            stored_procedures=True,
        )

    def synthetic_columns(self, server_version: Optional[int]) -> tuple[str, ...]:
        """The ROW_NUMBER fallback adds a numbering column to each page row."""
        if self.supports_offset_fetch(server_version):
            return ()
        return (ROWNUMBER_COLUMN,)

    def build_page_sql(
        self,
        use_cte: bool,
        sql: str,
        order_field: str,
        ascending: bool,
        page_size: int,
        page_index: int,
        count_syntax: str = "COUNT(*)",
        server_version: Optional[int] = None,
    ) -> str:
        """Generate SQL Server count and page statements."""
        self._check_page(page_size, page_index)
        order_by = self.order_by(order_field, ascending)
        offset = page_size * (page_index - 1)
        row_start = offset + 1
        row_end = page_size * page_index

        if self.supports_offset_fetch(server_version):
            fetch = f"OFFSET {offset} ROWS FETCH NEXT {page_size} ROWS ONLY"
            if use_cte:
                page_sql = f"{sql} SELECT * FROM T {order_by} {fetch};"
            else:
                page_sql = f"SELECT * FROM ({sql}) AS T {order_by} {fetch};"
        else:
            logger.debug(
                f"SQL Server {server_version} predates OFFSET/FETCH, paging with ROW_NUMBER"
            )
            numbered = f"SELECT ROW_NUMBER() OVER ({order_by}) AS [{ROWNUMBER_COLUMN}], *"
            window = (
                f"WHERE [{ROWNUMBER_COLUMN}] BETWEEN {row_start} AND {row_end} "
                f"ORDER BY [{ROWNUMBER_COLUMN}]"
            )
            if use_cte:
                page_sql = f"{sql},R AS ({numbered} FROM T) SELECT * FROM R {window};"
            else:
                page_sql = f"SELECT * FROM ({numbered} FROM ({sql}) AS T) AS N {window};"

        if use_cte:
            count_sql = f"{sql} SELECT {count_syntax} AS [TOTAL] FROM T;"
        else:
            count_sql = f"SELECT {count_syntax} AS [TOTAL] FROM ({sql}) AS T;"

        return count_sql + page_sql

    def build_procedure_call(self, name: str, parameter_names: Sequence[str]) -> str:
        """Generate a SQL Server EXEC statement with named arguments."""
        arguments = ", ".join(f"@{parameter} = :{parameter}" for parameter in parameter_names)
        return self._join("EXEC", name, arguments)

    def apply_command_timeout(self, connection: Connection, seconds: int) -> None:
        """Set the query timeout on drivers exposing one (pyodbc)."""
        dbapi_connection = connection.connection.dbapi_connection
        if hasattr(dbapi_connection, "timeout"):
            dbapi_connection.timeout = seconds
