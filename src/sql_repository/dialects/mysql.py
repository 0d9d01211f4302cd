"""MySQL dialect: LIMIT/OFFSET paging and session-level timeouts."""

import logging
from typing import Any, Optional, Sequence

from sqlalchemy import Connection

from sql_repository.dialects.base import BaseDialect
from sql_repository.models.capabilities import DialectCapabilities
from sql_repository.models.config import DatabaseType

logger = logging.getLogger(__name__)

# MySQL client capability flags, shared by every MySQLdb-compatible driver
CLIENT_FOUND_ROWS = 1 << 1
CLIENT_MULTI_STATEMENTS = 1 << 16

# Drivers taking the client_flag connect argument
CLIENT_FLAG_DRIVERS = {"pymysql", "aiomysql", "mysqldb", "asyncmy"}


class MySQLDialect(BaseDialect):
    """MySQL and MariaDB."""

    database_type = DatabaseType.MYSQL
    default_driver = "pymysql"
    default_async_driver = "aiomysql"

    @property
    def capabilities(self) -> DialectCapabilities:
        """MySQL pages with LIMIT/OFFSET and needs no ORDER BY to do so."""
        return DialectCapabilities(
            offset_fetch=False,
            multiple_result_sets=True,
            requires_order_for_paging=False,
            stored_procedures=True,
        )

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
        """Generate MySQL count and page statements."""
        self._check_page(page_size, page_index)
        order_by = self.order_by(order_field, ascending)
        offset = page_size * (page_index - 1)
        limit = f"LIMIT {page_size} OFFSET {offset}"

        if use_cte:
            count_sql = f"{sql} SELECT {count_syntax} AS `TOTAL` FROM T;"
            page_sql = self._join(sql, "SELECT * FROM T", order_by, limit) + ";"
        else:
            count_sql = f"SELECT {count_syntax} AS `TOTAL` FROM ({sql}) AS T;"
            page_sql = self._join(f"SELECT * FROM ({sql}) AS T", order_by, limit) + ";"

        return count_sql + page_sql

    def build_procedure_call(self, name: str, parameter_names: Sequence[str]) -> str:
        """Generate a MySQL CALL statement."""
        arguments = ", ".join(f":{parameter}" for parameter in parameter_names)
        return f"CALL {name}({arguments})"

    def connect_args(self, drivername: str) -> dict[str, Any]:
        """Enable multi-statement batches, keeping found-rows row counts."""
        driver = drivername.partition("+")[2]
        if driver in CLIENT_FLAG_DRIVERS:
            return {"client_flag": CLIENT_FOUND_ROWS | CLIENT_MULTI_STATEMENTS}
        return {}

    def apply_command_timeout(self, connection: Connection, seconds: int) -> None:
        """Set the session statement timeout.

        MySQL takes milliseconds in max_execution_time, MariaDB takes seconds
        in max_statement_time.
        """
        if connection.dialect.is_mariadb:
            connection.exec_driver_sql(f"SET SESSION max_statement_time = {seconds}")
        else:
            timeout_ms = seconds * 1000
            connection.exec_driver_sql(f"SET SESSION max_execution_time = {timeout_ms}")
