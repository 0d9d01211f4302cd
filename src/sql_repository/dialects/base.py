"""Base dialect abstract class for database-specific SQL generation."""

import re
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from sqlalchemy import Connection
from sqlalchemy.engine.url import make_url

from sql_repository.models.capabilities import DialectCapabilities
from sql_repository.models.config import DatabaseType

# An order expression already carrying a direction keyword or a block comment
# is used verbatim.
EXPLICIT_DIRECTION = re.compile(
    r"(/\*.*?\*/)|(\b(ASC|DESC)\b)", re.IGNORECASE | re.DOTALL
)

# Ordering used when paging requires one and the caller gave none
ARBITRARY_ORDER = "ORDER BY (SELECT 0)"

# Columns and rows of one result set
ResultSet = tuple[list[str], list[tuple[Any, ...]]]


class BaseDialect(ABC):
    """Dialect defining database-specific paging and command syntax."""

    database_type: Optional[DatabaseType] = None
    default_driver: Optional[str] = None
    default_async_driver: Optional[str] = None

    @property
    @abstractmethod
    def capabilities(self) -> DialectCapabilities:
        """Get capabilities for this database type."""
        ...

    @abstractmethod
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
        """
        Build a count statement followed by a page statement.

        Args:
            use_cte: Whether sql is a CTE prologue defining T
            sql: Base SQL statement or CTE prologue
            order_field: ORDER BY expression, possibly empty
            ascending: Direction appended when order_field has none
            page_size: Rows per page
            page_index: 1-based page number
            count_syntax: Aggregate used for the count statement
            server_version: Detected server major version, if known

        Returns:
            Two statements, each terminated by a semicolon
        """
        ...

    @abstractmethod
    def build_procedure_call(self, name: str, parameter_names: Sequence[str]) -> str:
        """
        Build the statement invoking a stored procedure.

        Args:
            name: Procedure name
            parameter_names: Bind parameter names, passed in order

        Returns:
            SQL text with named bind parameters
        """
        ...

    def order_by(self, order_field: str, ascending: bool) -> str:
        """Build the ORDER BY clause, or an empty string for no ordering."""
        order_field = (order_field or "").strip()
        if not order_field:
            if self.capabilities.requires_order_for_paging:
                return ARBITRARY_ORDER
            return ""
        if EXPLICIT_DIRECTION.search(order_field):
            return f"ORDER BY {order_field}"
        return f"ORDER BY {order_field} {'ASC' if ascending else 'DESC'}"

    def supports_offset_fetch(self, server_version: Optional[int]) -> bool:
        """Whether a server of this major version pages with OFFSET/FETCH."""
        capabilities = self.capabilities
        if not capabilities.offset_fetch:
            return False
        return (
            server_version is None
            or server_version >= capabilities.offset_fetch_min_version
        )

    def synthetic_columns(self, server_version: Optional[int]) -> tuple[str, ...]:
        """Columns the page statement adds that callers never see."""
        return ()

    def connect_args(self, drivername: str) -> dict[str, Any]:
        """Driver connect arguments this dialect needs."""
        return {}

    def apply_command_timeout(self, connection: Connection, seconds: int) -> None:
        """Forward the command timeout to the session or driver."""

    def server_version(self, connection: Connection) -> Optional[int]:
        """Get the server major version from a connected SQLAlchemy connection."""
        info = connection.dialect.server_version_info
        if not info:
            return None
        try:
            return int(info[0])
        except (TypeError, ValueError):
            return None

    def with_driver(self, url: str, asynchronous: bool = False) -> str:
        """
        Add this dialect's default driver to a URL that names none.

        Args:
            url: SQLAlchemy URL
            asynchronous: Pick the asyncio driver instead of the blocking one

        Returns:
            URL with an explicit driver
        """
        parsed = make_url(url)
        if "+" in parsed.drivername:
            return url

        driver = self.default_async_driver if asynchronous else self.default_driver
        if not driver:
            return url
        parsed = parsed.set(drivername=f"{parsed.drivername}+{driver}")
        return parsed.render_as_string(hide_password=False)

    def read_result_sets(
        self, cursor: Any, statement: str, arguments: Any
    ) -> list[ResultSet]:
        """
        Execute a batch on a DBAPI cursor and read every result set.

        Result sets without a description (row counts of DML, SET statements)
        are skipped.
        """
        cursor.execute(statement, arguments)
        result_sets: list[ResultSet] = []
        while True:
            if cursor.description is not None:
                columns = [column[0] for column in cursor.description]
                result_sets.append((columns, list(cursor.fetchall())))
            if not cursor.nextset():
                break
        return result_sets

    async def read_result_sets_async(
        self, driver_connection: Any, statement: str, arguments: Any
    ) -> list[ResultSet]:
        """Execute a batch on an asyncio driver connection and read every result set."""
        cursor = await driver_connection.cursor()
        try:
            await cursor.execute(statement, arguments)
            result_sets: list[ResultSet] = []
            while True:
                if cursor.description is not None:
                    columns = [column[0] for column in cursor.description]
                    result_sets.append((columns, list(await cursor.fetchall())))
                if not await cursor.nextset():
                    break
            return result_sets
        finally:
            await cursor.close()

    @staticmethod
    def _check_page(page_size: int, page_index: int) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")
        if page_index < 1:
            raise ValueError(f"page_index must be at least 1, got {page_index}")

    @staticmethod
    def _join(*parts: Optional[str]) -> str:
        return " ".join(part for part in parts if part)

