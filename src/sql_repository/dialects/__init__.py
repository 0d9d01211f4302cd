"""Database dialects for engine-specific paging and command syntax."""

from typing import Union

from .base import BaseDialect
from .mysql import MySQLDialect
from .sqlserver import ROWNUMBER_COLUMN, SqlServerDialect
from ..models.config import DatabaseType, RepositoryConfig, detect_database_type

__all__ = [
    "BaseDialect",
    "MySQLDialect",
    "ROWNUMBER_COLUMN",
    "SqlServerDialect",
    "create_dialect",
    "detect_dialect",
]


def detect_dialect(url: str) -> DatabaseType:
    """
    Detect database dialect from connection URL.

    Args:
        url: Database connection URL

    Returns:
        Database type

    Raises:
        ValueError: If dialect cannot be detected
    """
    try:
        database_type = detect_database_type(url)
    except Exception as e:
        raise ValueError(f"Failed to detect dialect from URL: {e}")

    if database_type is None:
        raise ValueError(f"Unsupported database dialect in URL: {url.split(':', 1)[0]}")
    return database_type


def create_dialect(source: Union[RepositoryConfig, DatabaseType, str]) -> BaseDialect:
    """
    Factory function to create appropriate database dialect.

    Args:
        source: Repository configuration, database type, or its name

    Returns:
        Dialect instance

    Raises:
        ValueError: If database type is not supported
    """
    if isinstance(source, RepositoryConfig):
        database_type = source.dialect
        if database_type is None:
            database_type = detect_dialect(source.master_connection_string)
    else:
        database_type = source

    dialects = {
        DatabaseType.MYSQL: MySQLDialect,
        DatabaseType.SQLSERVER: SqlServerDialect,
    }

    try:
        dialect_class = dialects.get(DatabaseType(database_type))
    except ValueError:
        dialect_class = None

    if dialect_class is None:
        raise ValueError(
            f"Unsupported database dialect: {database_type}. "
            f"Supported dialects: {', '.join(t.value for t in dialects)}"
        )

    return dialect_class()
