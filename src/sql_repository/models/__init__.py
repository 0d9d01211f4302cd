"""Pydantic models for configuration, results and diagnostics."""

from .capabilities import DialectCapabilities
from .config import CommandType, DatabaseType, RepositoryConfig
from .diagnostics import (
    AFTER_EXECUTE,
    BEFORE_EXECUTE,
    ERROR_EXECUTE,
    DiagnosticsEvent,
)
from .page import PageRequest, PageResult
from .table import DataTable

__all__ = [
    "AFTER_EXECUTE",
    "BEFORE_EXECUTE",
    "ERROR_EXECUTE",
    "CommandType",
    "DataTable",
    "DatabaseType",
    "DiagnosticsEvent",
    "DialectCapabilities",
    "PageRequest",
    "PageResult",
    "RepositoryConfig",
]
