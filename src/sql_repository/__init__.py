"""Routed, paged and instrumented SQL execution for MySQL and SQL Server."""

from sql_repository.core import (
    AsyncRepository,
    DiagnosticListener,
    LoggingObserver,
    Repository,
    TransactionState,
    diagnostic_listener,
)
from sql_repository.dialects import (
    BaseDialect,
    MySQLDialect,
    SqlServerDialect,
    create_dialect,
    detect_dialect,
)
from sql_repository.exceptions import (
    ConnectionError,
    ExecutionError,
    RepositoryError,
    TransactionStateError,
)
from sql_repository.load_balancer import (
    LoadBalancer,
    RandomLoadBalancer,
    RoundRobinLoadBalancer,
)
from sql_repository.models import (
    CommandType,
    DataTable,
    DatabaseType,
    DiagnosticsEvent,
    PageRequest,
    PageResult,
    RepositoryConfig,
)

__version__ = "0.1.0"

__all__ = [
    "AsyncRepository",
    "BaseDialect",
    "CommandType",
    "ConnectionError",
    "DataTable",
    "DatabaseType",
    "DiagnosticListener",
    "DiagnosticsEvent",
    "ExecutionError",
    "LoadBalancer",
    "LoggingObserver",
    "MySQLDialect",
    "PageRequest",
    "PageResult",
    "RandomLoadBalancer",
    "Repository",
    "RepositoryConfig",
    "RepositoryError",
    "RoundRobinLoadBalancer",
    "SqlServerDialect",
    "TransactionState",
    "TransactionStateError",
    "create_dialect",
    "detect_dialect",
    "diagnostic_listener",
]
