"""Connection routing, execution, transactions and diagnostics."""

from .async_repository import AsyncRepository
from .connection import AsyncConnectionProvider, ConnectionProvider
from .diagnostics import (
    DIAGNOSTIC_LISTENER_NAME,
    DiagnosticListener,
    LoggingObserver,
    Subscription,
    diagnostic_listener,
)
from .repository import Repository
from .transaction import AsyncTransaction, Transaction, TransactionState

__all__ = [
    "AsyncConnectionProvider",
    "AsyncRepository",
    "AsyncTransaction",
    "ConnectionProvider",
    "DIAGNOSTIC_LISTENER_NAME",
    "DiagnosticListener",
    "LoggingObserver",
    "Repository",
    "Subscription",
    "Transaction",
    "TransactionState",
    "diagnostic_listener",
]
