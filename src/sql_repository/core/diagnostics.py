"""Process-wide diagnostics channel for statement execution.

Every statement the repositories dispatch is wrapped in ``before-execute``,
``after-execute`` and ``error-execute`` events. Events are only built when a
subscriber is listening for that name, so an unobserved process pays a single
check per dispatch.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from sql_repository.models.diagnostics import (
    AFTER_EXECUTE,
    BEFORE_EXECUTE,
    ERROR_EXECUTE,
    DiagnosticsEvent,
    now_millis,
)
from sql_repository.utils.serialization import dumps

logger = logging.getLogger(__name__)

DIAGNOSTIC_LISTENER_NAME = "SqlRepositoryDiagnosticListener"

DiagnosticsCallback = Callable[[str, DiagnosticsEvent], None]


@dataclass(frozen=True)
class _Subscriber:
    callback: DiagnosticsCallback
    predicate: Optional[Callable[[str], bool]]

    def wants(self, name: str) -> bool:
        return self.predicate is None or self.predicate(name)


class Subscription:
    """Handle returned by :meth:`DiagnosticListener.subscribe`."""

    def __init__(self, listener: "DiagnosticListener", subscriber: _Subscriber):
        self._listener = listener
        self._subscriber = subscriber

    def unsubscribe(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._listener._remove(self._subscriber)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class DiagnosticListener:
    """Synchronous fan-out of named events to subscribers."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        # Replaced wholesale on change, so readers never need the lock
        self._subscribers: tuple[_Subscriber, ...] = ()

    def subscribe(
        self,
        callback: DiagnosticsCallback,
        is_enabled: Optional[Callable[[str], bool]] = None,
    ) -> Subscription:
        """
        Register a subscriber.

        Args:
            callback: Called with (event name, event) for each delivered event
            is_enabled: Optional filter on event names; all names when omitted

        Returns:
            Subscription handle, usable as a context manager
        """
        subscriber = _Subscriber(callback, is_enabled)
        with self._lock:
            self._subscribers = self._subscribers + (subscriber,)
        return Subscription(self, subscriber)

    def is_enabled(self, name: str) -> bool:
        """Whether any subscriber wants events with this name."""
        return any(subscriber.wants(name) for subscriber in self._subscribers)

    def write(self, name: str, event: DiagnosticsEvent) -> None:
        """Deliver an event to every interested subscriber, in order."""
        for subscriber in self._subscribers:
            if subscriber.wants(name):
                subscriber.callback(name, event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def reset(self) -> None:
        """Drop every subscriber."""
        with self._lock:
            self._subscribers = ()

    def _remove(self, subscriber: _Subscriber) -> None:
        with self._lock:
            self._subscribers = tuple(s for s in self._subscribers if s is not subscriber)


diagnostic_listener = DiagnosticListener(DIAGNOSTIC_LISTENER_NAME)


def execute_before(
    sql: str, parameters: Any, data_source: Optional[str]
) -> Optional[DiagnosticsEvent]:
    """Emit the before-execute event; returns None when nobody listens."""
    if not diagnostic_listener.is_enabled(BEFORE_EXECUTE):
        return None

    event = DiagnosticsEvent(
        sql=sql,
        parameters=parameters,
        data_source=data_source,
        operation=BEFORE_EXECUTE,
        timestamp=now_millis(),
    )
    diagnostic_listener.write(BEFORE_EXECUTE, event)
    return event


def execute_after(event: Optional[DiagnosticsEvent]) -> None:
    """Emit the after-execute event for a dispatch that succeeded."""
    if event is not None and diagnostic_listener.is_enabled(AFTER_EXECUTE):
        diagnostic_listener.write(AFTER_EXECUTE, event.completed(AFTER_EXECUTE))


def execute_error(event: Optional[DiagnosticsEvent], exception: BaseException) -> None:
    """Emit the error-execute event for a dispatch that failed."""
    if event is not None and diagnostic_listener.is_enabled(ERROR_EXECUTE):
        diagnostic_listener.write(
            ERROR_EXECUTE, event.completed(ERROR_EXECUTE, exception)
        )


@contextmanager
def track(sql: str, parameters: Any, data_source: Optional[str]) -> Iterator[None]:
    """
    Wrap one dispatch in diagnostics events.

    The failure, cancellation included, is reported and then propagates
    unchanged.
    """
    event = execute_before(sql, parameters, data_source)
    try:
        yield
    except BaseException as e:
        execute_error(event, e)
        raise
    execute_after(event)


class LoggingObserver:
    """Diagnostics subscriber writing execution events to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None, level: int = logging.DEBUG):
        self.log = log or logger
        self.level = level

    def __call__(self, name: str, event: DiagnosticsEvent) -> None:
        if name == ERROR_EXECUTE:
            self.log.error(
                f"SQL failed after {event.elapsed_milliseconds}ms on {event.data_source}: "
                f"{event.exception} | {event.sql} | {dumps(event.parameters)}"
            )
        elif name == AFTER_EXECUTE:
            self.log.log(
                self.level,
                f"SQL completed in {event.elapsed_milliseconds}ms on {event.data_source}",
            )
        else:
            self.log.log(
                self.level,
                f"Executing SQL on {event.data_source}: {event.sql} | {dumps(event.parameters)}",
            )

    def attach(self, listener: Optional[DiagnosticListener] = None) -> Subscription:
        """Subscribe this observer, to the process-wide listener by default."""
        return (listener or diagnostic_listener).subscribe(self)
