"""Connection routing and engine management with SQLAlchemy."""

import logging
import threading
from typing import Any, Union

from sqlalchemy import Connection, Engine, create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from sql_repository.dialects.base import BaseDialect
from sql_repository.exceptions import ConnectionError
from sql_repository.models.config import RepositoryConfig

logger = logging.getLogger(__name__)


def data_source(connection: Union[Connection, AsyncConnection]) -> str:
    """Connection URL of an open connection, password masked."""
    return connection.engine.url.render_as_string(hide_password=True)


class _BaseConnectionProvider:
    """Routing rule and engine cache shared by both providers."""

    def __init__(self, config: RepositoryConfig, dialect: BaseDialect):
        """
        Initialize connection provider.

        Args:
            config: Repository configuration with the database topology
            dialect: Dialect supplying driver defaults and session setup
        """
        self.config = config
        self.dialect = dialect
        self._lock = threading.Lock()
        self._engines: dict[str, Any] = {}

    def select_connection_string(self, force_master: bool = False) -> str:
        """
        Pick the connection string for the next operation.

        The primary is used when forced, when configured to, or when there is
        no replica or no balancer to choose one.
        """
        config = self.config
        if (
            force_master
            or config.is_master
            or not config.has_replicas
            or config.load_balancer is None
        ):
            return config.master_connection_string

        candidates = [url for url, _ in config.replica_connection_strings]
        weights = [weight for _, weight in config.replica_connection_strings]
        return config.load_balancer.get(
            config.master_connection_string, candidates, weights
        )

    def _engine_arguments(self, url: str) -> dict[str, Any]:
        options = dict(self.config.engine_options)
        connect_args = self.dialect.connect_args(make_url(url).drivername)
        connect_args.update(options.pop("connect_args", {}))
        options.setdefault("pool_pre_ping", True)
        if connect_args:
            options["connect_args"] = connect_args
        return options

    def _get_engine(self, connection_string: str, asynchronous: bool) -> Any:
        with self._lock:
            engine = self._engines.get(connection_string)
            if engine is None:
                url = self.dialect.with_driver(connection_string, asynchronous)
                factory = create_async_engine if asynchronous else create_engine
                engine = factory(url, **self._engine_arguments(url))
                self._engines[connection_string] = engine
                logger.debug(
                    f"Created engine for {make_url(url).render_as_string(hide_password=True)}"
                )
            return engine

    @staticmethod
    def _describe(connection_string: str) -> str:
        try:
            return make_url(connection_string).render_as_string(hide_password=True)
        except Exception:
            return "<invalid url>"

    @property
    def engine_count(self) -> int:
        """Number of engines created and not yet disposed."""
        return len(self._engines)

    def _take_engines(self) -> list[Any]:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        return engines


class ConnectionProvider(_BaseConnectionProvider):
    """Opens blocking connections against the configured topology."""

    def get_engine(self, connection_string: str) -> Engine:
        """Get or lazily create the engine for a connection string."""
        return self._get_engine(connection_string, asynchronous=False)

    def connect(self, force_master: bool = False) -> Connection:
        """
        Open a connection routed by the configuration.

        Args:
            force_master: Route to the primary regardless of configuration

        Returns:
            Open connection with the command timeout applied

        Raises:
            ConnectionError: If the engine cannot be created or connected
        """
        connection_string = self.select_connection_string(force_master)
        source = self._describe(connection_string)
        connection = None
        try:
            connection = self.get_engine(connection_string).connect()
            self.dialect.apply_command_timeout(connection, self.config.command_timeout)
            # Ends the implicit transaction so begin() can be called next
            connection.commit()
        except Exception as e:
            if connection is not None:
                connection.close()
            raise ConnectionError(f"Failed to connect to {source}: {e}", source) from e

        logger.debug(f"Opened connection to {source}")
        return connection

    def dispose(self) -> None:
        """Dispose of every connection pool."""
        for engine in self._take_engines():
            engine.dispose()


class AsyncConnectionProvider(_BaseConnectionProvider):
    """Opens asyncio connections against the configured topology."""

    def get_engine(self, connection_string: str) -> AsyncEngine:
        """Get or lazily create the async engine for a connection string."""
        return self._get_engine(connection_string, asynchronous=True)

    async def connect(self, force_master: bool = False) -> AsyncConnection:
        """
        Open a connection routed by the configuration.

        Args:
            force_master: Route to the primary regardless of configuration

        Returns:
            Open connection with the command timeout applied

        Raises:
            ConnectionError: If the engine cannot be created or connected
        """
        connection_string = self.select_connection_string(force_master)
        source = self._describe(connection_string)
        connection = None
        try:
            connection = await self.get_engine(connection_string).connect()
            await connection.run_sync(
                self.dialect.apply_command_timeout, self.config.command_timeout
            )
            await connection.commit()
        except Exception as e:
            if connection is not None:
                await connection.close()
            raise ConnectionError(f"Failed to connect to {source}: {e}", source) from e

        logger.debug(f"Opened connection to {source}")
        return connection

    async def dispose(self) -> None:
        """Dispose of every connection pool."""
        for engine in self._take_engines():
            await engine.dispose()
