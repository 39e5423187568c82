import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import StoreDescriptor
from schemeresolver.core.exceptions import (
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.utils.logger import Logger


@dataclass
class ConnectionHandle:
    """
    A single database connection plus the lock that serializes its use.

    DBAPI connections do not support concurrent statements, so every
    statement issued through a handle runs while holding ``lock``.
    """

    connection: Connection
    descriptor: Optional[StoreDescriptor] = None
    lock: threading.RLock = field(default_factory=threading.RLock)

    @property
    def dialect(self) -> str:
        return self.connection.dialect.name

    @contextmanager
    def locked(self):
        with self.lock:
            yield self.connection

    def fetch_all(self, stmt, params: Optional[dict] = None) -> list:
        with self.lock:
            return self.connection.execute(stmt, params or {}).fetchall()

    def close(self):
        with self.lock:
            self.connection.close()


class DataConnector:
    """
    Hands out one memoized connection per distinct scheme database.

    Handles are keyed by driver, host, port, database and user. A failed
    attempt is not cached and not retried here: the next call tries again.
    """

    def __init__(
        self,
        connect_timeout: Optional[int] = None,
        statement_timeout: Optional[int] = None,
    ):
        self.logger = Logger()
        self.connect_timeout = connect_timeout
        self.statement_timeout = statement_timeout
        self._engines: Dict[tuple, Engine] = {}
        self._handles: Dict[tuple, ConnectionHandle] = {}
        self._lock = threading.Lock()

    def get_connection(self, descriptor: StoreDescriptor) -> ConnectionHandle:
        if not descriptor.is_remote:
            raise DatabaseConfigurationException(
                "Store descriptor has no database name"
            )
        with self._lock:
            handle = self._handles.get(descriptor.key)
            if handle is not None and not handle.connection.closed:
                return handle
            handle = self._connect(descriptor)
            self._handles[descriptor.key] = handle
            return handle

    def _connect_args(self, descriptor: StoreDescriptor) -> dict:
        if self.connect_timeout is None:
            return {}
        if descriptor.driver.startswith("sqlite"):
            return {"timeout": self.connect_timeout}
        if descriptor.driver.startswith("postgresql"):
            return {"connect_timeout": self.connect_timeout}
        return {}

    def _connect(self, descriptor: StoreDescriptor) -> ConnectionHandle:
        name = descriptor.dbase_name
        if descriptor.driver.startswith("sqlite") and not Path(name).exists():
            # SQLite would silently create an empty database.
            msg = f"Can not connect to database '{name}': file not found"
            self.logger.log(msg, "WARNING")
            raise DatabaseConnectionException(msg)

        try:
            engine = self._engines.get(descriptor.key)
            if engine is None:
                engine = create_engine(
                    descriptor.url(),
                    future=True,
                    connect_args=self._connect_args(descriptor),
                )
                self._engines[descriptor.key] = engine
            connection = engine.connect()
            if self.statement_timeout and connection.dialect.name == "postgresql":  # noqa E501
                connection.execute(
                    text(f"SET statement_timeout = {int(self.statement_timeout * 1000)}")  # noqa E501
                )
            connection.execute(text("SELECT 1"))
        except (SQLAlchemyError, ImportError) as e:
            msg = f"Can not connect to database '{name}'"
            self.logger.log(f"{msg}: {e}", "WARNING")
            raise DatabaseConnectionException(msg) from e

        self.logger.log(f"Connected to scheme database '{name}'", "DEBUG")
        return ConnectionHandle(connection=connection, descriptor=descriptor)

    def close_all(self):
        with self._lock:
            for handle in self._handles.values():
                handle.close()
            for engine in self._engines.values():
                engine.dispose()
            self._handles.clear()
            self._engines.clear()
