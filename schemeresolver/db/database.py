import os
import threading
from pathlib import Path
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from schemeresolver.core.exceptions import DatabaseConnectionException
from schemeresolver.db.create_db_mixin import CreateDBMixin
from schemeresolver.schemes.connector import ConnectionHandle
from schemeresolver.utils.logger import Logger

MEMORY_URI = "sqlite:///:memory:"


class Database(CreateDBMixin):
    """
    The local store: engine, session factory and the one connection that
    owns this process's temporary profile caches.

    Temporary tables are only visible to the connection that created them,
    so cache building and cached lookups always go through ``handle``.
    """

    def __init__(self, db_uri=None, connect_timeout=None, statement_timeout=None):  # noqa E501
        self.logger = Logger()
        self.db_uri = db_uri
        self.connect_timeout = connect_timeout
        self.statement_timeout = statement_timeout
        self.engine = None
        self.session = None
        self.connected = False
        self._handle = None
        self._lock = threading.Lock()

        if self.db_uri:
            self.connect()

    def _normalize_uri(self, uri: str) -> str:
        if uri == ":memory:":
            return MEMORY_URI
        if "://" in uri:
            return uri
        return f"sqlite:///{os.path.abspath(uri)}"

    def _is_memory(self) -> bool:
        return self.db_uri in (MEMORY_URI, "sqlite://")

    def connect(self, new_uri: str = None, check_exists=True):
        """
        Connect to the specified database.

        Args:
            new_uri (str): Optionally provide a new database URI.
            check_exists (bool): If True, raises error if database does not exist.
                                Set to False during DB creation.
        """
        if new_uri:
            self.db_uri = new_uri

        self.db_uri = self._normalize_uri(self.db_uri)

        if check_exists and not self.exists_db():
            msn = f"Database not found at {self.db_uri}"
            self.logger.log(msn, "ERROR")
            raise DatabaseConnectionException(msn)

        kwargs = {"future": True}
        if self.db_uri.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.connect_timeout is not None:
                kwargs["connect_args"]["timeout"] = self.connect_timeout
            if self._is_memory():
                kwargs["poolclass"] = StaticPool
        elif self.connect_timeout is not None:
            kwargs["connect_args"] = {"connect_timeout": self.connect_timeout}

        try:
            self.engine = create_engine(self.db_uri, **kwargs)
        except (SQLAlchemyError, ImportError) as e:
            msn = f"Can not create engine for {self.db_uri}: {e}"
            self.logger.log(msn, "ERROR")
            raise DatabaseConnectionException(msn) from e
        self.session = sessionmaker(bind=self.engine, future=True)
        self.connected = True

    def exists_db(self):
        if not self.db_uri:
            msn = "Database URI must be set before connecting."
            self.logger.log(msn, "ERROR")
            return False
        if self._is_memory():
            return True
        if self.db_uri.startswith("sqlite:///"):
            path = self.db_uri.replace("sqlite:///", "")
            return Path(path).exists()
        # Server-backed stores are checked on first connection
        return True

    def get_session(self):
        if not self.session:
            msn = "Database not connected. Call connect() first."
            self.logger.log(msn, "WARNING")
            return None
        return self.session()

    @property
    def handle(self) -> ConnectionHandle:
        """Dedicated connection for temporary cache tables, opened lazily."""
        with self._lock:
            if self._handle is None or self._handle.connection.closed:
                if not self.connected:
                    raise DatabaseConnectionException(
                        "Database not connected. Call connect() first."
                    )
                try:
                    connection = self.engine.connect()
                    if self.statement_timeout and connection.dialect.name == "postgresql":  # noqa E501
                        connection.execute(
                            text(f"SET statement_timeout = {int(self.statement_timeout * 1000)}")  # noqa E501
                        )
                except SQLAlchemyError as e:
                    msn = f"Can not connect to local store {self.db_uri}"
                    self.logger.log(f"{msn}: {e}", "ERROR")
                    raise DatabaseConnectionException(msn) from e
                self._handle = ConnectionHandle(connection=connection)
            return self._handle

    def close(self):
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
        if self.engine is not None:
            self.engine.dispose()
        self.connected = False

    def __repr__(self):
        return f"<Database(db_uri={self.db_uri})>"
