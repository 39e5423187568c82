"""
Local profile cache for scheme lookups.

Importing all profiles of a scheme into an indexed temporary table is often
far quicker than querying the scheme database directly: a lookup takes a few
milliseconds instead of the seconds a sequential scan over a large, unevenly
distributed profile view can take. The cache lives as long as the local
store connection that owns it.
"""

import io
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Sequence

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import (
    LEGACY_MISSING_VALUE,
    Scheme,
    ValueType,
    sanitize_identifier,
)
from schemeresolver.core.exceptions import (
    CacheBuildException,
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.schemes.registry import SchemeRegistry
from schemeresolver.schemes.sources import ProfileSource
from schemeresolver.utils.config import Settings
from schemeresolver.utils.logger import Logger

TEMP_TABLE_PREFIX = "temp_scheme_"
PERSISTENT_TABLE_PREFIX = "mv_scheme_"


@dataclass(frozen=True)
class CacheTableHandle:
    scheme_id: int
    table: Table
    persistent: bool = False

    @property
    def name(self) -> str:
        return self.table.name


def chunk_columns(columns: Sequence, size: int) -> List[list]:
    """Split columns into consecutive groups of at most ``size``."""
    if size < 1:
        raise ValueError("size must be a positive integer")
    return [list(columns[i:i + size]) for i in range(0, len(columns), size)]


def cache_table_name(scheme_id: int, persistent: bool = False) -> str:
    prefix = PERSISTENT_TABLE_PREFIX if persistent else TEMP_TABLE_PREFIX
    return f"{prefix}{scheme_id}"


class ProfileCacheBuilder:
    """
    Builds one cache table per scheme, at most once per instance.

    A scheme is flagged as built only after its table has been created,
    loaded, normalized and indexed and the transaction committed. Any failure
    rolls back, drops the half-built table and raises CacheBuildException,
    so the next call starts again from scratch.
    """

    def __init__(
        self,
        registry: SchemeRegistry,
        source: ProfileSource,
        settings: Settings = None,
    ):
        self.registry = registry
        self.source = source
        self.settings = settings or registry.settings
        self.logger = Logger()
        self._built: Dict[int, CacheTableHandle] = {}
        self._lock = threading.RLock()

    @property
    def local(self):
        return self.source.local_db.handle

    # ----------------------------------
    # Public API
    # ----------------------------------
    def ensure_cache(self, scheme_id) -> CacheTableHandle:
        scheme = self._scheme(scheme_id)
        with self._lock:
            handle = self._built.get(scheme.id)
            if handle is not None:
                return handle

            if self.settings.materialized_views:
                persistent = self._table(scheme, persistent=True)
                if self._table_exists(persistent.name, persistent=True):
                    self.logger.log_scheme(
                        scheme.id, f"Using persistent cache {persistent.name}", "DEBUG"  # noqa E501
                    )
                    handle = CacheTableHandle(scheme.id, persistent, True)
                    self._built[scheme.id] = handle
                    return handle

            cache = self._table(scheme)
            if self._table_exists(cache.name):
                self.logger.log_scheme(
                    scheme.id, f"Table {cache.name} already exists", "DEBUG"
                )
            else:
                self._build(scheme, cache)
            handle = CacheTableHandle(scheme.id, cache)
            self._built[scheme.id] = handle
            return handle

    def build_persistent_cache(self, scheme_id) -> CacheTableHandle:
        """
        (Re)create the long-lived ``mv_scheme_<id>`` table in the local store.

        Meant for periodic batch refreshes; lookups only use it when
        ``materialized_views`` is enabled.
        """
        scheme = self._scheme(scheme_id)
        with self._lock:
            cache = self._table(scheme, persistent=True)
            with self.local.locked() as conn:
                try:
                    cache.drop(conn, checkfirst=True)
                    conn.commit()
                except SQLAlchemyError as e:
                    conn.rollback()
                    raise CacheBuildException(
                        f"Can't drop {cache.name}", scheme_id=scheme.id
                    ) from e
            self._build(scheme, cache)
            self._built.pop(scheme.id, None)
            return CacheTableHandle(scheme.id, cache, True)

    def is_built(self, scheme_id) -> bool:
        return int(scheme_id) in self._built

    def drop_cache(self, scheme_id) -> None:
        """Drop this process's temporary cache so the next lookup rebuilds it."""
        scheme = self._scheme(scheme_id)
        with self._lock:
            self._built.pop(scheme.id, None)
            cache = self._table(scheme)
            with self.local.locked() as conn:
                try:
                    cache.drop(conn, checkfirst=True)
                    conn.commit()
                except SQLAlchemyError as e:
                    conn.rollback()
                    raise DatabaseConnectionException(
                        f"Can't drop {cache.name}", scheme_id=scheme.id
                    ) from e

    # ----------------------------------
    # Table definition
    # ----------------------------------
    def _scheme(self, scheme_id) -> Scheme:
        scheme = self.registry.get_scheme(scheme_id)
        if scheme is None:
            raise DatabaseConfigurationException(
                "Unknown scheme", scheme_id=scheme_id
            )
        self.registry.validate(scheme)
        return scheme

    @staticmethod
    def _sql_type(value_type: ValueType):
        return Integer if value_type is ValueType.INTEGER else Text

    def _table(self, scheme: Scheme, persistent: bool = False) -> Table:
        columns = [
            Column(f.cache_column, self._sql_type(f.value_type))
            for f in scheme.fields
        ]
        for locus in scheme.loci:
            # A wildcard marker has to fit in the column
            value_type = (
                ValueType.TEXT if scheme.allow_missing_loci else locus.value_type
            )
            columns.append(Column(locus.cache_column, self._sql_type(value_type)))
        prefixes = [] if persistent else ["TEMPORARY"]
        return Table(
            cache_table_name(scheme.id, persistent),
            MetaData(),
            *columns,
            prefixes=prefixes,
        )

    def _table_exists(self, name: str, persistent: bool = False) -> bool:
        with self.local.locked() as conn:
            dialect = conn.dialect.name
            if dialect == "sqlite":
                catalog = "sqlite_master" if persistent else "sqlite_temp_master"
                row = conn.execute(
                    text(f"SELECT 1 FROM {catalog} WHERE type='table' AND name=:name"),  # noqa E501
                    {"name": name},
                ).first()
                return row is not None
            if dialect == "postgresql":
                target = name if persistent else f"pg_temp.{name}"
                return bool(
                    conn.execute(
                        text("SELECT to_regclass(:target) IS NOT NULL"),
                        {"target": target},
                    ).scalar()
                )
            return inspect(conn).has_table(name)

    # ----------------------------------
    # Build
    # ----------------------------------
    def _build(self, scheme: Scheme, cache: Table) -> None:
        self.logger.log_scheme(scheme.id, f"Building profile cache {cache.name}", "INFO")  # noqa E501
        try:
            source = self.source.handle_for(scheme)
            source_table = self.source.table_for(scheme)
        except DatabaseConnectionException as e:
            self.logger.log_scheme(scheme.id, "Can't create temporary table", "ERROR")  # noqa E501
            raise CacheBuildException(
                "No scheme database available", scheme_id=scheme.id
            ) from e

        with self.local.locked() as conn:
            try:
                cache.create(conn)
                rows = self._bulk_load(
                    conn, cache, self._read_profiles(source, source_table)
                )
                self._normalize_missing(conn, cache)
                self._create_indices(conn, cache, scheme)
                conn.commit()
            except BaseException as e:
                self._abort(conn, cache)
                if isinstance(e, (SQLAlchemyError, DatabaseConnectionException)):
                    self.logger.log_scheme(
                        scheme.id, f"Can't put data into {cache.name}: {e}", "ERROR"  # noqa E501
                    )
                    raise CacheBuildException(
                        f"Can't put data into {cache.name}", scheme_id=scheme.id
                    ) from e
                raise

        self.logger.log_scheme(
            scheme.id, f"Cached {rows} profiles in {cache.name}", "INFO"
        )

    def _abort(self, conn, cache: Table) -> None:
        try:
            conn.rollback()
            # SQLite runs DDL outside the rolled-back transaction
            cache.drop(conn, checkfirst=True)
            conn.commit()
        except SQLAlchemyError as e:
            self.logger.log(f"Can't discard {cache.name}: {e}", "ERROR")

    def _read_profiles(self, source, source_table) -> Iterator[Sequence]:
        stmt = select(*source_table.columns)
        chunk = self.settings.copy_chunk_size
        if source is self.local:
            # Same connection as the insert side, so read everything first
            rows = source.connection.execute(stmt).fetchall()
            yield from rows
            return
        with source.locked() as conn:
            try:
                result = conn.execution_options(stream_results=True).execute(stmt)  # noqa E501
                for partition in result.partitions(chunk):
                    yield from partition
            except SQLAlchemyError as e:
                raise DatabaseConnectionException(
                    f"Can't read profiles from {source_table.name}"
                ) from e

    @staticmethod
    def _clean(value):
        if value is None or value == "":
            return None
        return value

    def _bulk_load(self, conn, cache: Table, rows: Iterable[Sequence]) -> int:
        columns = [c.name for c in cache.columns]
        driver = getattr(conn.dialect, "driver", "")
        if conn.dialect.name == "postgresql" and driver == "psycopg2":
            return self._copy_load(conn, cache, columns, rows)

        total = 0
        batch = []
        for row in rows:
            batch.append({c: self._clean(v) for c, v in zip(columns, row)})
            if len(batch) >= self.settings.copy_chunk_size:
                conn.execute(cache.insert(), batch)
                total += len(batch)
                batch = []
        if batch:
            conn.execute(cache.insert(), batch)
            total += len(batch)
        return total

    @staticmethod
    def _copy_value(value) -> str:
        if value is None or value == "":
            return "\\N"
        return (
            str(value)
            .replace("\\", "\\\\")
            .replace("\t", "\\t")
            .replace("\n", "\\n")
            .replace("\r", "\\r")
        )

    def _copy_load(self, conn, cache: Table, columns, rows) -> int:
        """COPY ... FROM STDIN through the psycopg2 cursor, one chunk at a time."""
        preparer = conn.dialect.identifier_preparer
        column_list = ",".join(preparer.quote(c) for c in columns)
        sql = f"COPY {preparer.quote(cache.name)} ({column_list}) FROM STDIN"
        cursor = conn.connection.dbapi_connection.cursor()
        total = 0
        try:
            buffer = io.StringIO()
            pending = 0
            for row in rows:
                buffer.write("\t".join(self._copy_value(v) for v in row) + "\n")
                pending += 1
                if pending >= self.settings.copy_chunk_size:
                    buffer.seek(0)
                    cursor.copy_expert(sql, buffer)
                    total += pending
                    buffer, pending = io.StringIO(), 0
            if pending:
                buffer.seek(0)
                cursor.copy_expert(sql, buffer)
                total += pending
        finally:
            cursor.close()
        return total

    def _normalize_missing(self, conn, cache: Table) -> None:
        # Old style profile databases stored null values as '-999'
        for col in cache.columns:
            legacy = (
                int(LEGACY_MISSING_VALUE)
                if isinstance(col.type, Integer)
                else LEGACY_MISSING_VALUE
            )
            conn.execute(
                cache.update().where(col == legacy).values({col.name: None})
            )

    def _create_indices(self, conn, cache: Table, scheme: Scheme) -> None:
        locus_columns = [cache.c[locus.cache_column] for locus in scheme.loci]
        groups = chunk_columns(locus_columns, self.settings.max_columns_per_index)  # noqa E501
        for n, group in enumerate(groups, start=1):
            Index(f"i_{cache.name}_{n}", *group).create(conn)
        for f in scheme.fields:
            col = cache.c[f.cache_column]
            name = sanitize_identifier(f"i_{cache.name}_{f.cache_column}")
            if f.value_type is ValueType.INTEGER:
                Index(name, col).create(conn)
            else:
                Index(name, func.upper(col)).create(conn)
