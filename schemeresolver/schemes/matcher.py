import threading
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import and_, bindparam, or_, select
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import (
    WILDCARD_MARKER,
    WILDCARD_VALUES,
    AlleleDesignation,
    Locus,
    ProfileRow,
    ResolvedFieldValues,
    Scheme,
    ValueType,
)
from schemeresolver.core.exceptions import (
    CacheBuildException,
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.schemes.aggregator import FieldValueAggregator
from schemeresolver.schemes.cache_builder import ProfileCacheBuilder
from schemeresolver.schemes.registry import SchemeRegistry
from schemeresolver.schemes.sources import ProfileSource
from schemeresolver.utils.config import Settings
from schemeresolver.utils.logger import Logger

Designations = Dict[str, List[AlleleDesignation]]


def normalize_designations(designations: Optional[Mapping]) -> Designations:
    """
    Accept AlleleDesignation objects or plain dicts per locus and return a
    locus -> [AlleleDesignation] mapping without empty entries.
    """
    normalized: Designations = {}
    for locus, entries in (designations or {}).items():
        if isinstance(entries, (AlleleDesignation, dict)):
            entries = [entries]
        converted = []
        for entry in entries or []:
            if isinstance(entry, dict):
                entry = AlleleDesignation.from_dict({"locus": locus, **entry})
            converted.append(entry)
        if converted:
            normalized[locus] = converted
    return normalized


class QueryCache:
    """LRU of prepared statements keyed by scheme, target and query shape."""

    def __init__(self, maxsize: int = 256):
        self.maxsize = maxsize
        self._items: "OrderedDict[tuple, object]" = OrderedDict()
        self._lock = threading.Lock()

    def get_or_build(self, key: tuple, build):
        with self._lock:
            stmt = self._items.get(key)
            if stmt is not None:
                self._items.move_to_end(key)
                return stmt
        stmt = build()
        with self._lock:
            self._items[key] = stmt
            self._items.move_to_end(key)
            while len(self._items) > self.maxsize:
                self._items.popitem(last=False)
        return stmt

    def __len__(self):
        return len(self._items)

    def __contains__(self, key):
        return key in self._items

    def clear(self):
        with self._lock:
            self._items.clear()


class DesignationMatcher:
    """
    Finds the profiles of a scheme that agree with a set of allele calls.

    Each scheme locus contributes one predicate: the stored value equals any
    of the designated alleles (ambiguous calls are alternatives), or, when the
    scheme allows missing loci, the stored value is a wildcard. Predicates
    are ANDed. A locus with no designation constrains nothing when missing
    loci are allowed and makes the lookup indeterminate otherwise.

    The statement only depends on how many designations each locus has, so
    statements are cached by that count vector and reused across isolates.
    """

    def __init__(
        self,
        registry: SchemeRegistry,
        cache_builder: ProfileCacheBuilder,
        source: ProfileSource,
        settings: Settings = None,
        aggregator: FieldValueAggregator = None,
    ):
        self.registry = registry
        self.cache_builder = cache_builder
        self.source = source
        self.settings = settings or registry.settings
        self.aggregator = aggregator or FieldValueAggregator()
        self.logger = Logger()
        self.queries = QueryCache(self.settings.query_cache_size)

    # ----------------------------------
    # Public API
    # ----------------------------------
    def resolve(self, scheme_id, designations: Mapping) -> ResolvedFieldValues:
        designations = normalize_designations(designations)
        rows = self.match(scheme_id, designations)
        return self.aggregator.aggregate(rows, designations)

    def match(self, scheme_id, designations: Mapping) -> List[ProfileRow]:
        scheme = self.registry.get_scheme(scheme_id)
        if scheme is None:
            raise DatabaseConfigurationException(
                "Unknown scheme", scheme_id=scheme_id
            )
        self.registry.validate(scheme)
        designations = normalize_designations(designations)

        shape = self.query_shape(scheme, designations)
        if shape is None:
            return []

        handle, table, columns, cached = self.lookup_target(scheme)
        key = (scheme.id, table.name, cached, shape)
        stmt = self.queries.get_or_build(
            key, lambda: self._statement(scheme, table, columns, shape, cached)
        )
        params = self._params(scheme, designations, shape)
        return self._execute(scheme, handle, stmt, params)

    def query_shape(
        self, scheme: Scheme, designations: Designations
    ) -> Optional[Tuple[int, ...]]:
        """
        Designation count per scheme locus, or None when the lookup is
        indeterminate: nothing designated, or a required locus missing.
        """
        shape = tuple(len(designations.get(locus.name, [])) for locus in scheme.loci)  # noqa E501
        if not any(shape):
            return None
        missing = shape.count(0)
        if missing and not scheme.allow_missing_loci:
            self.logger.log_scheme(
                scheme.id, f"{missing} required loci without designations", "DEBUG"  # noqa E501
            )
            return None
        if scheme.max_missing is not None and missing > scheme.max_missing:
            self.logger.log_scheme(
                scheme.id,
                f"{missing} loci missing, more than the {scheme.max_missing} allowed",  # noqa E501
                "DEBUG",
            )
            return None
        return shape

    # ----------------------------------
    # Query construction
    # ----------------------------------
    def lookup_target(self, scheme: Scheme):
        """
        Pick the cache table when caching is on and it can be built, otherwise
        the scheme's own profile table. Returns the connection handle, the
        table, a name -> column lookup for fields and loci, and whether the
        table is a cache.
        """
        if scheme.use_temp_scheme_table:
            try:
                cache = self.cache_builder.ensure_cache(scheme.id)
                table = cache.table
                columns = {f.name: table.c[f.cache_column] for f in scheme.fields}
                columns.update(
                    {locus.name: table.c[locus.cache_column] for locus in scheme.loci}  # noqa E501
                )
                return self.source.local_db.handle, table, columns, True
            except CacheBuildException as e:
                self.logger.log_scheme(
                    scheme.id,
                    f"Profile cache unavailable, querying scheme database: {e}",
                    "ERROR",
                )

        handle = self.source.handle_for(scheme)
        table = self.source.table_for(scheme)
        columns = {f.name: table.c[f.name] for f in scheme.fields}
        columns.update(
            {locus.name: table.c[locus.profile_column] for locus in scheme.loci}
        )
        return handle, table, columns, False

    def _wildcard_term(self, col, cached: bool):
        if cached:
            # Legacy '-999' values were already nulled while caching
            return or_(col == WILDCARD_MARKER, col.is_(None))
        return or_(col.in_(list(WILDCARD_VALUES)), col.is_(None))

    def _statement(self, scheme: Scheme, table, columns, shape: Sequence[int], cached: bool):  # noqa E501
        terms = []
        for i, (locus, count) in enumerate(zip(scheme.loci, shape)):
            col = columns[locus.name]
            alternatives = [col == bindparam(f"l{i}_{j}") for j in range(count)]
            if scheme.allow_missing_loci:
                if count == 0 and self.settings.missing_locus_policy == "wildcard":  # noqa E501
                    continue
                alternatives.append(self._wildcard_term(col, cached))
            terms.append(or_(*alternatives))

        self.logger.log_scheme(
            scheme.id, f"Prepared lookup on {table.name} for shape {tuple(shape)}", "DEBUG"  # noqa E501
        )
        selected = [columns[f.name] for f in scheme.fields]
        selected += [columns[locus.name] for locus in scheme.loci]
        return select(*selected).where(and_(*terms))

    @staticmethod
    def _bind_value(locus: Locus, allele_id: str):
        if locus.value_type is ValueType.INTEGER and not locus.allow_missing:
            # Non-numeric ids can never match an integer column
            try:
                return int(allele_id)
            except (TypeError, ValueError):
                return None
        return allele_id

    def _params(self, scheme: Scheme, designations: Designations, shape) -> dict:
        params = {}
        for i, (locus, count) in enumerate(zip(scheme.loci, shape)):
            for j, designation in enumerate(designations.get(locus.name, [])[:count]):  # noqa E501
                params[f"l{i}_{j}"] = self._bind_value(locus, designation.allele_id)  # noqa E501
        return params

    def _execute(self, scheme: Scheme, handle, stmt, params) -> List[ProfileRow]:
        field_count = len(scheme.fields)
        with handle.locked() as conn:
            try:
                rows = conn.execute(stmt, params).fetchall()
            except SQLAlchemyError as e:
                conn.rollback()
                self.logger.log_scheme(scheme.id, f"Profile lookup failed: {e}", "ERROR")  # noqa E501
                raise DatabaseConnectionException(
                    "Profile lookup failed", scheme_id=scheme.id
                ) from e
        return [
            ProfileRow(
                fields={
                    f.name: row[k] for k, f in enumerate(scheme.fields)
                },
                loci={
                    locus.name: row[field_count + k]
                    for k, locus in enumerate(scheme.loci)
                },
            )
            for row in rows
        ]
