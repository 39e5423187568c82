from typing import Callable, Mapping

from schemeresolver.core.data_models import (
    ErrorKind,
    ResolutionError,
    ResolvedFieldValues,
    Result,
)
from schemeresolver.core.exceptions import (
    CacheBuildException,
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.db.database import Database
from schemeresolver.schemes.aggregator import FieldValueAggregator
from schemeresolver.schemes.cache_builder import ProfileCacheBuilder
from schemeresolver.schemes.connector import DataConnector
from schemeresolver.schemes.designations import DesignationStore
from schemeresolver.schemes.matcher import DesignationMatcher
from schemeresolver.schemes.profiles import ProfileLookup
from schemeresolver.schemes.registry import SchemeRegistry
from schemeresolver.schemes.sources import ProfileSource
from schemeresolver.utils.config import Settings, load_settings
from schemeresolver.utils.logger import Logger


class SchemeResolver:
    """
    Entry point for scheme lookups against one local store.

    Query methods never raise for store problems: they return a ``Result``
    carrying either the value or a ``ResolutionError`` that says whether the
    connection, the scheme configuration or the profile cache was at fault.
    """

    def __init__(
        self,
        db_uri: str = None,
        settings: Settings = None,
        config_file: str = None,
    ):
        self.logger = Logger()
        self.settings = settings or load_settings(config_file)
        self.db_uri = db_uri or self.settings.db_uri
        self.db = None

        if self.db_uri:
            self.connect_db()

    def create_new_project(self, db_uri: str, overwrite=False, seed_file=None):
        """Create the local store schema, optionally seeded, and connect."""
        self.logger.log(f"Creating scheme database at {db_uri}", "INFO")
        self.close()
        self.db_uri = db_uri
        self.db = Database(
            connect_timeout=self.settings.connect_timeout,
            statement_timeout=self.settings.statement_timeout,
        )
        self.db.db_uri = db_uri
        created = self.db.create_db(overwrite=overwrite, seed_file=seed_file)
        self._setup_components()
        return created

    def connect_db(self, new_uri: str = None):
        if new_uri:
            self.close()
            self.db_uri = new_uri
        self.db = Database(
            self.db_uri,
            connect_timeout=self.settings.connect_timeout,
            statement_timeout=self.settings.statement_timeout,
        )
        self._setup_components()

    def _setup_components(self):
        self.registry = SchemeRegistry(self.db, self.settings)
        self.connector = DataConnector(
            connect_timeout=self.settings.connect_timeout,
            statement_timeout=self.settings.statement_timeout,
        )
        self.source = ProfileSource(self.connector, self.db)
        self.cache_builder = ProfileCacheBuilder(
            self.registry, self.source, self.settings
        )
        self.matcher = DesignationMatcher(
            self.registry,
            self.cache_builder,
            self.source,
            self.settings,
            FieldValueAggregator(),
        )
        self.profiles = ProfileLookup(self.matcher)
        self.designations = DesignationStore(self.db, self.registry)

    def _require_db(self):
        if not self.db:
            msg = "Database not connected. Use connect_db() first."
            self.logger.log(msg, "ERROR")
            raise RuntimeError(msg)

    def _run(self, scheme_id, action: Callable) -> Result:
        self._require_db()
        try:
            return Result(value=action())
        except CacheBuildException as e:
            kind = ErrorKind.CACHE_BUILD
            error = e
        except DatabaseConfigurationException as e:
            kind = ErrorKind.CONFIGURATION
            error = e
        except DatabaseConnectionException as e:
            kind = ErrorKind.CONNECTION
            error = e
        if scheme_id is None:
            self.logger.log(f"{kind.value} error: {error}", "WARNING")
        else:
            self.logger.log_scheme(scheme_id, f"{kind.value} error: {error}", "WARNING")  # noqa E501
        return Result(
            error=ResolutionError(
                kind=kind,
                message=error.message,
                scheme_id=error.scheme_id if error.scheme_id is not None else scheme_id,  # noqa E501
                exception=error,
            )
        )

    # ----------------------------------
    # Scheme metadata
    # ----------------------------------
    def get_scheme(self, scheme_id) -> Result:
        return self._run(scheme_id, lambda: self.registry.get_scheme(scheme_id))

    def scheme_exists(self, scheme_id) -> bool:
        return self._run(
            scheme_id, lambda: self.registry.scheme_exists(scheme_id)
        ).value_or(False)

    def get_scheme_list(self, with_pk: bool = False) -> Result:
        return self._run(None, lambda: self.registry.get_scheme_list(with_pk))

    # ----------------------------------
    # Resolution
    # ----------------------------------
    def resolve(self, scheme_id, designations: Mapping) -> Result:
        """Field values, with confidence, for an isolate's allele calls."""
        return self._run(
            scheme_id, lambda: self.matcher.resolve(scheme_id, designations)
        )

    def resolve_isolate(self, isolate_id: int, scheme_id) -> Result:
        """Resolve the designations stored locally for an isolate."""

        def action() -> ResolvedFieldValues:
            designations = self.designations.get_scheme_allele_designations(
                isolate_id, scheme_id
            )
            return self.matcher.resolve(scheme_id, designations)

        return self._run(scheme_id, action)

    def get_scheme_allele_designations(self, isolate_id: int, scheme_id) -> Result:  # noqa E501
        return self._run(
            scheme_id,
            lambda: self.designations.get_scheme_allele_designations(
                isolate_id, scheme_id
            ),
        )

    def resolve_profile(self, scheme_id, profile) -> Result:
        return self._run(
            scheme_id, lambda: self.profiles.resolve_profile(scheme_id, profile)
        )

    def get_profile_by_primary_key(self, scheme_id, profile_id) -> Result:
        return self._run(
            scheme_id,
            lambda: self.profiles.get_profile_by_primary_key(
                scheme_id, profile_id
            ),
        )

    def get_ambiguous_loci(self, scheme_id, profile_id) -> Result:
        return self._run(
            scheme_id,
            lambda: self.profiles.get_ambiguous_loci(scheme_id, profile_id),
        )

    def profile_match_counts(self, scheme_id, profile) -> Result:
        return self._run(
            scheme_id,
            lambda: self.profiles.profile_match_counts(scheme_id, profile),
        )

    # ----------------------------------
    # Profile caches
    # ----------------------------------
    def build_cache(self, scheme_id, persistent: bool = False) -> Result:
        if persistent:
            return self._run(
                scheme_id,
                lambda: self.cache_builder.build_persistent_cache(scheme_id),
            )
        return self._run(
            scheme_id, lambda: self.cache_builder.ensure_cache(scheme_id)
        )

    def drop_cache(self, scheme_id) -> Result:
        return self._run(
            scheme_id, lambda: self.cache_builder.drop_cache(scheme_id)
        )

    def close(self):
        if getattr(self, "connector", None) is not None:
            self.connector.close_all()
        if self.db is not None:
            self.db.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def __repr__(self):
        return f"<SchemeResolver(db_uri={self.db_uri})>"
