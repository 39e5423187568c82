from typing import Dict, List, Mapping, Optional, Sequence, Set, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import (
    WILDCARD_MARKER,
    AlleleDesignation,
    Scheme,
    ValueType,
    is_wildcard,
)
from schemeresolver.core.exceptions import (
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.schemes.matcher import DesignationMatcher
from schemeresolver.utils.logger import Logger

Profile = Union[Sequence, Mapping[str, object]]


class ProfileLookup:
    """
    Queries on whole profiles rather than on isolate allele calls: fetch a
    profile by its primary key, resolve a complete profile to its field
    values, and score every stored profile against a query profile.
    """

    def __init__(self, matcher: DesignationMatcher):
        self.matcher = matcher
        self.registry = matcher.registry
        self.source = matcher.source
        self.logger = Logger()

    def _scheme(self, scheme_id) -> Scheme:
        scheme = self.registry.get_scheme(scheme_id)
        if scheme is None:
            raise DatabaseConfigurationException(
                "Unknown scheme", scheme_id=scheme_id
            )
        self.registry.validate(scheme)
        return scheme

    def _fetch(self, scheme: Scheme, stmt) -> list:
        handle = self.source.handle_for(scheme)
        with handle.locked() as conn:
            try:
                return conn.execute(stmt).fetchall()
            except SQLAlchemyError as e:
                conn.rollback()
                self.logger.log_scheme(scheme.id, f"Profile query failed: {e}", "ERROR")  # noqa E501
                raise DatabaseConnectionException(
                    "Profile query failed", scheme_id=scheme.id
                ) from e

    def get_profile_by_primary_key(self, scheme_id, profile_id) -> Optional[Dict[str, str]]:  # noqa E501
        """Locus -> stored allele for one profile, or None if there is none."""
        scheme = self._scheme(scheme_id)
        table = self.source.table_for(scheme)
        pk = scheme.get_field(scheme.primary_key)
        key = profile_id
        if pk is not None and pk.value_type is ValueType.INTEGER:
            try:
                key = int(profile_id)
            except (TypeError, ValueError):
                return None
        stmt = select(
            *[table.c[locus.profile_column] for locus in scheme.loci]
        ).where(table.c[scheme.primary_key] == key)
        rows = self._fetch(scheme, stmt)
        if not rows:
            return None
        return {
            locus.name: None if value is None else str(value)
            for locus, value in zip(scheme.loci, rows[0])
        }

    def get_ambiguous_loci(self, scheme_id, profile_id) -> Set[str]:
        """Loci the profile leaves open with the wildcard marker."""
        profile = self.get_profile_by_primary_key(scheme_id, profile_id) or {}
        return {
            locus for locus, value in profile.items() if value == WILDCARD_MARKER
        }

    def _as_mapping(self, scheme: Scheme, profile: Profile) -> Dict[str, object]:
        if isinstance(profile, Mapping):
            return {locus.name: profile.get(locus.name) for locus in scheme.loci}
        profile = list(profile)
        if len(profile) != len(scheme.loci):
            raise DatabaseConfigurationException(
                f"Profile has {len(profile)} values for {len(scheme.loci)} loci",  # noqa E501
                scheme_id=scheme.id,
            )
        return dict(zip(scheme.locus_names, profile))

    def resolve_profile(self, scheme_id, profile: Profile) -> Optional[Dict[str, object]]:  # noqa E501
        """
        Field values of the first profile matching one allele per locus.

        A None allele is left unconstrained when the scheme allows missing
        loci; otherwise the profile is indeterminate and None is returned.
        """
        scheme = self._scheme(scheme_id)
        alleles = self._as_mapping(scheme, profile)
        designations = {}
        for locus, allele in alleles.items():
            if allele is None or allele == "":
                if not scheme.allow_missing_loci:
                    return None
                continue
            designations[locus] = [AlleleDesignation(locus, allele)]
        rows = self.matcher.match(scheme.id, designations)
        return dict(rows[0].fields) if rows else None

    def profile_match_counts(self, scheme_id, profile: Profile) -> Dict[object, int]:  # noqa E501
        """
        Primary key -> number of loci at which each stored profile agrees
        with ``profile``. A wildcard in the stored profile counts as a match.
        """
        scheme = self._scheme(scheme_id)
        alleles = self._as_mapping(scheme, profile)
        handle, table, columns, _ = self.matcher.lookup_target(scheme)
        stmt = select(
            columns[scheme.primary_key],
            *[columns[locus.name] for locus in scheme.loci],
        )
        with handle.locked() as conn:
            try:
                rows = conn.execute(stmt).fetchall()
            except SQLAlchemyError as e:
                conn.rollback()
                raise DatabaseConnectionException(
                    "Profile query failed", scheme_id=scheme.id
                ) from e

        wanted: List[Optional[str]] = [
            None if alleles[name] is None else str(alleles[name])
            for name in scheme.locus_names
        ]
        counts = {}
        for row in rows:
            matches = 0
            for stored, allele in zip(row[1:], wanted):
                if is_wildcard(stored) or (
                    allele is not None and str(stored) == allele
                ):
                    matches += 1
            counts[row[0]] = matches
        return counts
