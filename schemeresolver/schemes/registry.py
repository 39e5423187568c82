import threading
import time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import (
    Field,
    Locus,
    Scheme,
    StoreDescriptor,
    ValueType,
)
from schemeresolver.core.exceptions import (
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.db.models import (
    LocusModel,
    SchemeField,
    SchemeMember,
    SchemeModel,
)
from schemeresolver.utils.config import Settings
from schemeresolver.utils.logger import Logger


def _is_int(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if not isinstance(value, str):
        return False
    try:
        int(value)
    except ValueError:
        return False
    return True


class SchemeRegistry:
    """
    Scheme metadata provider.

    The first request for a scheme reads its row, members and fields from the
    local store; later requests are served from memory. Entries never expire
    unless ``metadata_ttl`` is configured, and ``invalidate`` drops them on
    demand.
    """

    def __init__(self, db, settings: Optional[Settings] = None, clock=None):
        self.db = db
        self.settings = settings or Settings()
        self.logger = Logger()
        self._clock = clock or time.monotonic
        self._schemes: Dict[int, Tuple[Optional[Scheme], float]] = {}
        self._lock = threading.RLock()

    # ----------------------------------
    # Lookups
    # ----------------------------------
    def get_scheme(self, scheme_id) -> Optional[Scheme]:
        """Return the scheme, or None when the id is not a known scheme."""
        if not _is_int(scheme_id):
            return None
        scheme_id = int(scheme_id)
        with self._lock:
            cached = self._schemes.get(scheme_id)
            if cached is not None and not self._expired(cached[1]):
                return cached[0]
            scheme = self._load(scheme_id)
            self._schemes[scheme_id] = (scheme, self._clock())
            return scheme

    def scheme_exists(self, scheme_id) -> bool:
        return self.get_scheme(scheme_id) is not None

    def get_scheme_loci(self, scheme_id) -> List[Locus]:
        scheme = self.get_scheme(scheme_id)
        return list(scheme.loci) if scheme else []

    def get_scheme_fields(self, scheme_id) -> List[Field]:
        scheme = self.get_scheme(scheme_id)
        return list(scheme.fields) if scheme else []

    def get_primary_key(self, scheme_id) -> Optional[str]:
        scheme = self.get_scheme(scheme_id)
        return scheme.primary_key if scheme else None

    def get_scheme_list(self, with_pk: bool = False) -> List[dict]:
        """
        List schemes that have at least one locus, in display order.

        With ``with_pk`` only schemes that define a primary key field are
        returned.
        """
        stmt = (
            select(SchemeModel.id, SchemeModel.description)
            .where(SchemeModel.id.in_(select(SchemeMember.scheme_id)))
            .order_by(SchemeModel.display_order, SchemeModel.description)
        )
        if with_pk:
            stmt = stmt.where(
                SchemeModel.id.in_(
                    select(SchemeField.scheme_id).where(
                        SchemeField.primary_key.is_(True)
                    )
                )
            )
        try:
            with self.db.get_session() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as e:
            msg = "Can not read scheme list from local store"
            self.logger.log(f"{msg}: {e}", "ERROR")
            raise DatabaseConnectionException(msg) from e
        return [{"id": r.id, "description": r.description} for r in rows]

    def invalidate(self, scheme_id=None):
        """Forget cached metadata for one scheme, or for all of them."""
        with self._lock:
            if scheme_id is None:
                self._schemes.clear()
            else:
                self._schemes.pop(int(scheme_id), None)

    def validate(self, scheme: Scheme) -> None:
        """
        Check the scheme can be resolved at all.

        Raises DatabaseConfigurationException when there is no primary key,
        no loci, or two loci/fields end up on the same cache column.
        """
        if not scheme.loci:
            raise DatabaseConfigurationException(
                "Scheme has no loci", scheme_id=scheme.id
            )
        if not scheme.primary_key:
            raise DatabaseConfigurationException(
                "No primary key defined for scheme", scheme_id=scheme.id
            )
        seen = {}
        columns = [(f.name, f.cache_column) for f in scheme.fields]
        columns += [(locus.name, locus.cache_column) for locus in scheme.loci]
        for name, column in columns:
            key = column.lower()
            if key in seen:
                raise DatabaseConfigurationException(
                    f"'{name}' and '{seen[key]}' both map to column '{column}'",  # noqa E501
                    scheme_id=scheme.id,
                )
            seen[key] = name

    # ----------------------------------
    # Loading
    # ----------------------------------
    def _expired(self, loaded_at: float) -> bool:
        ttl = self.settings.metadata_ttl
        return ttl is not None and self._clock() - loaded_at > ttl

    def _load(self, scheme_id: int) -> Optional[Scheme]:
        try:
            with self.db.get_session() as session:
                row = session.get(SchemeModel, scheme_id)
                if row is None:
                    self.logger.log(f"Scheme {scheme_id} not found", "DEBUG")
                    return None
                members = session.execute(
                    select(SchemeMember, LocusModel.allele_id_format)
                    .outerjoin(LocusModel, LocusModel.id == SchemeMember.locus)
                    .where(SchemeMember.scheme_id == scheme_id)
                    .order_by(SchemeMember.field_order, SchemeMember.locus)
                ).all()
                field_rows = session.execute(
                    select(SchemeField)
                    .where(SchemeField.scheme_id == scheme_id)
                    .order_by(SchemeField.field_order, SchemeField.field)
                ).scalars().all()
                scheme = self._build_scheme(row, members, field_rows)
        except SQLAlchemyError as e:
            msg = "Can not read scheme metadata from local store"
            self.logger.log_scheme(scheme_id, f"{msg}: {e}", "ERROR")
            raise DatabaseConnectionException(msg, scheme_id=scheme_id) from e

        self.logger.log_scheme(
            scheme_id,
            f"Loaded metadata: {len(scheme.loci)} loci, {len(scheme.fields)} fields",  # noqa E501
            "DEBUG",
        )
        return scheme

    def _value_type(self, scheme_id, name, raw) -> ValueType:
        try:
            return ValueType(raw or ValueType.TEXT)
        except ValueError:
            self.logger.log_scheme(
                scheme_id,
                f"Unknown type '{raw}' for '{name}', treating as text",
                "WARNING",
            )
            return ValueType.TEXT

    def _build_scheme(self, row, members, field_rows) -> Scheme:
        allow_missing = bool(row.allow_missing_loci)
        loci = []
        for member, allele_id_format in members:
            if allele_id_format is None:
                self.logger.log_scheme(
                    row.id,
                    f"Locus '{member.locus}' has no locus definition, treating as text",  # noqa E501
                    "WARNING",
                )
            loci.append(
                Locus(
                    name=member.locus,
                    profile_name=member.profile_name or None,
                    value_type=self._value_type(
                        row.id, member.locus, allele_id_format
                    ),
                    allow_missing=allow_missing,
                )
            )

        fields = []
        primary_key = None
        for f in field_rows:
            if not f.field:
                self.logger.log_scheme(row.id, "Skipping unnamed field", "WARNING")
                continue
            fields.append(
                Field(
                    name=f.field,
                    value_type=self._value_type(row.id, f.field, f.type),
                    primary_key=bool(f.primary_key),
                )
            )
            if f.primary_key and primary_key is None:
                primary_key = f.field

        store = StoreDescriptor(
            dbase_name=row.dbase_name or None,
            driver=row.dbase_driver or "postgresql",
            host=row.dbase_host,
            port=row.dbase_port,
            user=row.dbase_user,
            password=row.dbase_password,
            table=row.dbase_table,
        )
        return Scheme(
            id=row.id,
            description=row.description or "",
            loci=tuple(loci),
            fields=tuple(fields),
            primary_key=primary_key,
            allow_missing_loci=allow_missing,
            max_missing=row.max_missing,
            store=store,
            use_temp_scheme_table=self.settings.use_temp_scheme_table,
        )
