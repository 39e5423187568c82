from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from schemeresolver.core.data_models import AlleleDesignation
from schemeresolver.core.exceptions import (
    DatabaseConfigurationException,
    DatabaseConnectionException,
)
from schemeresolver.db.models import AlleleDesignationModel
from schemeresolver.schemes.registry import SchemeRegistry
from schemeresolver.utils.logger import Logger


class DesignationStore:
    """Reads isolate allele calls kept in the local store."""

    def __init__(self, db, registry: SchemeRegistry):
        self.db = db
        self.registry = registry
        self.logger = Logger()

    def get_scheme_allele_designations(
        self, isolate_id: int, scheme_id
    ) -> Dict[str, List[AlleleDesignation]]:
        """
        Designations of an isolate at the loci of a scheme.

        Calls are ordered by status, date entered and allele id, so confirmed
        calls come before provisional ones.
        """
        scheme = self.registry.get_scheme(scheme_id)
        if scheme is None:
            raise DatabaseConfigurationException(
                "Unknown scheme", scheme_id=scheme_id
            )
        stmt = (
            select(AlleleDesignationModel)
            .where(AlleleDesignationModel.isolate_id == isolate_id)
            .where(AlleleDesignationModel.locus.in_(scheme.locus_names))
            .order_by(
                AlleleDesignationModel.status,
                AlleleDesignationModel.date_entered,
                AlleleDesignationModel.allele_id,
            )
        )
        try:
            with self.db.get_session() as session:
                rows = session.execute(stmt).scalars().all()
        except SQLAlchemyError as e:
            msg = f"Can not read designations for isolate {isolate_id}"
            self.logger.log_scheme(scheme.id, f"{msg}: {e}", "ERROR")
            raise DatabaseConnectionException(msg, scheme_id=scheme.id) from e

        designations: Dict[str, List[AlleleDesignation]] = {}
        for row in rows:
            designations.setdefault(row.locus, []).append(
                AlleleDesignation(
                    locus=row.locus,
                    allele_id=row.allele_id,
                    status=row.status,
                    date_entered=row.date_entered,
                )
            )
        return designations
