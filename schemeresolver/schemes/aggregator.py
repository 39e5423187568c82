from typing import Dict, Iterable, List

from schemeresolver.core.data_models import (
    AlleleDesignation,
    ProfileRow,
    ResolvedFieldValues,
    Status,
    is_wildcard,
)


class FieldValueAggregator:
    """Folds matching profile rows into field -> {value: status}."""

    def row_status(
        self,
        row: ProfileRow,
        designations: Dict[str, List[AlleleDesignation]],
    ) -> Status:
        """
        A row is confirmed only if every locus it constrains is backed by a
        confirmed designation for the stored allele. Wildcard loci are skipped.
        """
        for locus, value in row.loci.items():
            if is_wildcard(value):
                continue
            stored = str(value)
            if not any(
                d.is_confirmed and d.allele_id == stored
                for d in designations.get(locus, [])
            ):
                return Status.PROVISIONAL
        return Status.CONFIRMED

    def aggregate(
        self,
        rows: Iterable[ProfileRow],
        designations: Dict[str, List[AlleleDesignation]],
    ) -> ResolvedFieldValues:
        values = ResolvedFieldValues()
        for row in rows:
            status = self.row_status(row, designations)
            for field_name, value in row.fields.items():
                values.record(field_name, "" if value is None else value, status)
        return values
