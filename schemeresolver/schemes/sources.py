from sqlalchemy import column, table
from sqlalchemy.sql.expression import TableClause

from schemeresolver.core.data_models import Scheme
from schemeresolver.core.exceptions import DatabaseConfigurationException
from schemeresolver.schemes.connector import ConnectionHandle, DataConnector


class ProfileSource:
    """Locates a scheme's profile table: in its own database or locally."""

    def __init__(self, connector: DataConnector, local_db):
        self.connector = connector
        self.local_db = local_db

    def handle_for(self, scheme: Scheme) -> ConnectionHandle:
        if scheme.store.is_remote:
            return self.connector.get_connection(scheme.store)
        return self.local_db.handle

    def is_local(self, scheme: Scheme) -> bool:
        return not scheme.store.is_remote

    def table_for(self, scheme: Scheme) -> TableClause:
        """
        Lightweight table with the field columns followed by the locus
        columns, named as they are in the profile table itself.
        """
        if not scheme.store.table:
            raise DatabaseConfigurationException(
                "No profile table configured", scheme_id=scheme.id
            )
        columns = [column(f.name) for f in scheme.fields]
        columns += [column(locus.profile_column) for locus in scheme.loci]
        return table(scheme.store.table, *columns)
