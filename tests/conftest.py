# tests/conftest.py

import pytest
from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from schemeresolver.db.base import Base
from schemeresolver.db.database import Database
from schemeresolver.db.models import (
    AlleleDesignationModel,
    LocusModel,
    SchemeField,
    SchemeMember,
    SchemeModel,
)
from schemeresolver.schemes.aggregator import FieldValueAggregator
from schemeresolver.schemes.cache_builder import ProfileCacheBuilder
from schemeresolver.schemes.connector import DataConnector
from schemeresolver.schemes.matcher import DesignationMatcher
from schemeresolver.schemes.registry import SchemeRegistry
from schemeresolver.schemes.sources import ProfileSource
from schemeresolver.utils.config import Settings

# 👇 Force loading of models
import schemeresolver.db.models  # noqa: F401

# Strict seven-gene style scheme, integer alleles
MLST_PROFILES = [
    (1, "CC1", 1, 1, 1),
    (2, "CC1", 1, 2, 1),
    (3, "CC2", 2, 2, 3),
    (4, None, 3, 3, 3),
]

# Scheme allowing missing loci; 'N' and legacy '-999' stand for any allele
CG_PROFILES = [
    (10, "L1", "1", "1", "1"),
    (11, "L1", "1", "N", "2"),
    (12, "L2", "2", "2", "-999"),
    (13, "L3", "3", "3", "3"),
]


def build_profile_database(path):
    """File backed scheme database holding two profile tables."""
    engine = create_engine(f"sqlite:///{path}")
    metadata = MetaData()
    mlst = Table(
        "mlst_profiles",
        metadata,
        Column("ST", Integer, primary_key=True),
        Column("clonal_complex", Text),
        Column("abcZ", Integer),
        Column("adk", Integer),
        Column("aroE", Integer),
    )
    cg = Table(
        "cg_profiles",
        metadata,
        Column("cgST", Integer, primary_key=True),
        Column("lineage", Text),
        Column("gdh", Text),
        Column("pdhC", Text),
        Column("pgm'", Text),
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(
            mlst.insert(),
            [dict(zip(mlst.columns.keys(), row)) for row in MLST_PROFILES],
        )
        conn.execute(
            cg.insert(),
            [dict(zip(cg.columns.keys(), row)) for row in CG_PROFILES],
        )
    engine.dispose()
    return path


def seed_local_store(session, profile_path, missing_path):
    session.add_all(
        [
            LocusModel(id="abcZ", allele_id_format="integer"),
            LocusModel(id="adk", allele_id_format="integer"),
            LocusModel(id="aroE", allele_id_format="integer"),
            LocusModel(id="gdh", allele_id_format="text"),
            LocusModel(id="pdhC", allele_id_format="text"),
            LocusModel(id="pgm", allele_id_format="text"),
        ]
    )
    session.add_all(
        [
            SchemeModel(
                id=1,
                description="MLST",
                dbase_driver="sqlite",
                dbase_name=str(profile_path),
                dbase_table="mlst_profiles",
                allow_missing_loci=False,
                display_order=1,
            ),
            SchemeModel(
                id=2,
                description="cgMLST",
                dbase_driver="sqlite",
                dbase_name=str(profile_path),
                dbase_table="cg_profiles",
                allow_missing_loci=True,
                display_order=2,
            ),
            # No primary key field
            SchemeModel(
                id=3,
                description="Broken",
                dbase_driver="sqlite",
                dbase_name=str(profile_path),
                dbase_table="mlst_profiles",
                display_order=3,
            ),
            # Scheme database that does not exist
            SchemeModel(
                id=4,
                description="Offline",
                dbase_driver="sqlite",
                dbase_name=str(missing_path),
                dbase_table="mlst_profiles",
                display_order=4,
            ),
        ]
    )
    session.flush()
    members = [
        (1, "abcZ", None, 1),
        (1, "adk", None, 2),
        (1, "aroE", None, 3),
        (2, "gdh", None, 1),
        (2, "pdhC", None, 2),
        (2, "pgm", "pgm'", 3),
        (3, "abcZ", None, 1),
        (4, "abcZ", None, 1),
    ]
    session.add_all(
        [
            SchemeMember(
                scheme_id=s, locus=locus, profile_name=alias, field_order=order
            )
            for s, locus, alias, order in members
        ]
    )
    fields = [
        (1, "ST", "integer", True, 1),
        (1, "clonal_complex", "text", False, 2),
        (2, "cgST", "integer", True, 1),
        (2, "lineage", "text", False, 2),
        (3, "clonal_complex", "text", False, 1),
        (4, "ST", "integer", True, 1),
    ]
    session.add_all(
        [
            SchemeField(
                scheme_id=s,
                field=name,
                type=value_type,
                primary_key=pk,
                field_order=order,
            )
            for s, name, value_type, pk, order in fields
        ]
    )
    designations = [
        (100, "abcZ", "1", "confirmed"),
        (100, "adk", "2", "provisional"),
        (100, "adk", "1", "confirmed"),
        (100, "aroE", "1", "confirmed"),
        (100, "gdh", "9", "confirmed"),
    ]
    session.add_all(
        [
            AlleleDesignationModel(
                isolate_id=i, locus=locus, allele_id=allele, status=status
            )
            for i, locus, allele, status in designations
        ]
    )
    session.commit()


@pytest.fixture(scope="function")
def db_session():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # The tables will only be created if the models are loaded
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def profile_db_path(tmp_path):
    return build_profile_database(tmp_path / "profiles.sqlite")


@pytest.fixture(scope="function")
def local_db(tmp_path, profile_db_path):
    """
    Local store on disk with the ORM tables created and four schemes:
    1 strict, 2 allowing missing loci, 3 without primary key, 4 offline.
    """
    db = Database()
    db.db_uri = f"sqlite:///{tmp_path / 'local.sqlite'}"
    db.create_db()
    with db.get_session() as session:
        seed_local_store(session, profile_db_path, tmp_path / "missing.sqlite")

    yield db

    db.close()


@pytest.fixture(scope="function")
def make_engine(local_db):
    """Factory wiring the resolution components over ``local_db``."""
    connectors = []

    def _make(**settings_kwargs):
        settings = Settings(**settings_kwargs)
        registry = SchemeRegistry(local_db, settings)
        connector = DataConnector()
        connectors.append(connector)
        source = ProfileSource(connector, local_db)
        builder = ProfileCacheBuilder(registry, source, settings)
        matcher = DesignationMatcher(
            registry, builder, source, settings, FieldValueAggregator()
        )
        return matcher

    yield _make

    for connector in connectors:
        connector.close_all()


@pytest.fixture(scope="function")
def matcher(make_engine):
    return make_engine()
