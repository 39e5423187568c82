import pytest
from sqlalchemy import Column, Integer, MetaData, Table

from schemeresolver.core.data_models import AlleleDesignation, Status
from schemeresolver.db.models import (
    LocusModel,
    SchemeField,
    SchemeMember,
    SchemeModel,
)


@pytest.fixture
def local_scheme(local_db):
    """Scheme 5 keeps its profiles in the local store itself."""
    profiles = Table(
        "local_profiles",
        MetaData(),
        Column("ST", Integer),
        Column("CC", Integer),
        Column("abc", Integer),
        Column("xyz", Integer),
    )
    profiles.create(local_db.engine)
    with local_db.engine.begin() as conn:
        conn.execute(
            profiles.insert(),
            [
                {"ST": 10, "CC": 1, "abc": 5, "xyz": 7},
                {"ST": 10, "CC": 1, "abc": 5, "xyz": 8},
                {"ST": 11, "CC": 2, "abc": 6, "xyz": 7},
            ],
        )
    with local_db.get_session() as session:
        session.add_all(
            [
                LocusModel(id="abc", allele_id_format="integer"),
                LocusModel(id="xyz", allele_id_format="integer"),
                SchemeModel(id=5, description="Local", dbase_table="local_profiles"),  # noqa: E501
            ]
        )
        session.flush()
        session.add_all(
            [
                SchemeMember(scheme_id=5, locus="abc", field_order=1),
                SchemeMember(scheme_id=5, locus="xyz", field_order=2),
                SchemeField(scheme_id=5, field="ST", type="integer", primary_key=True, field_order=1),  # noqa: E501
                SchemeField(scheme_id=5, field="CC", type="integer", field_order=2),  # noqa: E501
            ]
        )
        session.commit()
    return 5


@pytest.fixture(params=[True, False], ids=["cached", "direct"])
def local_matcher(request, make_engine, local_scheme):
    return make_engine(use_temp_scheme_table=request.param)


def test_round_trip(local_matcher):
    values = local_matcher.resolve(
        5,
        {
            "abc": [AlleleDesignation("abc", "5")],
            "xyz": [AlleleDesignation("xyz", "7")],
        },
    )

    assert values == {
        "ST": {10: Status.CONFIRMED},
        "CC": {1: Status.CONFIRMED},
    }


def test_mixed_confidence(local_matcher):
    values = local_matcher.resolve(
        5,
        {
            "abc": [AlleleDesignation("abc", "5", Status.CONFIRMED)],
            "xyz": [
                AlleleDesignation("xyz", "7", Status.PROVISIONAL),
                AlleleDesignation("xyz", "8", Status.CONFIRMED),
            ],
        },
    )

    assert values["ST"] == {10: Status.CONFIRMED}


def test_all_provisional(local_matcher):
    values = local_matcher.resolve(
        5,
        {
            "abc": [AlleleDesignation("abc", "6", Status.PROVISIONAL)],
            "xyz": [AlleleDesignation("xyz", "7")],
        },
    )

    assert values == {
        "ST": {11: Status.PROVISIONAL},
        "CC": {2: Status.PROVISIONAL},
    }


def test_local_scheme_cache_lives_on_local_store(make_engine, local_scheme):
    matcher = make_engine()

    cache = matcher.cache_builder.ensure_cache(local_scheme)

    assert cache.name == "temp_scheme_5"
    handle, table, _, cached = matcher.lookup_target(matcher.registry.get_scheme(5))  # noqa: E501
    assert cached is True
    assert table is cache.table
