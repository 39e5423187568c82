import datetime

import pytest

from schemeresolver.core.data_models import Status
from schemeresolver.core.exceptions import DatabaseConfigurationException
from schemeresolver.db.models import AlleleDesignationModel
from schemeresolver.schemes.designations import DesignationStore
from schemeresolver.schemes.registry import SchemeRegistry


@pytest.fixture
def store(local_db):
    return DesignationStore(local_db, SchemeRegistry(local_db))


def test_designations_limited_to_scheme_loci(store):
    designations = store.get_scheme_allele_designations(100, 1)

    assert set(designations) == {"abcZ", "adk", "aroE"}
    assert "gdh" not in designations


def test_designations_ordered_confirmed_first(store):
    adk = store.get_scheme_allele_designations(100, 1)["adk"]

    assert [(d.allele_id, d.status) for d in adk] == [
        ("1", Status.CONFIRMED),
        ("2", Status.PROVISIONAL),
    ]


def test_same_status_ordered_by_date_then_allele(store, local_db):
    early = datetime.datetime(2020, 1, 1)
    late = datetime.datetime(2021, 1, 1)
    with local_db.get_session() as session:
        session.add_all(
            [
                AlleleDesignationModel(isolate_id=200, locus="gdh", allele_id="5", date_entered=late),  # noqa: E501
                AlleleDesignationModel(isolate_id=200, locus="gdh", allele_id="7", date_entered=early),  # noqa: E501
                AlleleDesignationModel(isolate_id=200, locus="gdh", allele_id="3", date_entered=late),  # noqa: E501
            ]
        )
        session.commit()

    gdh = store.get_scheme_allele_designations(200, 2)["gdh"]

    assert [d.allele_id for d in gdh] == ["7", "3", "5"]


def test_isolate_without_designations(store):
    assert store.get_scheme_allele_designations(555, 1) == {}


def test_unknown_scheme(store):
    with pytest.raises(DatabaseConfigurationException):
        store.get_scheme_allele_designations(100, 42)
