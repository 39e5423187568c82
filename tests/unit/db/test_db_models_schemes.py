def test_create_scheme_with_members_and_fields(db_session):
    from schemeresolver.db.models import (
        LocusModel,
        SchemeField,
        SchemeMember,
        SchemeModel,
    )

    db_session.add_all(
        [LocusModel(id="adk", allele_id_format="integer"), LocusModel(id="gdh")]
    )
    scheme = SchemeModel(id=1, description="MLST", dbase_table="profiles")
    scheme.members = [
        SchemeMember(locus="gdh", field_order=2),
        SchemeMember(locus="adk", field_order=1, profile_name="adk_1"),
    ]
    scheme.fields = [SchemeField(field="ST", type="integer", primary_key=True)]
    db_session.add(scheme)
    db_session.commit()

    result = db_session.query(SchemeModel).filter_by(id=1).first()
    assert result is not None
    assert [m.locus for m in result.members] == ["adk", "gdh"]
    assert result.members[0].profile_name == "adk_1"
    assert result.fields[0].primary_key is True
    assert result.allow_missing_loci is False


def test_locus_defaults_to_text(db_session):
    from schemeresolver.db.models import LocusModel

    db_session.add(LocusModel(id="pgm"))
    db_session.commit()

    result = db_session.query(LocusModel).filter_by(id="pgm").first()
    assert result.allele_id_format == "text"


def test_create_allele_designation(db_session):
    from schemeresolver.db.models import AlleleDesignationModel, LocusModel

    db_session.add(LocusModel(id="adk"))
    db_session.add(AlleleDesignationModel(isolate_id=9, locus="adk", allele_id="4"))  # noqa: E501
    db_session.commit()

    result = db_session.query(AlleleDesignationModel).filter_by(isolate_id=9).first()  # noqa: E501
    assert result.allele_id == "4"
    assert result.status == "confirmed"
    assert result.date_entered is not None
