from schemeresolver.core.data_models import AlleleDesignation, ProfileRow, Status
from schemeresolver.schemes.aggregator import FieldValueAggregator


def row(st, cc, **loci):
    return ProfileRow(fields={"ST": st, "clonal_complex": cc}, loci=loci)


DESIGNATIONS = {
    "abcZ": [AlleleDesignation("abcZ", "1")],
    "adk": [
        AlleleDesignation("adk", "1", Status.CONFIRMED),
        AlleleDesignation("adk", "2", Status.PROVISIONAL),
    ],
}


def test_row_confirmed_when_every_locus_confirmed():
    aggregator = FieldValueAggregator()

    assert aggregator.row_status(row(1, "CC1", abcZ=1, adk=1), DESIGNATIONS) is Status.CONFIRMED  # noqa: E501
    assert aggregator.row_status(row(2, "CC1", abcZ=1, adk=2), DESIGNATIONS) is Status.PROVISIONAL  # noqa: E501


def test_wildcard_loci_do_not_lower_confidence():
    aggregator = FieldValueAggregator()

    for marker in ("N", None, "-999", ""):
        status = aggregator.row_status(row(3, "CC1", abcZ=1, adk=marker), DESIGNATIONS)  # noqa: E501
        assert status is Status.CONFIRMED


def test_confirmed_value_survives_any_row_order():
    aggregator = FieldValueAggregator()
    rows = [row(1, "CC1", abcZ=1, adk=1), row(2, "CC1", abcZ=1, adk=2)]

    forward = aggregator.aggregate(rows, DESIGNATIONS)
    backward = aggregator.aggregate(list(reversed(rows)), DESIGNATIONS)

    for values in (forward, backward):
        assert values["clonal_complex"] == {"CC1": Status.CONFIRMED}
        assert values["ST"] == {1: Status.CONFIRMED, 2: Status.PROVISIONAL}


def test_null_field_values_are_empty_strings():
    values = FieldValueAggregator().aggregate(
        [row(4, None, abcZ=1, adk=1)], DESIGNATIONS
    )

    assert values["clonal_complex"] == {"": Status.CONFIRMED}


def test_no_rows_no_values():
    assert FieldValueAggregator().aggregate([], DESIGNATIONS) == {}
