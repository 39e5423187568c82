import click
import pytest
from click.testing import CliRunner

from schemeresolver.core.data_models import Status
from schemeresolver.utils.main_cli import main, parse_designation


@pytest.fixture
def runner(tmp_path, monkeypatch):
    # Keep configuration lookups away from the developer's own file
    monkeypatch.chdir(tmp_path)
    return CliRunner()


def test_parse_designation():
    d = parse_designation("adk:4:provisional")
    assert (d.locus, d.allele_id, d.status) == ("adk", "4", Status.PROVISIONAL)
    assert parse_designation("abcZ:1").status is Status.CONFIRMED


@pytest.mark.parametrize("value", ["adk", "adk:", ":4", "adk:4:maybe", "a:b:c:d"])  # noqa: E501
def test_parse_designation_rejects(value):
    with pytest.raises(click.BadParameter):
        parse_designation(value)


def test_db_create(runner, tmp_path):
    uri = f"sqlite:///{tmp_path / 'cli.sqlite'}"

    result = runner.invoke(main, ["--db-uri", uri, "db", "create"])

    assert result.exit_code == 0, result.output
    assert "Created" in result.output
    again = runner.invoke(main, ["--db-uri", uri, "db", "create"])
    assert "already exists" in again.output


def test_scheme_list(runner, local_db):
    result = runner.invoke(main, ["--db-uri", local_db.db_uri, "scheme", "list"])

    assert result.exit_code == 0, result.output
    assert "MLST" in result.output
    assert "cgMLST" in result.output


def test_scheme_info(runner, local_db):
    result = runner.invoke(
        main, ["--db-uri", local_db.db_uri, "scheme", "info", "2"]
    )

    assert result.exit_code == 0, result.output
    assert "Primary key: cgST" in result.output
    assert "pgm'" in result.output


def test_scheme_info_unknown(runner, local_db):
    result = runner.invoke(
        main, ["--db-uri", local_db.db_uri, "scheme", "info", "42"]
    )

    assert result.exit_code != 0
    assert "not found" in result.output


def test_resolve(runner, local_db):
    result = runner.invoke(
        main,
        [
            "--db-uri",
            local_db.db_uri,
            "resolve",
            "1",
            "abcZ:1",
            "adk:1",
            "adk:2:provisional",
            "aroE:1",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "CC1" in result.output
    assert "provisional" in result.output


def test_resolve_without_match(runner, local_db):
    result = runner.invoke(
        main,
        ["--db-uri", local_db.db_uri, "resolve", "1", "abcZ:9", "adk:9", "aroE:9"],  # noqa: E501
    )

    assert result.exit_code == 0
    assert "No matching profiles" in result.output


def test_resolve_reports_errors(runner, local_db):
    result = runner.invoke(
        main, ["--db-uri", local_db.db_uri, "resolve", "4", "abcZ:1"]
    )

    assert result.exit_code != 0
    assert "connection error" in result.output


def test_isolate(runner, local_db):
    result = runner.invoke(
        main, ["--db-uri", local_db.db_uri, "isolate", "100", "1"]
    )

    assert result.exit_code == 0, result.output
    assert "CC1" in result.output


def test_cache_build(runner, local_db):
    result = runner.invoke(
        main, ["--db-uri", local_db.db_uri, "cache", "build", "1"]
    )

    assert result.exit_code == 0, result.output
    assert "temp_scheme_1" in result.output


def test_missing_db_uri(runner):
    result = runner.invoke(main, ["scheme", "list"])

    assert result.exit_code != 0
    assert "db-uri" in result.output


def test_missing_database_file(runner, tmp_path):
    result = runner.invoke(
        main, ["--db-uri", f"sqlite:///{tmp_path / 'absent.sqlite'}", "scheme", "list"]  # noqa: E501
    )

    assert result.exit_code != 0
    assert "Database not found" in result.output
