import dataclasses

import click
import pandas as pd

from schemeresolver.core.data_models import AlleleDesignation, Status
from schemeresolver.core.exceptions import SchemeResolverError
from schemeresolver.resolver import SchemeResolver
from schemeresolver.utils.config import load_settings


def parse_designation(value: str) -> AlleleDesignation:
    """Parse ``locus:allele[:status]``; the status defaults to confirmed."""
    parts = value.split(":")
    if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
        raise click.BadParameter(
            f"'{value}' is not in the form locus:allele[:status]"
        )
    status = parts[2] if len(parts) == 3 else Status.CONFIRMED
    try:
        return AlleleDesignation(parts[0], parts[1], status)
    except ValueError:
        raise click.BadParameter(f"Unknown status in '{value}'")


def _resolver(ctx) -> SchemeResolver:
    settings = load_settings(ctx.obj.get("config"))
    db_uri = ctx.obj.get("db_uri") or settings.db_uri
    if not db_uri:
        raise click.UsageError("Missing --db-uri and no db_uri configured")
    try:
        return SchemeResolver(db_uri=db_uri, settings=settings)
    except SchemeResolverError as e:
        raise click.ClickException(str(e))


def _unwrap(result):
    if not result.ok:
        raise click.ClickException(
            f"{result.error.kind.value} error: {result.error.message}"
        )
    return result.value


# === Base group ===
@click.group()
@click.option("--db-uri", default=None, help="Local store URI")
@click.option(
    "--config",
    default=None,
    type=click.Path(dir_okay=False),
    help="Configuration file (default .schemeresolver.toml)",
)
@click.pass_context
def main(ctx, db_uri, config):
    """SchemeResolver CLI - allele profile lookups for typing schemes."""
    ctx.ensure_object(dict)
    ctx.obj["db_uri"] = db_uri
    ctx.obj["config"] = config


# === Subgroup: db ===
@main.group()
def db():
    """Local store operations."""
    pass


@db.command("create")
@click.option("--overwrite", is_flag=True, help="Overwrite if exists")
@click.option(
    "--seed",
    "seed_file",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with scheme metadata",
)
@click.pass_context
def create_db(ctx, overwrite, seed_file):
    """Create the local store tables."""
    settings = load_settings(ctx.obj.get("config"))
    db_uri = ctx.obj.get("db_uri") or settings.db_uri
    if not db_uri:
        raise click.UsageError("Missing --db-uri and no db_uri configured")
    resolver = SchemeResolver(settings=dataclasses.replace(settings, db_uri=None))  # noqa E501
    created = resolver.create_new_project(
        db_uri=db_uri, overwrite=overwrite, seed_file=seed_file
    )
    resolver.close()
    click.echo(f"Created {db_uri}" if created else f"{db_uri} already exists")


# === Subgroup: scheme ===
@main.group()
def scheme():
    """Inspect scheme metadata."""
    pass


@scheme.command("list")
@click.option("--with-pk", is_flag=True, help="Only schemes with a primary key")
@click.pass_context
def list_schemes(ctx, with_pk):
    """List schemes that have loci."""
    with _resolver(ctx) as resolver:
        schemes = _unwrap(resolver.get_scheme_list(with_pk=with_pk))
    if not schemes:
        click.echo("No schemes found")
        return
    click.echo(pd.DataFrame(schemes).to_string(index=False))


@scheme.command("info")
@click.argument("scheme_id", type=int)
@click.pass_context
def scheme_info(ctx, scheme_id):
    """Show the loci and fields of a scheme."""
    with _resolver(ctx) as resolver:
        info = _unwrap(resolver.get_scheme(scheme_id))
    if info is None:
        raise click.ClickException(f"Scheme {scheme_id} not found")

    click.echo(f"Scheme {info.id}: {info.description}")
    click.echo(f"Primary key: {info.primary_key or '-'}")
    click.echo(f"Missing loci allowed: {info.allow_missing_loci}")
    loci = pd.DataFrame(
        [
            {
                "locus": locus.name,
                "profile_name": locus.profile_column,
                "type": str(locus.value_type),
            }
            for locus in info.loci
        ]
    )
    click.echo(loci.to_string(index=False))
    if info.fields:
        fields = pd.DataFrame(
            [
                {
                    "field": f.name,
                    "type": str(f.value_type),
                    "primary_key": f.primary_key,
                }
                for f in info.fields
            ]
        )
        click.echo(fields.to_string(index=False))


# === Subgroup: cache ===
@main.group()
def cache():
    """Manage profile caches."""
    pass


@cache.command("build")
@click.argument("scheme_id", type=int)
@click.option(
    "--persistent",
    is_flag=True,
    help="Build the long-lived mv_scheme_<id> table",
)
@click.pass_context
def build_cache(ctx, scheme_id, persistent):
    """Build the profile cache of a scheme."""
    with _resolver(ctx) as resolver:
        handle = _unwrap(resolver.build_cache(scheme_id, persistent=persistent))
    click.echo(f"Profile cache {handle.name} ready")


# === Resolution ===
def _echo_values(values):
    if not values:
        click.echo("No matching profiles")
        return
    click.echo(values.to_dataframe().to_string(index=False))


@main.command("resolve")
@click.argument("scheme_id", type=int)
@click.argument("designations", nargs=-1, required=True)
@click.pass_context
def resolve(ctx, scheme_id, designations):
    """
    Resolve field values from allele calls given as locus:allele[:status].

    Repeat a locus to give an ambiguous call.
    """
    grouped = {}
    for value in designations:
        designation = parse_designation(value)
        grouped.setdefault(designation.locus, []).append(designation)
    with _resolver(ctx) as resolver:
        values = _unwrap(resolver.resolve(scheme_id, grouped))
    _echo_values(values)


@main.command("isolate")
@click.argument("isolate_id", type=int)
@click.argument("scheme_id", type=int)
@click.pass_context
def resolve_isolate(ctx, isolate_id, scheme_id):
    """Resolve field values from the designations stored for an isolate."""
    with _resolver(ctx) as resolver:
        values = _unwrap(resolver.resolve_isolate(isolate_id, scheme_id))
    _echo_values(values)


"""
schemeresolver --db-uri sqlite:///schemes.sqlite db create --seed schemes.json
schemeresolver --db-uri sqlite:///schemes.sqlite scheme list
schemeresolver --db-uri sqlite:///schemes.sqlite resolve 1 abcZ:1 adk:3 adk:4:provisional
"""
