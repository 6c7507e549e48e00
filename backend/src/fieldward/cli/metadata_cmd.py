"""Metadata CLI commands: validate and inspect field access."""

import click

from fieldward.auth.field_access import FieldAccessController
from fieldward.auth.roles import RoleHierarchyService, YamlRoleSource
from fieldward.errors import ConfigurationError
from fieldward.metadata.loader import OPERATIONS, MetadataLoader
from fieldward.metadata.validator import validate_metadata_dir


@click.group()
def metadata():
    """Metadata commands."""
    pass


@metadata.command()
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
@click.pass_obj
def validate(settings, strict: bool):
    """Validate metadata YAML files and role references."""
    metadata_path = settings.metadata_path
    if not metadata_path.exists():
        click.echo(f"Error: Metadata directory not found at {metadata_path}", err=True)
        raise SystemExit(1)

    issues = validate_metadata_dir(metadata_path, strict=strict)
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    loader = MetadataLoader(metadata_path)
    loader.load_all()
    entities = loader.list_entities()
    click.echo(f"\nLoaded {len(entities)} entities:")
    for name in sorted(entities):
        entity = loader.require_entity(name)
        suffix = f", identifier: {entity.identifier.prefix}" if entity.identifier else ""
        click.echo(f"  ✓ {name} ({len(entity.fields)} fields, table: {entity.table_name}{suffix})")

    click.echo(click.style("\nAll metadata is valid.", fg="green", bold=True))


@metadata.command("fields")
@click.argument("entity")
@click.option("--role", required=True, help="Role name to evaluate.")
@click.option(
    "--operation",
    type=click.Choice(OPERATIONS),
    default="read",
    show_default=True,
)
@click.pass_obj
def fields_cmd(settings, entity: str, role: str, operation: str):
    """Show which fields ROLE may touch on ENTITY for an operation."""
    try:
        loader = MetadataLoader(settings.metadata_path)
        loader.load_all()
        entity_meta = loader.require_entity(entity)
        roles = RoleHierarchyService(YamlRoleSource(settings.metadata_path / "roles.yaml"))
        allowed = FieldAccessController(roles).fields_for_operation(entity_meta, role, operation)
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        raise SystemExit(1)

    role_name = roles.normalize_role_name(role)
    if role_name not in roles.names:
        click.echo(click.style(f"Warning: unknown role '{role_name}'", fg="yellow"), err=True)

    click.echo(f"{entity} / {operation} / {role_name}: {len(allowed)} field(s)")
    for name in sorted(allowed):
        click.echo(f"  {name}")
