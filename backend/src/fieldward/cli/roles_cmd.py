"""Role CLI commands."""

import click

from fieldward.auth.roles import DatabaseRoleSource, RoleHierarchyService, YamlRoleSource
from fieldward.bootstrap import default_role_source, open_store
from fieldward.errors import ConfigurationError


@click.group()
def roles():
    """Role hierarchy commands."""
    pass


@roles.command("list")
@click.option(
    "--source",
    type=click.Choice(["auto", "db", "yaml"]),
    default="auto",
    show_default=True,
    help="Where to read roles from. auto tries the database, then roles.yaml.",
)
@click.pass_obj
def list_cmd(settings, source: str):
    """Print the role hierarchy, lowest privilege first."""
    store = None
    try:
        sqlite_path = settings.database.sqlite_path
        # An absent SQLite file is never created just to list roles
        database_missing = sqlite_path is not None and not sqlite_path.exists()
        if source == "db" and database_missing:
            raise ConfigurationError(f"Database not found at {sqlite_path}")

        if source == "yaml" or database_missing:
            role_source = YamlRoleSource(settings.metadata_path / "roles.yaml")
        else:
            store = open_store(settings, create_tables=False)
            if source == "db":
                role_source = DatabaseRoleSource(store)
            else:
                role_source = default_role_source(settings, store)

        hierarchy = RoleHierarchyService(role_source).hierarchy
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        raise SystemExit(1)
    finally:
        if store is not None:
            store.dispose()

    for rank, record in enumerate(hierarchy.records):
        description = f"  {record.description}" if record.description else ""
        click.echo(f"{rank}  {record.name:<12} priority={record.priority}{description}")
