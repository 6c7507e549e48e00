"""Database CLI commands."""

import click

from fieldward.auth.roles import YamlRoleSource
from fieldward.bootstrap import initialize_services
from fieldward.errors import ConfigurationError


@click.group()
def db():
    """Database commands."""
    pass


@db.command("init")
@click.option(
    "--seed-roles",
    is_flag=True,
    default=False,
    help="Insert the roles from metadata/roles.yaml into the roles table.",
)
@click.pass_obj
def init_cmd(settings, seed_roles: bool):
    """Create tables for every entity."""
    try:
        role_records = (
            YamlRoleSource(settings.metadata_path / "roles.yaml").load() if seed_roles else []
        )
        services = initialize_services(settings)
    except ConfigurationError as e:
        click.echo(click.style(f"Error: {e.message}", fg="red"), err=True)
        raise SystemExit(1)

    try:
        click.echo(f"Created tables: {', '.join(sorted(services.store.metadata.tables))}")

        if seed_roles:
            inserted = services.store.seed_roles(role_records)
            click.echo(f"Seeded {inserted} role(s)")
    finally:
        services.close()

    click.echo(click.style("Database initialized.", fg="green", bold=True))
