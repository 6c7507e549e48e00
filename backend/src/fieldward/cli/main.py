"""fieldward CLI entry point."""

import logging

import click

from fieldward.config import Settings


@click.group()
@click.pass_context
def cli(ctx):
    """fieldward: metadata-driven access control and validation CLI."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


# Register subcommand groups
from fieldward.cli.db_cmd import db  # noqa: E402
from fieldward.cli.metadata_cmd import metadata  # noqa: E402
from fieldward.cli.roles_cmd import roles  # noqa: E402

cli.add_command(metadata)
cli.add_command(roles)
cli.add_command(db)
