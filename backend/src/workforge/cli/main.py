"""WorkForge CLI entry point."""

import click

from workforge.settings import WorkforgeSettings, configure_logging


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: WORKFORGE_LOG_LEVEL or INFO).")
@click.pass_context
def cli(ctx, log_level):
    """WorkForge: metadata-driven entity engine CLI."""
    settings = WorkforgeSettings.from_env()
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


# Register subcommand groups
from workforge.cli.db_cmd import db  # noqa: E402
from workforge.cli.metadata_cmd import metadata  # noqa: E402

cli.add_command(db)
cli.add_command(metadata)
