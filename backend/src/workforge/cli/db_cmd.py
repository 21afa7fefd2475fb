"""Database CLI commands (schema bootstrap)."""

import click
from sqlalchemy.exc import SQLAlchemyError

from workforge.cli.metadata_cmd import _load_registry
from workforge.persistence.config import create_db_engine
from workforge.persistence.schema import initialize_schema


@click.group()
def db():
    """Database commands."""
    pass


@db.command()
@click.pass_context
def init(ctx):
    """Create missing tables for every entity (DATABASE_URL)."""
    registry = _load_registry(ctx)
    config = ctx.obj.database
    try:
        engine = create_db_engine(config)
    except ValueError as e:
        click.echo(click.style(str(e), fg="red"), err=True)
        raise SystemExit(1)

    try:
        tables = initialize_schema(engine, registry)
    except SQLAlchemyError as e:
        click.echo(click.style(f"Schema initialization failed: {e}", fg="red"), err=True)
        raise SystemExit(1)
    finally:
        engine.dispose()

    for table in tables:
        click.echo(f"  ✓ {table}")
    click.echo(click.style(f"\n{len(tables)} tables ready.", fg="green", bold=True))
