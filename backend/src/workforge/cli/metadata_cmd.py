"""Metadata CLI commands: validate, list, show."""

import json
from dataclasses import fields, is_dataclass
from pathlib import Path
from typing import Any, Mapping

import click

from workforge.errors import MetadataError, UnknownEntity
from workforge.metadata.registry import MetadataRegistry
from workforge.metadata.validator import validate_metadata_dir


def _metadata_path(ctx: click.Context, path: Path | None) -> Path:
    if path is not None:
        return path
    return ctx.obj.metadata_path


def _load_registry(ctx: click.Context) -> MetadataRegistry:
    try:
        return MetadataRegistry.load(ctx.obj.metadata_path)
    except MetadataError as e:
        click.echo(click.style(f"Metadata is invalid: {e}", fg="red"), err=True)
        for issue in e.issues:
            click.echo(click.style(str(issue), fg="red"), err=True)
        raise SystemExit(1)


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
@click.option(
    "--path",
    "target_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Metadata directory to validate (contains entities/).",
)
@click.pass_context
def validate(ctx, strict: bool, target_path: Path | None):
    """Validate entity YAML files against the schema and each other."""
    metadata_path = _metadata_path(ctx, target_path)
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

    registry = MetadataRegistry.load(metadata_path)
    click.echo(f"\nLoaded {len(registry)} entities:")
    for name in registry.list_entities():
        entity = registry.get_metadata(name)
        click.echo(f"  ✓ {name} ({len(entity.fields)} fields, table: {entity.table_name})")

    click.echo(click.style("\nAll metadata is valid.", fg="green", bold=True))


@metadata.command("list")
@click.pass_context
def list_cmd(ctx):
    """List registered entities."""
    registry = _load_registry(ctx)
    for name in registry.list_entities():
        entity = registry.get_metadata(name)
        click.echo(f"{name}\t{entity.table_name}\t{entity.name_type}")


@metadata.command()
@click.argument("entity")
@click.pass_context
def show(ctx, entity: str):
    """Print one entity's resolved metadata as JSON."""
    registry = _load_registry(ctx)
    try:
        resolved = registry.get_metadata(entity)
    except UnknownEntity as e:
        click.echo(click.style(e.message, fg="red"), err=True)
        raise SystemExit(1)
    click.echo(json.dumps(_to_plain(resolved), indent=2, default=str))


def _to_plain(value: Any) -> Any:
    """Convert resolved metadata (dataclasses, read-only mappings, tuples) to JSON types."""
    if is_dataclass(value):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value
