"""
metadata/validator.py: validation for WorkForge entity YAML files.

Two passes per file:

1. Structural: the document is checked against ``schemas/entity.schema.json``
   (JSON Schema Draft 2020-12).
2. Semantic: a structurally valid document is resolved and cross-checked
   (allow-listed fields exist, default sort is sortable, default includes name
   belongsTo relationships, computed entities declare a prefix, ...).

Usage:
    from workforge.metadata.validator import validate_metadata_dir

    issues = validate_metadata_dir(Path("metadata"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from workforge.metadata.loader import EntityMetadata, MetadataLoader
from workforge.security.rls import supported_policies
from workforge.security.roles import ROLE_HIERARCHY

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"
_ENTITY_SCHEMA = "entity.schema.json"


@dataclass
class ValidationIssue:
    """A single validation finding for a metadata YAML file."""

    file: Path
    message: str
    path: str = ""          # location within the document, e.g. "fields/email"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        return f"[{self.severity.upper()}] {self.file}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    schema_path = _SCHEMAS_DIR / name
    with schema_path.open() as fh:
        return json.load(fh)


def _json_path(error: ValidationError) -> str:
    """Convert a jsonschema ValidationError path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


def _check_semantics(yaml_path: Path, entity: EntityMetadata) -> list[ValidationIssue]:
    """Cross-field checks that JSON Schema cannot express."""
    issues: list[ValidationIssue] = []

    def error(message: str, path: str = "") -> None:
        issues.append(ValidationIssue(file=yaml_path, message=message, path=path))

    def warning(message: str, path: str = "") -> None:
        issues.append(
            ValidationIssue(file=yaml_path, message=message, path=path, severity="warning")
        )

    fields = entity.fields

    if entity.primary_key not in fields:
        error(f"Primary key '{entity.primary_key}' is not a field", "primaryKey")
    if entity.identity_field not in fields:
        error(f"Identity field '{entity.identity_field}' is not a field", "identityField")
    if entity.display_field and entity.display_field not in fields:
        error(f"Display field '{entity.display_field}' is not a field", "displayField")

    for list_name, names in (
        ("searchableFields", entity.searchable_fields),
        ("filterableFields", entity.filterable_fields),
        ("sortableFields", entity.sortable_fields),
        ("requiredFields", entity.required_fields),
        ("immutableFields", entity.immutable_fields),
    ):
        for name in names:
            if name not in fields:
                error(f"Unknown field '{name}'", list_name)

    sort_field = entity.default_sort.field
    if sort_field not in entity.sortable_fields and sort_field != entity.primary_key:
        error(f"Default sort field '{sort_field}' is not sortable", "defaultSort/field")

    for rel in entity.relationships.values():
        if rel.type == "belongsTo" and rel.foreign_key not in fields:
            error(
                f"Foreign key '{rel.foreign_key}' is not a field",
                f"relationships/{rel.name}/foreignKey",
            )

    for include in entity.default_includes:
        rel = entity.relationships.get(include)
        if rel is None:
            error(f"Default include '{include}' is not a relationship", "defaultIncludes")
        elif rel.type != "belongsTo":
            error(f"Default include '{include}' is not a belongsTo relationship", "defaultIncludes")

    if entity.is_computed:
        if not entity.identifier_prefix:
            error("Computed entities must declare identifierPrefix", "identifierPrefix")
        if entity.identity_field == entity.primary_key:
            error("Computed entities need an identity field distinct from the primary key",
                  "identityField")

    protection = entity.system_protected
    if protection:
        for name in protection.immutable_fields:
            if name not in fields:
                error(f"Unknown field '{name}'", "systemProtected/immutableFields")
        if entity.protection_field not in fields:
            error(
                f"Protected-by field '{entity.protection_field}' is not a field",
                "systemProtected/protectedByField",
            )

    policies = set(supported_policies())
    for role, policy in entity.rls_policy.items():
        if role not in ROLE_HIERARCHY:
            warning(f"Unknown role '{role}'", f"rlsPolicy/{role}")
        if policy not in policies:
            error(f"Unsupported RLS policy '{policy}'", f"rlsPolicy/{role}")

    for name, definition in fields.items():
        if definition.type == "enum" and definition.values and definition.default is not None:
            if definition.default not in definition.values:
                error(f"Default '{definition.default}' is not an allowed value",
                      f"fields/{name}/default")
        if definition.access is None:
            # Undeclared fields are readable by every role
            warning("No access levels declared; field is visible to all roles",
                    f"fields/{name}")

    return issues


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_yaml_file(
    yaml_path: Path,
    *,
    validator: Draft202012Validator | None = None,
) -> list[ValidationIssue]:
    """
    Validate a single entity YAML file.

    Args:
        yaml_path: Path to the YAML file to validate.
        validator: Pre-built schema validator.  Built automatically if omitted.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    # 1. Parse YAML
    try:
        with yaml_path.open() as fh:
            doc = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if doc is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    # 2. Structural validation
    if validator is None:
        validator = Draft202012Validator(_load_schema(_ENTITY_SCHEMA))

    issues = [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path))
    ]
    if issues:
        return issues

    # 3. Semantic validation on the resolved entity
    entity = MetadataLoader().resolve_entity(doc)
    return _check_semantics(yaml_path, entity)


def validate_metadata_dir(
    metadata_dir: Path,
    *,
    strict: bool = False,
) -> list[ValidationIssue]:
    """
    Validate all entity YAML files under ``metadata_dir/entities``.

    Args:
        metadata_dir: Root metadata directory (contains ``entities/``).
        strict:       If ``True``, warnings are escalated to errors.

    Returns:
        A flat list of :class:`ValidationIssue` objects across all files.
        Empty list means all files are valid.
    """
    metadata_dir = Path(metadata_dir)
    if not metadata_dir.is_dir():
        return [
            ValidationIssue(
                file=metadata_dir,
                message=f"Metadata directory does not exist: {metadata_dir}",
            )
        ]

    try:
        validator = Draft202012Validator(_load_schema(_ENTITY_SCHEMA))
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            ValidationIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    all_issues: list[ValidationIssue] = []
    seen: dict[str, Path] = {}
    seen_tables: dict[str, Path] = {}

    target = metadata_dir / "entities"
    if not target.is_dir():
        return all_issues

    for yaml_file in sorted(target.glob("*.yaml")):
        file_issues = validate_yaml_file(yaml_file, validator=validator)

        if not any(i.severity == "error" for i in file_issues):
            with yaml_file.open() as fh:
                doc = yaml.safe_load(fh)
            key, table = doc["entity"], doc["tableName"]
            if key in seen:
                file_issues.append(ValidationIssue(
                    file=yaml_file,
                    message=f"Duplicate entity '{key}' (also in {seen[key].name})",
                    path="entity",
                ))
            if table in seen_tables:
                file_issues.append(ValidationIssue(
                    file=yaml_file,
                    message=f"Duplicate table '{table}' (also in {seen_tables[table].name})",
                    path="tableName",
                ))
            seen.setdefault(key, yaml_file)
            seen_tables.setdefault(table, yaml_file)

        if strict:
            for issue in file_issues:
                if issue.severity == "warning":
                    issue.severity = "error"
        all_issues.extend(file_issues)

    logger.debug("Validated %d entity files in %s", len(seen), target)
    return all_issues
