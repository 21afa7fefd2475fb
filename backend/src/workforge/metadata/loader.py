"""Load and resolve entity metadata from YAML files.

Entity files use camelCase keys (``tableName``, ``filterableFields``) and are
resolved into frozen dataclasses with snake_case attributes. Every container on
the resolved model is immutable (tuples and read-only mappings) so one loaded
registry can be shared by reference for the life of the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from workforge.core.types import is_structured
from workforge.errors import MetadataError
from workforge.security.roles import FIELD_ACCESS_LEVELS, UNIVERSAL_FIELD_ACCESS

logger = logging.getLogger(__name__)

DEFAULT_METADATA_PATH = Path(__file__).parent

NAME_TYPES = ("human", "simple", "computed")

# Fields every entity carries; entity YAML may override their definitions
UNIVERSAL_FIELDS: dict[str, dict[str, Any]] = {
    "id": {"type": "integer", "readOnly": True},
    "is_active": {"type": "boolean", "default": True},
    "created_at": {"type": "timestamp", "readOnly": True},
    "updated_at": {"type": "timestamp", "readOnly": True},
    "status": {"type": "enum"},
}

# Never accepted from callers on create (``id`` is allowed for shared-PK entities)
SYSTEM_MANAGED_ON_CREATE = ("id", "created_at", "updated_at")

# Never changed by update, for any entity
UNIVERSAL_IMMUTABLES = ("id", "created_at")


def _frozen(mapping: Mapping | None) -> Mapping:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class FieldAccess:
    """Minimum role per operation on one field (``none`` = never)."""

    create: str = "none"
    read: str = "customer"
    update: str = "none"
    delete: str = "none"


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: str
    read_only: bool = False
    default: Any = None
    values: tuple[str, ...] | None = None  # enum values
    max_length: int | None = None
    access: FieldAccess | None = None

    @property
    def structured(self) -> bool:
        return is_structured(self.type)


@dataclass(frozen=True)
class RelationshipDefinition:
    """A relationship to another table.

    belongsTo relations are joined into reads when listed in defaultIncludes;
    hasMany/hasOne are descriptive only.
    """

    name: str
    type: str  # "belongsTo" | "hasMany" | "hasOne"
    table: str
    foreign_key: str
    fields: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class DependentDefinition:
    """Rows in another table removed before the parent row is deleted.

    A polymorphic dependent is keyed by ``(type column, value)`` plus the
    foreign key, e.g. audit rows keyed by resource type and resource id.
    """

    table: str
    foreign_key: str
    polymorphic_column: str | None = None
    polymorphic_value: str | None = None

    @property
    def is_polymorphic(self) -> bool:
        return self.polymorphic_column is not None


@dataclass(frozen=True)
class SortSpec:
    field: str
    order: str = "ASC"


@dataclass(frozen=True)
class SystemProtection:
    protected_values: tuple[Any, ...]
    immutable_fields: tuple[str, ...] = ()
    protected_by_field: str | None = None
    prevent_delete: bool = False


@dataclass(frozen=True)
class EntityMetadata:
    key: str
    table_name: str
    primary_key: str
    identity_field: str
    fields: Mapping[str, FieldDefinition]
    identity_field_unique: bool = False
    display_field: str | None = None
    name_type: str = "simple"
    identifier_prefix: str | None = None
    relationships: Mapping[str, RelationshipDefinition] = field(default_factory=_frozen)
    searchable_fields: tuple[str, ...] = ()
    filterable_fields: tuple[str, ...] = ()
    sortable_fields: tuple[str, ...] = ()
    default_sort: SortSpec = SortSpec("id", "ASC")
    default_includes: tuple[str, ...] = ()
    required_fields: tuple[str, ...] = ()
    immutable_fields: tuple[str, ...] = ()
    rls_resource: str = ""
    rls_policy: Mapping[str, str] = field(default_factory=_frozen)
    rls_filter_config: Mapping[str, str] = field(default_factory=_frozen)
    system_protected: SystemProtection | None = None
    shared_primary_key: bool = False
    dependents: tuple[DependentDefinition, ...] = ()
    auditable: bool = True

    @property
    def field_access(self) -> Mapping[str, FieldAccess]:
        """Declared access levels keyed by field name."""
        return MappingProxyType({
            name: f.access for name, f in self.fields.items() if f.access is not None
        })

    @property
    def resource_type(self) -> str:
        """Resource type written to audit rows for this entity."""
        return self.rls_resource or self.table_name

    @property
    def is_computed(self) -> bool:
        return self.name_type == "computed"

    @property
    def protection_field(self) -> str:
        """Field whose value decides whether a row is system-protected."""
        if self.system_protected and self.system_protected.protected_by_field:
            return self.system_protected.protected_by_field
        return self.identity_field

    def belongs_to(self) -> list[RelationshipDefinition]:
        return [r for r in self.relationships.values() if r.type == "belongsTo"]


class MetadataLoader:
    """Loads entity definitions from YAML files."""

    def __init__(self, metadata_path: Path | None = None):
        self.metadata_path = Path(metadata_path or DEFAULT_METADATA_PATH)
        self.entities: dict[str, EntityMetadata] = {}

    @property
    def entities_path(self) -> Path:
        return self.metadata_path / "entities"

    def load_all(self, validate: bool = True) -> dict[str, EntityMetadata]:
        """Load, validate and resolve all entities.

        Raises:
            MetadataError: If validation reports any error.
        """
        if validate:
            # Imported here: the validator resolves entities through this module
            from workforge.metadata.validator import validate_metadata_dir

            issues = validate_metadata_dir(self.metadata_path)
            errors = [i for i in issues if i.severity == "error"]
            for issue in issues:
                if issue.severity == "warning":
                    logger.warning("Metadata warning: %s", issue)
            if errors:
                for issue in errors:
                    logger.error("Metadata error: %s", issue)
                raise MetadataError(
                    f"Entity metadata has {len(errors)} error(s)", issues=errors
                )

        self.entities = {}
        for data in self.read_entity_files().values():
            entity = self.resolve_entity(data)
            self.entities[entity.key] = entity
        logger.debug("Loaded %d entities from %s", len(self.entities), self.entities_path)
        return dict(self.entities)

    def read_entity_files(self) -> dict[Path, dict]:
        """Read raw entity documents keyed by file path."""
        documents: dict[Path, dict] = {}
        if not self.entities_path.exists():
            return documents
        for yaml_file in sorted(self.entities_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if data and "entity" in data:
                documents[yaml_file] = data
        return documents

    def resolve_entity(self, data: dict) -> EntityMetadata:
        """Resolve an entity document, merging the universal fields."""
        key = data["entity"]

        raw_fields: dict[str, dict] = {
            name: dict(spec) for name, spec in UNIVERSAL_FIELDS.items()
        }
        for name, spec in (data.get("fields") or {}).items():
            merged = raw_fields.get(name, {})
            merged.update(spec or {})
            raw_fields[name] = merged

        fields = {
            name: self._resolve_field(name, spec) for name, spec in raw_fields.items()
        }

        relationships = {
            name: RelationshipDefinition(
                name=name,
                type=spec.get("type", "belongsTo"),
                table=spec["table"],
                foreign_key=spec["foreignKey"],
                fields=tuple(spec.get("fields", [])),
                description=spec.get("description", ""),
            )
            for name, spec in (data.get("relationships") or {}).items()
        }

        dependents = tuple(
            self._resolve_dependent(d) for d in data.get("dependents") or []
        )

        sort_data = data.get("defaultSort") or {}
        default_sort = SortSpec(
            field=sort_data.get("field", data.get("primaryKey", "id")),
            order=str(sort_data.get("order", "ASC")).upper(),
        )

        return EntityMetadata(
            key=key,
            table_name=data["tableName"],
            primary_key=data.get("primaryKey", "id"),
            identity_field=data.get("identityField", "id"),
            identity_field_unique=data.get("identityFieldUnique", False),
            display_field=data.get("displayField"),
            name_type=data.get("nameType", "simple"),
            identifier_prefix=data.get("identifierPrefix"),
            fields=MappingProxyType(fields),
            relationships=MappingProxyType(relationships),
            searchable_fields=tuple(data.get("searchableFields", [])),
            filterable_fields=tuple(data.get("filterableFields", [])),
            sortable_fields=tuple(data.get("sortableFields", [])),
            default_sort=default_sort,
            default_includes=tuple(data.get("defaultIncludes", [])),
            required_fields=tuple(data.get("requiredFields", [])),
            immutable_fields=tuple(data.get("immutableFields", [])),
            rls_resource=data.get("rlsResource", data["tableName"]),
            rls_policy=_frozen(data.get("rlsPolicy")),
            rls_filter_config=_frozen(self._resolve_rls_config(data.get("rlsFilterConfig"))),
            system_protected=self._resolve_protection(data.get("systemProtected")),
            shared_primary_key=data.get("sharedPrimaryKey", False),
            dependents=dependents,
            auditable=data.get("auditable", True),
        )

    def _resolve_field(self, name: str, data: dict) -> FieldDefinition:
        """Convert field dict to FieldDefinition."""
        values = data.get("values")
        return FieldDefinition(
            name=name,
            type=data.get("type", "string"),
            read_only=data.get("readOnly", False),
            default=data.get("default"),
            values=tuple(values) if values is not None else None,
            max_length=data.get("maxLength"),
            access=self._resolve_access(name, data.get("access")),
        )

    def _resolve_access(self, name: str, data: dict | str | None) -> FieldAccess | None:
        """Resolve an access mapping or a named shortcut.

        Universal fields fall back to their universal access levels.
        """
        if data is None:
            data = UNIVERSAL_FIELD_ACCESS.get(name)
            if data is None:
                return None
        if isinstance(data, str):
            data = FIELD_ACCESS_LEVELS[data]
        return FieldAccess(
            create=data.get("create", "none"),
            read=data.get("read", "customer"),
            update=data.get("update", "none"),
            delete=data.get("delete", "none"),
        )

    def _resolve_dependent(self, data: dict) -> DependentDefinition:
        poly = data.get("polymorphicType") or {}
        return DependentDefinition(
            table=data["table"],
            foreign_key=data["foreignKey"],
            polymorphic_column=poly.get("column"),
            polymorphic_value=poly.get("value"),
        )

    def _resolve_protection(self, data: dict | None) -> SystemProtection | None:
        if not data:
            return None
        return SystemProtection(
            protected_values=tuple(data.get("values", [])),
            immutable_fields=tuple(data.get("immutableFields", [])),
            protected_by_field=data.get("protectedByField"),
            prevent_delete=data.get("preventDelete", False),
        )

    def _resolve_rls_config(self, data: dict | None) -> dict[str, str]:
        """Convert camelCase scoping keys (``customerField``) to snake_case."""
        config: dict[str, str] = {}
        for key, value in (data or {}).items():
            config[_to_snake(key)] = value
        return config

    def get_entity(self, key: str) -> EntityMetadata | None:
        """Get a resolved entity by key."""
        return self.entities.get(key)

    def list_entities(self) -> list[str]:
        """List all entity keys."""
        return list(self.entities.keys())


def _to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)
