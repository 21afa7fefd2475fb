"""Field type registry with storage and data-hygiene defaults."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldType:
    name: str
    storage_type: str  # SQLite storage type
    pg_type: str
    hygiene: str = "none"  # "trim" | "lower" | "boolean" | "integer" | "decimal" | "none"
    structured: bool = False  # Serialized as JSON for storage


# Built-in field types
FIELD_TYPES: dict[str, FieldType] = {
    "integer": FieldType(
        name="integer",
        storage_type="INTEGER",
        pg_type="INTEGER",
        hygiene="integer",
    ),
    "string": FieldType(
        name="string",
        storage_type="TEXT",
        pg_type="VARCHAR(255)",
        hygiene="trim",
    ),
    "text": FieldType(
        name="text",
        storage_type="TEXT",
        pg_type="TEXT",
        hygiene="trim",
    ),
    "email": FieldType(
        name="email",
        storage_type="TEXT",
        pg_type="VARCHAR(255)",
        hygiene="lower",
    ),
    "phone": FieldType(
        name="phone",
        storage_type="TEXT",
        pg_type="VARCHAR(50)",
        hygiene="trim",
    ),
    "enum": FieldType(
        name="enum",
        storage_type="TEXT",
        pg_type="VARCHAR(50)",
        hygiene="lower",
    ),
    "boolean": FieldType(
        name="boolean",
        storage_type="BOOLEAN",  # 0/1
        pg_type="BOOLEAN",
        hygiene="boolean",
    ),
    "decimal": FieldType(
        name="decimal",
        storage_type="NUMERIC",
        pg_type="NUMERIC(12, 2)",
        hygiene="decimal",
    ),
    "currency": FieldType(
        name="currency",
        storage_type="NUMERIC",
        pg_type="NUMERIC(12, 2)",
        hygiene="decimal",
    ),
    "date": FieldType(
        name="date",
        storage_type="TEXT",  # ISO format
        pg_type="DATE",
        hygiene="trim",
    ),
    "timestamp": FieldType(
        name="timestamp",
        storage_type="TIMESTAMP",
        pg_type="TIMESTAMPTZ",
        hygiene="trim",
    ),
    "foreign_key": FieldType(
        name="foreign_key",
        storage_type="INTEGER",
        pg_type="INTEGER",
        hygiene="integer",
    ),
    "json": FieldType(
        name="json",
        storage_type="TEXT",  # JSON text
        pg_type="JSONB",
        structured=True,
    ),
    "jsonb": FieldType(
        name="jsonb",
        storage_type="TEXT",
        pg_type="JSONB",
        structured=True,
    ),
}


def get_field_type(type_name: str) -> FieldType:
    """Get field type definition, defaulting to string if unknown."""
    return FIELD_TYPES.get(type_name, FIELD_TYPES["string"])


def get_storage_type(type_name: str, dialect: str = "sqlite") -> str:
    """Get the column type for a field type in the given SQL dialect."""
    field_type = get_field_type(type_name)
    if dialect == "postgresql":
        return field_type.pg_type
    return field_type.storage_type


def is_structured(type_name: str) -> bool:
    """Whether values of this type are serialized to JSON for storage."""
    return get_field_type(type_name).structured
