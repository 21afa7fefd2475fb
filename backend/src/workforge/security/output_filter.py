"""Strip fields a caller may not read from records on the way out."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Iterable

from workforge.security.roles import NO_ACCESS, has_role_or_higher

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata

logger = logging.getLogger(__name__)


def decode_record(record: dict[str, Any], metadata: EntityMetadata) -> dict[str, Any]:
    """Convert stored values back to their field types, in place.

    JSON text becomes structured data and 0/1 booleans become bools.
    """
    for name, definition in metadata.fields.items():
        value = record.get(name)
        if value is None:
            continue
        if definition.structured and isinstance(value, str):
            try:
                record[name] = json.loads(value)
            except ValueError:
                logger.warning("Undecodable JSON in %s.%s", metadata.table_name, name)
        elif definition.type == "boolean" and isinstance(value, int) and not isinstance(value, bool):
            record[name] = bool(value)
    return record


def hidden_fields(metadata: EntityMetadata, role: str | None = None) -> set[str]:
    """Fields a role may not read.

    Never-readable fields are hidden from everyone. Fields without declared
    access are visible to all roles.
    """
    hidden = set()
    for name, access in metadata.field_access.items():
        if access.read == NO_ACCESS:
            hidden.add(name)
        elif role is not None and not has_role_or_higher(role, access.read):
            hidden.add(name)
    return hidden


def filter_output(
    record: dict[str, Any] | None,
    metadata: EntityMetadata,
    role: str | None = None,
) -> dict[str, Any] | None:
    """Return a copy of a record without the fields a role may not read."""
    if record is None:
        return None

    result = decode_record(dict(record), metadata)
    hidden = hidden_fields(metadata, role)
    if not hidden:
        return result

    for name in hidden:
        result.pop(name, None)

    # Joined columns of a hidden foreign key go with it
    for rel in metadata.belongs_to():
        if rel.foreign_key in hidden:
            prefix = f"{rel.name}_"
            joined = [
                k for k in result
                if k not in metadata.fields and (k == rel.name or k.startswith(prefix))
            ]
            for key in joined:
                del result[key]
    return result


def filter_output_array(
    records: Iterable[dict[str, Any]],
    metadata: EntityMetadata,
    role: str | None = None,
) -> list[dict[str, Any]]:
    return [filter_output(record, metadata, role) for record in records]
