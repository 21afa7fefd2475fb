"""Type-driven data hygiene for incoming write payloads and filters."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from workforge.core.types import get_field_type

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata

TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def _clean_string(value: str, hygiene: str) -> Any:
    stripped = value.strip()
    if hygiene == "trim":
        return stripped
    if hygiene == "lower":
        return stripped.lower()

    # Non-string field types: blank means "no value"
    if stripped == "":
        return None
    if hygiene == "boolean":
        lowered = stripped.lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        return stripped
    if hygiene == "integer":
        try:
            return int(stripped)
        except ValueError:
            return stripped
    return stripped


def sanitize_data(data: dict[str, Any], metadata: EntityMetadata) -> dict[str, Any]:
    """Return a cleaned copy of a write payload.

    Strings are trimmed; email and enum values are lowercased; blank strings
    on non-string fields become None and boolean strings become bools. Keys
    that are not entity fields pass through untouched.
    """
    clean: dict[str, Any] = {}
    for key, value in data.items():
        definition = metadata.fields.get(key)
        if definition is None or not isinstance(value, str):
            clean[key] = value
            continue
        field_type = get_field_type(definition.type)
        if field_type.structured:
            # JSON text is kept as given
            clean[key] = value
            continue
        clean[key] = _clean_string(value, field_type.hygiene)
    return clean


def _clean_operand(value: Any, field_type) -> Any:
    if isinstance(value, str) and not field_type.structured:
        return _clean_string(value, field_type.hygiene)
    return value


def sanitize_filters(filters: Mapping[str, Any], metadata: EntityMetadata) -> dict[str, Any]:
    """Apply the write-payload hygiene to filter values.

    Query-string filters arrive as text, so ``"true"`` must become ``True``
    before it can match a stored boolean. Operator mappings are cleaned per
    operand; an ``in`` list given as ``"a,b"`` is split first.
    """
    clean: dict[str, Any] = {}
    for key, value in filters.items():
        definition = metadata.fields.get(key)
        if definition is None:
            clean[key] = value
            continue
        field_type = get_field_type(definition.type)
        if not isinstance(value, Mapping):
            clean[key] = _clean_operand(value, field_type)
            continue

        operators: dict[str, Any] = {}
        for operator, operand in value.items():
            if operator == "in":
                if isinstance(operand, str):
                    operand = [part for part in operand.split(",") if part.strip()]
                if isinstance(operand, (list, tuple, set, frozenset)):
                    operand = [_clean_operand(v, field_type) for v in operand]
            else:
                operand = _clean_operand(operand, field_type)
            operators[operator] = operand
        clean[key] = operators
    return clean
