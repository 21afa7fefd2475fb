"""
Pure builders for WHERE and ORDER BY fragments.

Every value is a bound parameter named ``:p<N>`` where N is the parameter's
absolute position in the final statement. Builders take the number of
parameters already used (``param_offset``) and return the new running total,
so fragments built one after another chain without renumbering.

Column names are embedded in SQL text and must come from entity metadata;
caller-supplied field names are only used after an allow-list check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from workforge.metadata.loader import SortSpec

logger = logging.getLogger(__name__)

# Operator keys accepted in structured filter values
FILTER_OPERATORS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "not": "!=",
    "in": "IN",
}

SORT_DIRECTIONS = ("ASC", "DESC")

NEVER_TRUE = "1=0"


@dataclass(frozen=True)
class QueryFragment:
    """A SQL fragment with its bound values.

    ``param_offset`` is the number of parameters used once this fragment's
    own parameters are appended.
    """

    clause: str = ""
    params: tuple[Any, ...] = ()
    param_offset: int = 0

    def __bool__(self) -> bool:
        return bool(self.clause)


def qualify(field: str, table_prefix: str | None = None) -> str:
    """Prefix a column with its table name when one is given."""
    return f"{table_prefix}.{field}" if table_prefix else field


def placeholder(position: int) -> str:
    return f":p{position}"


def bind_params(params: Sequence[Any], start: int = 1) -> dict[str, Any]:
    """Map positional values onto the ``p<N>`` names used in fragments."""
    return {f"p{start + i}": value for i, value in enumerate(params)}


def build_search(
    term: str | None,
    fields: Iterable[str],
    table_prefix: str | None = None,
    param_offset: int = 0,
) -> QueryFragment:
    """Case-insensitive partial match of ``term`` against any of ``fields``.

    All fields share one ``%term%`` parameter.
    """
    fields = list(fields)
    if term is None or not fields:
        return QueryFragment(param_offset=param_offset)
    sanitized = str(term).strip()
    if not sanitized:
        return QueryFragment(param_offset=param_offset)

    position = param_offset + 1
    conditions = [
        f"LOWER({qualify(f, table_prefix)}) LIKE LOWER({placeholder(position)})"
        for f in fields
    ]
    return QueryFragment(
        clause="(" + " OR ".join(conditions) + ")",
        params=(f"%{sanitized}%",),
        param_offset=position,
    )


def _split_in_values(value: Any) -> list[Any]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def build_filter(
    filters: Mapping[str, Any] | None,
    allowed_fields: Iterable[str],
    param_offset: int = 0,
    table_prefix: str | None = None,
) -> QueryFragment:
    """AND-combined filters on allow-listed fields.

    A plain value is an exact match (``None`` matches NULL). A mapping value
    applies operators: ``{"gte": 3, "lt": 9}``, ``{"in": "a,b"}``. Fields
    outside ``allowed_fields`` and unknown operators are skipped.
    """
    if not filters:
        return QueryFragment(param_offset=param_offset)

    allowed = set(allowed_fields)
    conditions: list[str] = []
    params: list[Any] = []
    offset = param_offset

    for field, value in filters.items():
        if field not in allowed:
            logger.debug("Dropping filter on non-filterable field %s", field)
            continue
        column = qualify(field, table_prefix)

        if isinstance(value, Mapping):
            for operator, operand in value.items():
                sql_operator = FILTER_OPERATORS.get(operator)
                if sql_operator is None:
                    continue
                if operator == "in":
                    values = _split_in_values(operand)
                    if not values:
                        conditions.append(NEVER_TRUE)
                        continue
                    names = [placeholder(offset + i + 1) for i in range(len(values))]
                    conditions.append(f"{column} IN ({', '.join(names)})")
                    params.extend(values)
                    offset += len(values)
                elif operator == "not" and operand is None:
                    conditions.append(f"{column} IS NOT NULL")
                else:
                    offset += 1
                    conditions.append(f"{column} {sql_operator} {placeholder(offset)}")
                    params.append(operand)
        elif value is None:
            conditions.append(f"{column} IS NULL")
        else:
            offset += 1
            conditions.append(f"{column} = {placeholder(offset)}")
            params.append(value)

    if not conditions:
        return QueryFragment(param_offset=param_offset)
    return QueryFragment(
        clause=" AND ".join(conditions),
        params=tuple(params),
        param_offset=offset,
    )


def resolve_sort(
    field: str | None,
    direction: str | None,
    allowed_fields: Iterable[str],
    default_sort: SortSpec,
) -> tuple[str, str]:
    """Return the effective ``(field, direction)``.

    An invalid field falls back to the default field and the default
    direction together; a valid field with an invalid direction keeps the
    field and takes the default direction.
    """
    default_direction = (default_sort.order or "ASC").upper()
    if default_direction not in SORT_DIRECTIONS:
        default_direction = "ASC"

    if not field or field not in set(allowed_fields):
        return default_sort.field, default_direction

    requested = str(direction).upper() if direction else ""
    if requested in SORT_DIRECTIONS:
        return field, requested
    return field, default_direction


def build_sort(
    field: str | None,
    direction: str | None,
    allowed_fields: Iterable[str],
    default_sort: SortSpec,
    table_prefix: str | None = None,
) -> str:
    """Build an ``ORDER BY`` clause."""
    sort_field, sort_direction = resolve_sort(field, direction, allowed_fields, default_sort)
    return f"ORDER BY {qualify(sort_field, table_prefix)} {sort_direction}"


def combine(fragments: Iterable[Any], param_offset: int = 0) -> QueryFragment:
    """AND-join non-empty fragments, each parenthesized.

    Fragments must have been built with chained offsets starting at
    ``param_offset``; a gap or overlap in the chain is a programming error.
    """
    clauses: list[str] = []
    params: list[Any] = []
    running = param_offset

    for fragment in fragments:
        if fragment is None or not fragment.clause:
            continue
        fragment_params = tuple(fragment.params)
        start = fragment.param_offset - len(fragment_params)
        if start != running:
            raise ValueError(
                f"Fragment parameters start after position {start}, expected {running}"
            )
        clauses.append(f"({fragment.clause})")
        params.extend(fragment_params)
        running = fragment.param_offset

    return QueryFragment(
        clause=" AND ".join(clauses),
        params=tuple(params),
        param_offset=running,
    )


def where(fragment: QueryFragment) -> str:
    """Render a combined fragment as a WHERE clause (empty when no conditions)."""
    return f"WHERE {fragment.clause}" if fragment.clause else ""
