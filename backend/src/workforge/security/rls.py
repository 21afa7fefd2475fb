"""
Row-level security predicates.

A caller's role maps to a policy through the entity's ``rlsPolicy`` table.
The policy becomes an extra WHERE predicate that is AND-combined with every
other condition, so it can only narrow a result set. Scoping policies compare
one column against the caller's id; which column is configured per entity in
``rlsFilterConfig`` with a per-policy default.

Anything unrecognised fails closed (``1=0``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from workforge.query.builder import NEVER_TRUE, placeholder, qualify

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata

logger = logging.getLogger(__name__)

DENY_ALL = "deny_all"

UNRESTRICTED_POLICIES = ("all_records", "public_resource")

# policy -> (rlsFilterConfig key, default column)
SCOPING_POLICIES: dict[str, tuple[str, str]] = {
    "own_record_only": ("own_record_field", "id"),
    "own_work_orders_only": ("customer_field", "customer_id"),
    "assigned_work_orders_only": ("assigned_field", "assigned_technician_id"),
    "own_invoices_only": ("customer_field", "customer_id"),
    "own_contracts_only": ("customer_field", "customer_id"),
}


@dataclass(frozen=True)
class RLSContext:
    """Per-call security context.

    ``user_id`` is the value scoping policies compare against: the user id
    for own-record policies, the caller's customer or technician profile id
    for the work-order, invoice and contract policies.
    """

    policy: str
    user_id: int | None = None
    role: str | None = None


@dataclass(frozen=True)
class RLSFilter:
    clause: str = ""
    params: tuple[Any, ...] = ()
    applied: bool = False
    param_offset: int = 0


def supported_policies() -> list[str]:
    return [*UNRESTRICTED_POLICIES, *SCOPING_POLICIES, DENY_ALL]


def policy_allows_access(policy: str | None) -> bool:
    """Whether a policy can ever return rows."""
    return bool(policy) and policy != DENY_ALL and policy in supported_policies()


def resolve_rls_context(
    metadata: EntityMetadata,
    role: str | None,
    user_id: int | None,
) -> RLSContext:
    """Map a role to its policy on an entity; roles without one are denied."""
    policy = metadata.rls_policy.get(role or "", DENY_ALL)
    return RLSContext(policy=policy, user_id=user_id, role=role)


def build_rls_filter(
    context: RLSContext | None,
    metadata: EntityMetadata,
    param_offset: int = 0,
    table_prefix: str | None = None,
) -> RLSFilter:
    """Build the RLS predicate for a caller on an entity.

    Args:
        context: The caller's policy and id; None means unrestricted
        metadata: The entity being queried
        param_offset: Parameters already used by the statement
        table_prefix: Table qualifying the scoping column (defaults to the
            entity's table)
    """
    if context is None or not context.policy:
        logger.debug("No RLS context for %s", metadata.table_name)
        return RLSFilter(param_offset=param_offset)

    policy = context.policy
    prefix = table_prefix or metadata.table_name

    if policy in UNRESTRICTED_POLICIES:
        return RLSFilter(param_offset=param_offset)

    if policy == DENY_ALL:
        return RLSFilter(clause=NEVER_TRUE, applied=True, param_offset=param_offset)

    scoping = SCOPING_POLICIES.get(policy)
    if scoping is None:
        logger.warning(
            "Unknown RLS policy %r on %s, denying access", policy, metadata.table_name
        )
        return RLSFilter(clause=NEVER_TRUE, applied=True, param_offset=param_offset)

    if context.user_id is None:
        logger.warning(
            "RLS policy %s on %s requires a user id, denying access",
            policy, metadata.table_name,
        )
        return RLSFilter(clause=NEVER_TRUE, applied=True, param_offset=param_offset)

    config_key, default_column = scoping
    column = metadata.rls_filter_config.get(config_key, default_column)
    position = param_offset + 1
    return RLSFilter(
        clause=f"{qualify(column, prefix)} = {placeholder(position)}",
        params=(context.user_id,),
        applied=True,
        param_offset=position,
    )


def build_rls_filter_for_find_by_id(
    context: RLSContext | None,
    metadata: EntityMetadata,
    param_offset: int = 1,
    table_prefix: str | None = None,
) -> RLSFilter:
    """RLS predicate for single-record reads, where ``:p1`` is the key."""
    return build_rls_filter(context, metadata, param_offset, table_prefix)
