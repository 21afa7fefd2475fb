"""Role hierarchy and field-level access checks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata, FieldAccess


# Role hierarchy - higher number = more permissions
# Higher roles automatically have all permissions of lower roles
ROLE_HIERARCHY = {
    "customer": 1,
    "technician": 2,
    "dispatcher": 3,
    "manager": 4,
    "admin": 5,
}

# Access level meaning "no role may perform this operation"
NO_ACCESS = "none"

OPERATIONS = ("create", "read", "update", "delete")

# Shortcuts usable in entity YAML in place of a full access mapping
FIELD_ACCESS_LEVELS: dict[str, dict[str, str]] = {
    "public_readonly": {
        "create": "none", "read": "customer", "update": "none", "delete": "none",
    },
    "system_readonly": {
        "create": "none", "read": "technician", "update": "none", "delete": "none",
    },
    "customer_editable": {
        "create": "customer", "read": "customer", "update": "customer", "delete": "none",
    },
    "technician_editable": {
        "create": "technician", "read": "customer", "update": "technician", "delete": "none",
    },
    "dispatcher_managed": {
        "create": "dispatcher", "read": "customer", "update": "dispatcher", "delete": "none",
    },
    "manager_managed": {
        "create": "manager", "read": "technician", "update": "manager", "delete": "none",
    },
    "admin_only": {
        "create": "admin", "read": "admin", "update": "admin", "delete": "none",
    },
    "never_readable": {
        "create": "admin", "read": "none", "update": "admin", "delete": "none",
    },
}

# Access for the fields every entity carries
UNIVERSAL_FIELD_ACCESS: dict[str, dict[str, str]] = {
    "id": FIELD_ACCESS_LEVELS["public_readonly"],
    "is_active": {
        "create": "manager", "read": "customer", "update": "manager", "delete": "none",
    },
    "created_at": FIELD_ACCESS_LEVELS["public_readonly"],
    "updated_at": FIELD_ACCESS_LEVELS["public_readonly"],
    "status": {
        "create": "dispatcher", "read": "customer", "update": "dispatcher", "delete": "none",
    },
}


def role_level(role: str | None) -> int:
    """Return numeric level for a role name, 0 if unknown/None."""
    return ROLE_HIERARCHY.get((role or "").lower(), 0)


def is_known_role(role: str) -> bool:
    return role in ROLE_HIERARCHY or role == NO_ACCESS


def has_role_or_higher(user_role: str | None, required_role: str | None) -> bool:
    """Check if a role meets the minimum required role.

    ``none`` is never satisfied; an unknown required role is never satisfied.
    """
    if not required_role or required_role == NO_ACCESS:
        return False
    required = ROLE_HIERARCHY.get(required_role)
    if required is None:
        return False
    return role_level(user_role) >= required


def _required_role(access: FieldAccess, operation: str) -> str:
    return getattr(access, operation)


def get_fields_for_operation(
    metadata: EntityMetadata,
    role: str | None,
    operation: str,
) -> list[str]:
    """Return the fields a role may perform an operation on.

    Only fields with a declared access level are considered.
    """
    allowed = []
    for name, access in metadata.field_access.items():
        if has_role_or_higher(role, _required_role(access, operation)):
            allowed.append(name)
    return allowed


def can_access_field(
    metadata: EntityMetadata,
    role: str | None,
    field_name: str,
    operation: str,
) -> bool:
    """Check whether a role may perform an operation on one field.

    Fields without a declared access level are not writable through this
    check; read visibility for undeclared fields is decided by the output
    filter.
    """
    access = metadata.field_access.get(field_name)
    if access is None:
        return False
    return has_role_or_higher(role, _required_role(access, operation))


def filter_writable_fields(
    data: dict[str, Any],
    metadata: EntityMetadata,
    role: str | None,
    operation: str,
) -> dict[str, Any]:
    """Strip fields the role cannot write from an incoming payload.

    Args:
        data: The write payload from the caller
        metadata: Entity metadata for field access lookup
        role: The caller's role name
        operation: "create" or "update"

    Returns:
        A copy of the data with write-restricted fields removed
    """
    return {
        key: value
        for key, value in data.items()
        if can_access_field(metadata, role, key, operation)
    }
