"""Audit trail for entity mutations.

Audit rows record who changed what with before/after snapshots. Writing an
audit row never fails the operation being audited: errors are logged and
swallowed. When a connection is passed, the row is written inside a
SAVEPOINT on that connection so it commits (or rolls back) with the
mutation, and a failed audit INSERT cannot poison the enclosing transaction.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from workforge.core.coercion import to_safe_integer, to_safe_user_id
from workforge.errors import BadRequest
from workforge.persistence.schema import AUDIT_TABLE

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata

logger = logging.getLogger(__name__)

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"

_JSON_COLUMNS = ("old_values", "new_values")


@dataclass(frozen=True)
class AuditContext:
    """Who is acting, and from where."""

    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditEntry:
    action: str
    resource_type: str
    resource_id: int | None = None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    result: str = RESULT_SUCCESS
    error_message: str | None = None


def build_audit_context(
    user_id: Any = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditContext:
    """Build an audit context from request attributes.

    Non-integer user ids (external auth subjects) are recorded as None.
    """
    return AuditContext(
        user_id=to_safe_user_id(user_id),
        ip_address=ip_address,
        user_agent=user_agent,
    )


def is_audit_enabled(metadata: EntityMetadata) -> bool:
    return metadata.auditable


def audit_action(metadata: EntityMetadata, operation: str) -> str:
    """Action name for an operation on an entity, e.g. ``customer_create``."""
    return f"{metadata.key}_{operation}"


def build_audit_entry(
    metadata: EntityMetadata,
    operation: str,
    resource_id: int | None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    context: AuditContext | None = None,
) -> AuditEntry:
    context = context or AuditContext()
    return AuditEntry(
        action=audit_action(metadata, operation),
        resource_type=metadata.resource_type,
        resource_id=resource_id,
        old_values=old_values,
        new_values=new_values,
        user_id=context.user_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
    )


def _dump(values: dict[str, Any] | None) -> str | None:
    if values is None:
        return None
    return json.dumps(values, default=str)


class AuditService:
    """Writes and reads ``audit_logs`` rows."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def log(self, entry: AuditEntry, conn: Connection | None = None) -> bool:
        """Record an audit entry.

        Args:
            entry: What happened
            conn: Connection of the audited transaction; without one the row
                is written in its own transaction

        Returns:
            True if the row was written, False if writing failed.
        """
        params = {
            "user_id": to_safe_user_id(entry.user_id),
            "action": entry.action,
            "resource_type": entry.resource_type,
            "resource_id": entry.resource_id,
            "old_values": _dump(entry.old_values),
            "new_values": _dump(entry.new_values),
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "result": entry.result,
            "error_message": entry.error_message,
        }
        statement = text(f"""
            INSERT INTO {AUDIT_TABLE}
                (user_id, action, resource_type, resource_id, old_values, new_values,
                 ip_address, user_agent, result, error_message)
            VALUES
                (:user_id, :action, :resource_type, :resource_id, :old_values, :new_values,
                 :ip_address, :user_agent, :result, :error_message)
        """)
        try:
            if conn is not None:
                with conn.begin_nested():
                    conn.execute(statement, params)
            else:
                with self.engine.begin() as own_conn:
                    own_conn.execute(statement, params)
        except Exception:
            logger.exception(
                "Error writing audit log: action=%s resource=%s/%s",
                entry.action, entry.resource_type, entry.resource_id,
            )
            return False

        logger.info(
            "Audit event: action=%s resource=%s/%s user=%s result=%s",
            entry.action, entry.resource_type, entry.resource_id,
            params["user_id"], entry.result,
        )
        return True

    def get_resource_audit_trail(
        self,
        resource_type: str,
        resource_id: Any,
        limit: Any = 50,
    ) -> list[dict[str, Any]]:
        """Audit rows for one record, newest first.

        Raises:
            BadRequest: If the resource type, id or limit is invalid.
        """
        if not isinstance(resource_type, str) or not resource_type.strip():
            raise BadRequest("resourceType must be a non-empty string")
        safe_id = to_safe_integer(resource_id, "resourceId")
        safe_limit = to_safe_integer(limit, "limit", minimum=1, maximum=1000)
        return self._select(
            "resource_type = :resource_type AND resource_id = :resource_id",
            {"resource_type": resource_type.strip(), "resource_id": safe_id},
            safe_limit,
        )

    def get_user_audit_trail(self, user_id: Any, limit: Any = 100) -> list[dict[str, Any]]:
        """Audit rows recorded for one acting user, newest first."""
        safe_user_id = to_safe_integer(user_id, "userId")
        safe_limit = to_safe_integer(limit, "limit", minimum=1, maximum=1000)
        return self._select("user_id = :user_id", {"user_id": safe_user_id}, safe_limit)

    def _select(self, condition: str, params: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(f"""
                    SELECT * FROM {AUDIT_TABLE}
                    WHERE {condition}
                    ORDER BY created_at DESC, id DESC
                    LIMIT :limit
                """),
                {**params, "limit": limit},
            ).mappings().all()
        return [self._decode(dict(row)) for row in rows]

    @staticmethod
    def _decode(row: dict[str, Any]) -> dict[str, Any]:
        for column in _JSON_COLUMNS:
            value = row.get(column)
            if isinstance(value, str):
                row[column] = json.loads(value)
        return row
