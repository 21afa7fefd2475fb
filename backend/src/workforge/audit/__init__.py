"""Audit trail for entity mutations."""

from workforge.audit.service import (
    AuditContext,
    AuditEntry,
    AuditService,
    build_audit_context,
    build_audit_entry,
    is_audit_enabled,
)

__all__ = [
    "AuditContext",
    "AuditEntry",
    "AuditService",
    "build_audit_context",
    "build_audit_entry",
    "is_audit_enabled",
]
