"""Audit trail: admin action models, storage, logger, and query helpers."""

from freight.audit.logger import AuditLogger
from freight.audit.models import AuditEntry, EventType
from freight.audit.store import (
    init_audit_table,
    insert_audit_entry,
    query_audit_trail,
    query_state_changes,
)

__all__ = [
    "AuditEntry",
    "AuditLogger",
    "EventType",
    "init_audit_table",
    "insert_audit_entry",
    "query_audit_trail",
    "query_state_changes",
]
