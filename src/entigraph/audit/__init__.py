"""Audit subsystem: async JSONL logging of entity and relation events."""

from entigraph.audit.schemas import AuditEvent
from entigraph.audit.schemas import AuditEventType
from entigraph.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
