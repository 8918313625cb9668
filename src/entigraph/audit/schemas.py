"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Categories of auditable events."""

    ENTITY_CREATED = "ENTITY_CREATED"
    ENTITY_GENERATED = "ENTITY_GENERATED"
    FUZZY_MATCHED = "FUZZY_MATCHED"
    RELATION_CREATED = "RELATION_CREATED"
    DRAFT_RESOLVED = "DRAFT_RESOLVED"
    CASCADE_RUN = "CASCADE_RUN"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    entity_type: str | None = Field(
        default=None,
        description="Entity type the event is about, when there is one.",
    )
    entity_id: str | None = Field(
        default=None,
        description="Identifier of the entity the event is about.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary event-specific data.",
    )
