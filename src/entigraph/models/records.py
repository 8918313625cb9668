"""Transient records exchanged by the draft/resolve and cascade workflows."""

from __future__ import annotations

from enum import Enum
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from entigraph.models.edges import PendingEdge
from entigraph.schema.fields import MatchMode
from entigraph.schema.fields import Operator

# ---------------------------------------------------------------------------
# Draft / resolve
# ---------------------------------------------------------------------------


class ReferenceSpec(BaseModel):
    """An unresolved reference recorded by ``draft()``."""

    field: str = Field(description="Relationship field the reference fills.")
    operator: Operator
    type: str = Field(description="Primary target entity type.")
    match_mode: MatchMode
    resolved: bool = False
    prompt: str | None = None
    generated_text: str | None = Field(
        default=None,
        description="Natural-language placeholder shown in the draft.",
    )
    union_types: tuple[str, ...] | None = None
    threshold: float | None = None


class Draft(BaseModel):
    """Phase one output: placeholders in place of relationship ids."""

    phase: Literal["draft"] = "draft"
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    refs: dict[str, ReferenceSpec | list[ReferenceSpec]] = Field(default_factory=dict)


class ResolutionErrorEntry(BaseModel):
    """A field that failed to resolve in ``skip`` mode."""

    field: str
    error: str


class Resolved(BaseModel):
    """Phase two output: placeholders replaced by concrete identifiers."""

    phase: Literal["resolved"] = "resolved"
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    errors: list[ResolutionErrorEntry] | None = None
    pending_edges: list[PendingEdge] = Field(default_factory=list, exclude=True)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


class CascadePhase(str, Enum):
    generating = "generating"
    complete = "complete"
    error = "error"


class CascadeProgress(BaseModel):
    """Snapshot reported to ``on_progress`` callbacks."""

    phase: CascadePhase
    depth: int
    current_type: str
    field: str | None = None
    total_entities_created: int = 0
    types_generated: list[str] = Field(default_factory=list)


class CascadeErrorContext(BaseModel):
    """Where a cascade failure happened."""

    type: str
    depth: int
    field: str | None = None
