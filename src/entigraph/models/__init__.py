"""Models domain: edge and workflow records shared across the engine."""

from entigraph.models.edges import Cardinality
from entigraph.models.edges import Edge
from entigraph.models.edges import PendingEdge
from entigraph.models.records import CascadeErrorContext
from entigraph.models.records import CascadePhase
from entigraph.models.records import CascadeProgress
from entigraph.models.records import Draft
from entigraph.models.records import ReferenceSpec
from entigraph.models.records import ResolutionErrorEntry
from entigraph.models.records import Resolved

__all__ = [
    "Cardinality",
    "CascadeErrorContext",
    "CascadePhase",
    "CascadeProgress",
    "Draft",
    "Edge",
    "PendingEdge",
    "ReferenceSpec",
    "ResolutionErrorEntry",
    "Resolved",
]
