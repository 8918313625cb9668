"""Edge models: schema-derived edges and edges awaiting persistence."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel
from pydantic import Field

from entigraph.schema.fields import Direction
from entigraph.schema.fields import MatchMode


class Cardinality(str, Enum):
    """Relationship multiplicity, read from the declaring side."""

    many_to_one = "many-to-one"
    one_to_many = "one-to-many"
    many_to_many = "many-to-many"


class Edge(BaseModel):
    """One relationship field, expressed as a typed graph edge.

    Edges always read "from declares, to is declared": a backward field is
    reported with its endpoints swapped.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    from_type: str = Field(alias="from", description="Declaring entity type.")
    name: str = Field(description="Field name that carries the relation.")
    to_type: str = Field(alias="to", description="Declared entity type.")
    backref: str | None = None
    cardinality: Cardinality
    direction: Direction = Direction.forward
    match_mode: MatchMode = MatchMode.exact


class PendingEdge(BaseModel):
    """A relation to materialize once the source entity is persisted."""

    field: str
    target_type: str
    target_id: str
    match_mode: MatchMode = MatchMode.exact
    similarity: float | None = Field(
        default=None,
        description="Similarity score when the target was matched by search.",
    )
    matched_type: str | None = Field(
        default=None,
        description="Concrete target type chosen for a fuzzy relation.",
    )
