"""Schema graph construction.

``build_schema_graph`` runs the field parser over every entity, validates
operator targets, then synthesizes inverse (backref) fields so that every
``A.f = 'B.g'`` declaration is visible from both ends. The resulting
``SchemaGraph`` is read-only and safe to share between concurrent calls.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from entigraph.models.edges import Cardinality
from entigraph.models.edges import Edge
from entigraph.schema.fields import Direction
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.fields import SchemaValidationError
from entigraph.schema.fields import parse_field
from entigraph.schema.fields import validate_definition
from entigraph.schema.fields import validate_entity_name

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.75
ENTITY_THRESHOLD_KEY = "$fuzzyThreshold"


class UnknownEntityTypeError(ValueError):
    """Raised when an operation names an entity type missing from the graph."""


@dataclass
class EntityNode:
    """Parsed entity: ordered field descriptors plus the raw definition."""

    name: str
    fields: dict[str, FieldDescriptor] = field(default_factory=dict)
    raw_definition: dict[str, Any] = field(default_factory=dict)

    def option(self, key: str, default: Any = None) -> Any:
        """Read an entity-level ``$`` option from the raw definition."""
        return self.raw_definition.get(key, default)

    @property
    def relation_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields.values() if f.is_relation]

    @property
    def scalar_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields.values() if not f.is_relation]


def parse_schema(schema: Mapping[str, Mapping[str, Any]]) -> dict[str, EntityNode]:
    """Parse every entity of *schema*; ``$``-prefixed keys are options."""
    nodes: dict[str, EntityNode] = {}
    for entity_name, definition in schema.items():
        validate_entity_name(entity_name)
        if not isinstance(definition, Mapping):
            msg = f"Entity {entity_name!r} must map field names to definitions"
            raise SchemaValidationError(
                msg, code="INVALID_ENTITY_NAME", path=entity_name
            )
        node = EntityNode(name=entity_name, raw_definition=dict(definition))
        for field_name, field_definition in definition.items():
            if field_name.startswith("$"):
                continue
            validate_definition(entity_name, field_name, field_definition)
            node.fields[field_name] = parse_field(field_name, field_definition)
        nodes[entity_name] = node
    return nodes


class SchemaGraph:
    """Entities and their relationship fields, resolved across the schema."""

    def __init__(
        self,
        entities: Mapping[str, EntityNode],
        *,
        default_fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    ) -> None:
        self._entities: dict[str, EntityNode] = dict(entities)
        self.default_fuzzy_threshold = default_fuzzy_threshold

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @property
    def entities(self) -> Mapping[str, EntityNode]:
        return self._entities

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def __iter__(self):
        return iter(self._entities)

    def node(self, name: str) -> EntityNode:
        """Return the node for *name* or raise ``UnknownEntityTypeError``."""
        node = self._entities.get(name)
        if node is None:
            msg = f"Unknown entity type: {name!r}"
            raise UnknownEntityTypeError(msg)
        return node

    def fuzzy_threshold(self, entity_name: str, descriptor: FieldDescriptor) -> float:
        """Field threshold, else entity ``$fuzzyThreshold``, else the default."""
        if descriptor.threshold is not None:
            return descriptor.threshold
        node = self._entities.get(entity_name)
        if node is not None:
            value = node.option(ENTITY_THRESHOLD_KEY)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
        return self.default_fuzzy_threshold

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_references(self) -> None:
        """Require every non-union operator target to be declared."""
        for entity_name, node in self._entities.items():
            for descriptor in node.fields.values():
                if descriptor.operator is None or descriptor.is_union:
                    continue
                target = descriptor.related_type
                if not target or target == entity_name:
                    continue
                if target not in self._entities:
                    msg = (
                        f"Invalid schema: {entity_name}.{descriptor.name} "
                        f"references non-existent type {target!r}"
                    )
                    raise SchemaValidationError(
                        msg,
                        code="MISSING_TYPE",
                        path=f"{entity_name}.{descriptor.name}",
                    )

    def validate_unions(self) -> None:
        """Check union members once the whole schema is assembled.

        A union naming only undeclared types is tolerated with a warning; a
        union mixing declared and undeclared members is an error.
        """
        for entity_name, node in self._entities.items():
            for descriptor in node.fields.values():
                if not descriptor.is_union:
                    continue
                members = descriptor.union_types or ()
                missing = [m for m in members if m not in self._entities]
                if not missing:
                    continue
                path = f"{entity_name}.{descriptor.name}"
                if len(missing) == len(members):
                    logger.warning(
                        "Union field %s references no declared types: %s",
                        path,
                        ", ".join(members),
                    )
                    continue
                msg = (
                    f"Invalid schema: {path} union references non-existent "
                    f"type(s) {', '.join(repr(m) for m in missing)}"
                )
                raise SchemaValidationError(msg, code="MISSING_TYPE", path=path)

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------

    def synthesize_backrefs(self) -> int:
        """Create missing inverse fields. Return how many were added.

        Idempotent: authored or previously synthesized fields are never
        replaced.
        """
        added = 0
        for entity_name, node in list(self._entities.items()):
            for descriptor in list(node.fields.values()):
                if not descriptor.is_relation or not descriptor.backref:
                    continue
                target = self._entities.get(descriptor.related_type or "")
                if target is None or descriptor.backref in target.fields:
                    continue
                target.fields[descriptor.backref] = FieldDescriptor(
                    name=descriptor.backref,
                    base_type=entity_name,
                    is_array=True,
                    is_optional=False,
                    is_relation=True,
                    related_type=entity_name,
                    backref=descriptor.name,
                )
                added += 1
                logger.debug(
                    "Synthesized inverse field %s.%s -> %s.%s",
                    target.name,
                    descriptor.backref,
                    entity_name,
                    descriptor.name,
                )
        return added

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def edges(self) -> list[Edge]:
        """Derive one edge per relationship field."""
        result: list[Edge] = []
        for entity_name, node in self._entities.items():
            for descriptor in node.relation_fields:
                if descriptor.is_array:
                    cardinality = (
                        Cardinality.many_to_many
                        if descriptor.backref
                        else Cardinality.one_to_many
                    )
                else:
                    cardinality = Cardinality.many_to_one

                direction = descriptor.effective_direction
                source, target = entity_name, descriptor.related_type or ""
                if direction is Direction.backward:
                    source, target = target, source

                result.append(
                    Edge(
                        from_type=source,
                        name=descriptor.name,
                        to_type=target,
                        backref=descriptor.backref,
                        cardinality=cardinality,
                        direction=direction,
                        match_mode=descriptor.effective_match_mode,
                    )
                )
        return result


def build_schema_graph(
    schema: Mapping[str, Mapping[str, Any]],
    *,
    default_fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> SchemaGraph:
    """Parse, validate, and synthesize a ``SchemaGraph`` from *schema*."""
    graph = SchemaGraph(
        parse_schema(schema),
        default_fuzzy_threshold=default_fuzzy_threshold,
    )
    graph.validate_references()
    graph.synthesize_backrefs()
    logger.debug("Built schema graph with %d entities", len(graph.entities))
    return graph
