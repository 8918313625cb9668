"""Relationship resolution at entity-creation time.

Given an entity type, caller data, and a pre-generated identifier, the
``RelationshipResolver`` walks the entity's relationship fields in four
fixed passes:

    1. Exact forward (``->``): keep supplied ids, else generate the target
    2. Fuzzy forward (``~>``): reuse a similar existing target, else generate
    3. Exact backward (``<-``): filled on generated children, not here
    4. Fuzzy backward (``<~``): ground to existing data only, never generate

Passes run sequentially. Edges are queued while resolving and only
materialized after the entity itself has been persisted.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from entigraph.audit import AuditEventType
from entigraph.audit import AuditLogger
from entigraph.config import ResolutionConfig
from entigraph.engine.generation import GENERATED_KEY
from entigraph.engine.generation import SIMILARITY_KEY
from entigraph.engine.generation import EntityGenerator
from entigraph.models.edges import PendingEdge
from entigraph.observability import track_latency
from entigraph.schema.fields import TEXT_TYPES
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.fields import MatchMode
from entigraph.schema.fields import Operator
from entigraph.schema.graph import EntityNode
from entigraph.schema.graph import SchemaGraph
from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import SCORE_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import Provider
from entigraph.storage.provider import Record
from entigraph.storage.provider import has_semantic_search
from entigraph.storage.provider import new_entity_id

logger = logging.getLogger(__name__)

EDGE_TYPE = "Edge"
HINT_SUFFIX = "Hint"
SCORE_SUFFIX = "$score"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass
class ResolutionResult:
    """Resolved field values plus the edges to create after persistence."""

    data: dict[str, Any]
    pending_edges: list[PendingEdge] = field(default_factory=list)


@dataclass
class SearchMatch:
    record: Record
    score: float

    @property
    def id(self) -> str:
        return self.record[ID_KEY]

    @property
    def type(self) -> str:
        return self.record[TYPE_KEY]


def hint_key(field_name: str) -> str:
    return f"{field_name}{HINT_SUFFIX}"


def read_hints(data: Mapping[str, Any], field_name: str) -> list[str]:
    """Companion ``<field>Hint`` value as a list of non-empty strings."""
    raw = data.get(hint_key(field_name))
    if isinstance(raw, str):
        return [raw] if raw.strip() else []
    if isinstance(raw, (list, tuple)):
        return [item for item in raw if isinstance(item, str) and item.strip()]
    return []


def _supplied_ids(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class RelationshipResolver:
    """Resolves relationship fields and persists entities with their edges."""

    def __init__(
        self,
        graph: SchemaGraph,
        provider: Provider,
        generator: EntityGenerator,
        config: ResolutionConfig | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph
        self._provider = provider
        self._generator = generator
        self._config = config or ResolutionConfig()
        self._audit = audit_logger

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        type_name: str,
        data: Mapping[str, Any],
        *,
        entity_id: str | None = None,
        extra_edges: list[PendingEdge] | None = None,
        unresolved: Collection[str] = (),
    ) -> Record:
        """Resolve *data*, persist the entity, then materialize its edges.

        Fields named in *unresolved* are persisted as given: they are not
        resolved and no edge is queued for them.
        """
        self._graph.node(type_name)
        entity_id = entity_id or new_entity_id()
        with track_latency("entity.create"):
            result = await self.resolve(type_name, data, entity_id, unresolved=unresolved)
            pending = result.pending_edges + list(extra_edges or [])
            return await self.persist(type_name, entity_id, result.data, pending)

    async def resolve(
        self,
        type_name: str,
        data: Mapping[str, Any],
        entity_id: str,
        *,
        unresolved: Collection[str] = (),
    ) -> ResolutionResult:
        """Run the resolution passes without persisting anything but targets."""
        node = self._graph.node(type_name)
        result = ResolutionResult(data=dict(data))
        skipped = frozenset(unresolved)
        await self._resolve_forward_exact(node, result, entity_id, skipped)
        await self._resolve_forward_fuzzy(node, result, entity_id, skipped)
        await self._resolve_backward_fuzzy(node, result, skipped)
        return result

    async def persist(
        self,
        type_name: str,
        entity_id: str,
        data: Mapping[str, Any],
        pending_edges: list[PendingEdge],
    ) -> Record:
        """Create the entity, then relate every pending edge in order."""
        node = self._graph.node(type_name)
        record = await self._provider.create(
            type_name, entity_id, self._strip_hints(node, data)
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ENTITY_CREATED,
                entity_type=type_name,
                entity_id=entity_id,
                pending_edges=len(pending_edges),
            )

        seen: set[tuple[str, str]] = set()
        for edge in pending_edges:
            key = (edge.field, edge.target_id)
            if key in seen:
                continue
            seen.add(key)
            await self._materialize_edge(type_name, entity_id, edge)
        return record

    # ------------------------------------------------------------------
    # Pass 1: exact forward
    # ------------------------------------------------------------------

    async def _resolve_forward_exact(
        self,
        node: EntityNode,
        result: ResolutionResult,
        entity_id: str,
        skipped: frozenset[str] = frozenset(),
    ) -> None:
        for descriptor in node.relation_fields:
            if descriptor.operator is not Operator.forward_exact:
                continue
            if descriptor.name in skipped:
                continue
            current = result.data.get(descriptor.name)
            if current is not None:
                if isinstance(current, (list, tuple)):
                    target_type = descriptor.related_type or ""
                    for target_id in _supplied_ids(current):
                        result.pending_edges.append(
                            PendingEdge(
                                field=descriptor.name,
                                target_type=target_type,
                                target_id=target_id,
                            )
                        )
                continue
            if descriptor.is_optional:
                continue
            if descriptor.is_array and not self._generator.should_generate_array(
                node.name, descriptor
            ):
                logger.debug(
                    "Skipping generation for %s.%s: populated from %s",
                    node.name,
                    descriptor.name,
                    descriptor.related_type,
                )
                continue

            child = await self._generator.generate(
                descriptor.related_type or "",
                hint=descriptor.prompt,
                parent_type=node.name,
                parent_data=result.data,
                parent_id=entity_id,
                source_field=descriptor.name,
                generated_by=entity_id,
                nested_depth=self._config.nested_generation_depth,
            )
            child_id = child[ID_KEY]
            result.data[descriptor.name] = [child_id] if descriptor.is_array else child_id
            result.pending_edges.append(
                PendingEdge(
                    field=descriptor.name,
                    target_type=child[TYPE_KEY],
                    target_id=child_id,
                )
            )

    # ------------------------------------------------------------------
    # Pass 2: fuzzy forward
    # ------------------------------------------------------------------

    async def _resolve_forward_fuzzy(
        self,
        node: EntityNode,
        result: ResolutionResult,
        entity_id: str,
        skipped: frozenset[str] = frozenset(),
    ) -> None:
        for descriptor in node.relation_fields:
            if descriptor.operator is not Operator.forward_fuzzy:
                continue
            if descriptor.name in skipped:
                continue
            if result.data.get(descriptor.name) is not None:
                continue

            hints = read_hints(result.data, descriptor.name)
            if not hints:
                hints = [descriptor.prompt or descriptor.name]
            if not descriptor.is_array:
                hints = hints[:1]
            threshold = self._graph.fuzzy_threshold(node.name, descriptor)

            ids: list[str] = []
            for hint in hints:
                edge = await self._match_or_generate(
                    node, descriptor, hint, threshold, result.data, entity_id
                )
                ids.append(edge.target_id)
                result.pending_edges.append(edge)
            result.data[descriptor.name] = ids if descriptor.is_array else ids[0]

    async def _match_or_generate(
        self,
        node: EntityNode,
        descriptor: FieldDescriptor,
        hint: str,
        threshold: float,
        parent_data: Mapping[str, Any],
        entity_id: str,
    ) -> PendingEdge:
        match = await self._best_match(descriptor.target_types, hint, threshold)
        if match is not None:
            await self._provider.update(
                match.type,
                match.id,
                {GENERATED_KEY: False, SIMILARITY_KEY: match.score},
            )
            logger.debug(
                "Fuzzy match %s.%s hint=%r -> %s %s (score=%.3f)",
                node.name,
                descriptor.name,
                hint,
                match.type,
                match.id,
                match.score,
            )
            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.FUZZY_MATCHED,
                    entity_type=match.type,
                    entity_id=match.id,
                    source_type=node.name,
                    field=descriptor.name,
                    hint=hint,
                    similarity=match.score,
                )
            return PendingEdge(
                field=descriptor.name,
                target_type=match.type,
                target_id=match.id,
                match_mode=MatchMode.fuzzy,
                similarity=match.score,
                matched_type=match.type,
            )

        child = await self._generator.generate(
            descriptor.related_type or "",
            hint=hint,
            parent_type=node.name,
            parent_data=parent_data,
            parent_id=entity_id,
            source_field=descriptor.name,
            generated_by=entity_id,
            nested_depth=self._config.nested_generation_depth,
        )
        return PendingEdge(
            field=descriptor.name,
            target_type=child[TYPE_KEY],
            target_id=child[ID_KEY],
            match_mode=MatchMode.fuzzy,
            matched_type=child[TYPE_KEY],
        )

    # ------------------------------------------------------------------
    # Pass 4: fuzzy backward
    # ------------------------------------------------------------------

    async def _resolve_backward_fuzzy(
        self,
        node: EntityNode,
        result: ResolutionResult,
        skipped: frozenset[str] = frozenset(),
    ) -> None:
        for descriptor in node.relation_fields:
            if descriptor.operator is not Operator.backward_fuzzy:
                continue
            if descriptor.name in skipped:
                continue
            if result.data.get(descriptor.name) is not None:
                continue

            query = self._backward_query(node, descriptor, result.data)
            if not query:
                continue
            threshold = self._graph.fuzzy_threshold(node.name, descriptor)

            if descriptor.is_array:
                matches = await self._search(
                    descriptor.target_types,
                    query,
                    threshold,
                    limit=self._config.backward_match_limit,
                )
                if matches:
                    result.data[descriptor.name] = [m.id for m in matches]
                continue

            match = await self._best_match(descriptor.target_types, query, threshold)
            if match is not None:
                result.data[descriptor.name] = match.id
                result.data[f"{descriptor.name}{SCORE_SUFFIX}"] = match.score

    @staticmethod
    def _backward_query(
        node: EntityNode,
        descriptor: FieldDescriptor,
        data: Mapping[str, Any],
    ) -> str | None:
        hints = read_hints(data, descriptor.name)
        if hints:
            return " ".join(hints)
        if descriptor.prompt:
            return descriptor.prompt
        if descriptor.is_optional:
            return None
        values = [
            data[f.name]
            for f in node.scalar_fields
            if f.base_type in TEXT_TYPES
            and isinstance(data.get(f.name), str)
            and data[f.name]
        ]
        return " ".join(values) or None

    # ------------------------------------------------------------------
    # Search helpers
    # ------------------------------------------------------------------

    async def _search(
        self,
        target_types: tuple[str, ...],
        query: str,
        min_score: float,
        *,
        limit: int,
    ) -> list[SearchMatch]:
        if not has_semantic_search(self._provider):
            logger.debug("Provider lacks semantic_search; treating %r as no match", query)
            return []
        matches: list[SearchMatch] = []
        for target_type in target_types:
            if target_type not in self._graph:
                continue
            records = await self._provider.semantic_search(
                target_type, query, min_score=min_score, limit=limit
            )
            for record in records:
                score = float(record.get(SCORE_KEY, 0.0))
                if score >= min_score:
                    clean = {k: v for k, v in record.items() if k != SCORE_KEY}
                    clean.setdefault(TYPE_KEY, target_type)
                    matches.append(SearchMatch(record=clean, score=score))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    async def _best_match(
        self,
        target_types: tuple[str, ...],
        query: str,
        min_score: float,
    ) -> SearchMatch | None:
        matches = await self._search(target_types, query, min_score, limit=1)
        return matches[0] if matches else None

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _strip_hints(node: EntityNode, data: Mapping[str, Any]) -> dict[str, Any]:
        consumed = {hint_key(f.name) for f in node.relation_fields}
        return {k: v for k, v in data.items() if k not in consumed}

    async def _materialize_edge(
        self,
        type_name: str,
        entity_id: str,
        edge: PendingEdge,
    ) -> None:
        if edge.match_mode is MatchMode.fuzzy:
            meta: dict[str, Any] = {"matchMode": MatchMode.fuzzy.value}
            if edge.similarity is not None:
                meta["similarity"] = edge.similarity
            if edge.matched_type is not None:
                meta["matchedType"] = edge.matched_type
            await self._provider.relate(
                type_name, entity_id, edge.field, edge.target_type, edge.target_id, meta
            )
            edge_record: dict[str, Any] = {
                "from": type_name,
                "name": edge.field,
                "to": edge.target_type,
                "direction": "forward",
                "matchMode": MatchMode.fuzzy.value,
                "fromId": entity_id,
                "toId": edge.target_id,
            }
            if edge.similarity is not None:
                edge_record["similarity"] = edge.similarity
            if edge.matched_type is not None:
                edge_record["matchedType"] = edge.matched_type
            await self._provider.create(EDGE_TYPE, None, edge_record)
        else:
            await self._provider.relate(
                type_name, entity_id, edge.field, edge.target_type, edge.target_id
            )

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.RELATION_CREATED,
                entity_type=type_name,
                entity_id=entity_id,
                field=edge.field,
                target_type=edge.target_type,
                target_id=edge.target_id,
                match_mode=edge.match_mode.value,
                similarity=edge.similarity,
            )
