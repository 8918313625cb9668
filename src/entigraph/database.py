"""Entity database facade.

``EntityDatabase`` binds one schema graph to one explicitly supplied
``Provider`` and wires the resolution, cascade, draft, and hydration layers
together. Nothing here is global: create as many databases as needed, each
with its own provider.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from collections.abc import Mapping
from typing import Any

from entigraph.audit import AuditLogger
from entigraph.config import CascadeConfig
from entigraph.config import ResolutionConfig
from entigraph.engine.cascade import CascadeGenerator
from entigraph.engine.cascade import CascadeOptions
from entigraph.engine.cascade import CascadeResult
from entigraph.engine.cascade import ErrorCallback
from entigraph.engine.cascade import ProgressCallback
from entigraph.engine.drafts import ChunkCallback
from entigraph.engine.drafts import DraftPipeline
from entigraph.engine.drafts import OnError
from entigraph.engine.drafts import ResolvedCallback
from entigraph.engine.generation import EntityGenerator
from entigraph.engine.resolution import RelationshipResolver
from entigraph.engine.values import ValueGenerator
from entigraph.hydration import Hydrated
from entigraph.hydration import hydrate
from entigraph.models.edges import Edge
from entigraph.models.records import Draft
from entigraph.models.records import Resolved
from entigraph.schema.graph import SchemaGraph
from entigraph.schema.graph import build_schema_graph
from entigraph.storage.provider import Provider
from entigraph.storage.provider import has_semantic_search
from entigraph.storage.provider import new_entity_id

logger = logging.getLogger(__name__)


class EntityDatabase:
    """Schema-aware entity operations over a ``Provider``."""

    def __init__(
        self,
        schema: Mapping[str, Mapping[str, Any]] | SchemaGraph,
        provider: Provider,
        *,
        values: ValueGenerator | None = None,
        resolution_config: ResolutionConfig | None = None,
        cascade_config: CascadeConfig | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._resolution_config = resolution_config or ResolutionConfig()
        self._cascade_config = cascade_config or CascadeConfig()
        if isinstance(schema, SchemaGraph):
            self.graph = schema
        else:
            self.graph = build_schema_graph(
                schema,
                default_fuzzy_threshold=self._resolution_config.default_fuzzy_threshold,
            )
        self.graph.validate_unions()
        self.provider = provider

        self.generator = EntityGenerator(
            self.graph, provider, values, audit_logger=audit_logger
        )
        self.resolver = RelationshipResolver(
            self.graph,
            provider,
            self.generator,
            self._resolution_config,
            audit_logger=audit_logger,
        )
        self.cascade = CascadeGenerator(
            self.graph,
            provider,
            self.generator,
            self._cascade_config,
            audit_logger=audit_logger,
        )
        self.drafts = DraftPipeline(
            self.graph,
            provider,
            self.generator,
            self._resolution_config,
            audit_logger=audit_logger,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        type_name: str,
        data: Mapping[str, Any] | None = None,
        *,
        entity_id: str | None = None,
        cascade: bool = False,
        max_depth: int | None = None,
        cascade_types: Collection[str] | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        stop_on_error: bool = False,
        draft_only: bool = False,
        on_chunk: ChunkCallback | None = None,
    ) -> Hydrated | Draft:
        """Resolve relationships, persist, and optionally cascade.

        With ``draft_only=True`` nothing is persisted: the ``Draft`` is
        returned for a later ``resolve()``.
        """
        if draft_only:
            return await self.draft(type_name, data, on_chunk=on_chunk)

        record = await self.resolver.create(
            type_name, data or {}, entity_id=entity_id
        )
        effective_depth = (
            max_depth
            if max_depth is not None
            else (self._cascade_config.default_max_depth if cascade else 0)
        )
        if effective_depth > 0:
            result = await self.run_cascade(
                type_name,
                record,
                max_depth=effective_depth,
                cascade_types=cascade_types,
                on_progress=on_progress,
                on_error=on_error,
                stop_on_error=stop_on_error,
            )
            record = result.root
        return hydrate(record, self.graph, self.provider)

    async def run_cascade(
        self,
        type_name: str,
        record: Mapping[str, Any],
        *,
        max_depth: int | None = None,
        cascade_types: Collection[str] | None = None,
        on_progress: ProgressCallback | None = None,
        on_error: ErrorCallback | None = None,
        stop_on_error: bool = False,
    ) -> CascadeResult:
        """Cascade from an already persisted entity."""
        return await self.cascade.run(
            type_name,
            dict(record),
            CascadeOptions(
                max_depth=max_depth,
                cascade_types=cascade_types,
                on_progress=on_progress,
                on_error=on_error,
                stop_on_error=stop_on_error,
            ),
        )

    # ------------------------------------------------------------------
    # Draft / resolve
    # ------------------------------------------------------------------

    async def draft(
        self,
        type_name: str,
        data: Mapping[str, Any] | None = None,
        *,
        on_chunk: ChunkCallback | None = None,
    ) -> Draft:
        return await self.drafts.draft(type_name, data or {}, on_chunk=on_chunk)

    async def resolve(
        self,
        draft: Draft | Mapping[str, Any],
        *,
        on_resolved: ResolvedCallback | None = None,
        on_error: OnError = "throw",
    ) -> Resolved:
        """Resolve *draft* and persist the entity.

        The returned ``Resolved.data`` is the persisted record. In ``skip``
        mode, fields listed in ``errors`` keep their placeholder text and get
        no relation.
        """
        entity_id = new_entity_id()
        resolved = await self.drafts.resolve(
            draft,
            entity_id=entity_id,
            on_resolved=on_resolved,
            on_error=on_error,
        )
        record = await self.resolver.create(
            resolved.type,
            resolved.data,
            entity_id=entity_id,
            extra_edges=resolved.pending_edges,
            unresolved=[entry.field for entry in resolved.errors or []],
        )
        return resolved.model_copy(update={"data": record})

    # ------------------------------------------------------------------
    # Reads and plain writes
    # ------------------------------------------------------------------

    async def get(self, type_name: str, entity_id: str) -> Hydrated | None:
        self.graph.node(type_name)
        record = await self.provider.get(type_name, entity_id)
        if record is None:
            return None
        return hydrate(record, self.graph, self.provider)

    async def list(
        self,
        type_name: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        order: str = "asc",
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Hydrated]:
        self.graph.node(type_name)
        records = await self.provider.list(
            type_name,
            where=where,
            order_by=order_by,
            order=order,
            limit=limit,
            offset=offset,
        )
        return [hydrate(r, self.graph, self.provider) for r in records]

    async def search(
        self,
        type_name: str,
        query: str,
        *,
        min_score: float | None = None,
        limit: int | None = None,
    ) -> list[Hydrated]:
        self.graph.node(type_name)
        records = await self.provider.search(
            type_name, query, min_score=min_score, limit=limit
        )
        return [hydrate(r, self.graph, self.provider) for r in records]

    async def semantic_search(
        self,
        type_name: str,
        query: str,
        *,
        min_score: float = 0.0,
        limit: int = 10,
    ) -> list[Hydrated]:
        """Similarity search; empty when the provider lacks the capability."""
        self.graph.node(type_name)
        if not has_semantic_search(self.provider):
            logger.debug("semantic_search unsupported by %s", type(self.provider).__name__)
            return []
        records = await self.provider.semantic_search(
            type_name, query, min_score=min_score, limit=limit
        )
        return [hydrate(r, self.graph, self.provider) for r in records]

    async def update(
        self,
        type_name: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Hydrated:
        self.graph.node(type_name)
        record = await self.provider.update(type_name, entity_id, data)
        return hydrate(record, self.graph, self.provider)

    async def delete(self, type_name: str, entity_id: str) -> bool:
        self.graph.node(type_name)
        return await self.provider.delete(type_name, entity_id)

    def edges(self) -> list[Edge]:
        """Schema-derived relationship edges."""
        return self.graph.edges()
