"""Two-phase draft/resolve pipeline.

``draft()`` replaces every missing forward reference with a short
natural-language placeholder and records a ``ReferenceSpec`` for it.
``resolve()`` later turns each reference into a concrete identifier, either by
similarity search (fuzzy references) or by generating a new entity.
Failures are isolated per field when ``on_error="skip"``.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from collections.abc import Mapping
from typing import Any
from typing import Literal

from entigraph.audit import AuditEventType
from entigraph.audit import AuditLogger
from entigraph.config import ResolutionConfig
from entigraph.engine.generation import EntityGenerator
from entigraph.engine.resolution import read_hints
from entigraph.engine.values import GenerationRequest
from entigraph.models.edges import PendingEdge
from entigraph.models.records import Draft
from entigraph.models.records import ReferenceSpec
from entigraph.models.records import ResolutionErrorEntry
from entigraph.models.records import Resolved
from entigraph.observability import track_latency
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.fields import MatchMode
from entigraph.schema.fields import Operator
from entigraph.schema.graph import SchemaGraph
from entigraph.schema.graph import UnknownEntityTypeError
from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import SCORE_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import Provider
from entigraph.storage.provider import has_semantic_search

logger = logging.getLogger(__name__)

REFERENCE_RESOLUTION = "reference-resolution"
FUZZY_RESOLUTION = "fuzzy-resolution"

_DRAFTED_OPERATORS = frozenset({Operator.forward_exact, Operator.forward_fuzzy})

ChunkCallback = Callable[[str], Any]
ResolvedCallback = Callable[[str, str], Any]
OnError = Literal["throw", "skip"]


class DraftError(ValueError):
    """Raised when ``resolve()`` receives something that is not a draft."""


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def _phase_of(draft: Any) -> Any:
    if isinstance(draft, Mapping):
        return draft.get("phase", draft.get("$phase"))
    return getattr(draft, "phase", None)


class DraftPipeline:
    """Builds drafts and resolves their references."""

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
    # Phase one
    # ------------------------------------------------------------------

    async def draft(
        self,
        type_name: str,
        data: Mapping[str, Any],
        *,
        on_chunk: ChunkCallback | None = None,
    ) -> Draft:
        """Fill missing references with placeholders."""
        node = self._graph.node(type_name)
        values = self._generator.values
        result: dict[str, Any] = dict(data)
        refs: dict[str, ReferenceSpec | list[ReferenceSpec]] = {}
        context = await self._generator.build_context(node, result, type_name)

        for descriptor in node.fields.values():
            if descriptor.is_relation or not descriptor.is_prompt_field:
                continue
            if result.get(descriptor.name) is not None:
                continue
            result[descriptor.name] = await values.generate_value(
                GenerationRequest(
                    field_name=descriptor.name,
                    type_name=type_name,
                    hint=descriptor.base_type,
                    context=context,
                )
            )

        for descriptor in node.relation_fields:
            if descriptor.operator not in _DRAFTED_OPERATORS:
                continue
            if descriptor.is_optional or result.get(descriptor.name) is not None:
                continue

            texts = read_hints(result, descriptor.name)
            if not descriptor.is_array:
                texts = texts[:1]
            if not texts:
                texts = [
                    await values.describe_reference(
                        GenerationRequest(
                            field_name=descriptor.name,
                            type_name=descriptor.related_type or "",
                            hint=descriptor.prompt,
                            context=context,
                        )
                    )
                ]

            specs = [self._spec(descriptor, text) for text in texts]
            for text in texts:
                if on_chunk is not None:
                    await _maybe_await(on_chunk(text))
            if descriptor.is_array:
                result[descriptor.name] = texts
                refs[descriptor.name] = specs
            else:
                result[descriptor.name] = texts[0]
                refs[descriptor.name] = specs[0]

        logger.debug("Drafted %s with %d references", type_name, len(refs))
        return Draft(type=type_name, data=result, refs=refs)

    @staticmethod
    def _spec(descriptor: FieldDescriptor, text: str) -> ReferenceSpec:
        return ReferenceSpec(
            field=descriptor.name,
            operator=descriptor.operator or Operator.forward_exact,
            type=descriptor.related_type or "",
            match_mode=descriptor.effective_match_mode,
            resolved=False,
            prompt=descriptor.prompt,
            generated_text=text,
            union_types=descriptor.union_types,
            threshold=descriptor.threshold,
        )

    # ------------------------------------------------------------------
    # Phase two
    # ------------------------------------------------------------------

    async def resolve(
        self,
        draft: Draft | Mapping[str, Any],
        *,
        entity_id: str | None = None,
        on_resolved: ResolvedCallback | None = None,
        on_error: OnError = "throw",
    ) -> Resolved:
        """Turn every reference of *draft* into a concrete identifier."""
        if _phase_of(draft) != "draft":
            msg = "Cannot resolve entity: not a draft (missing phase 'draft')"
            raise DraftError(msg)
        if on_error not in ("throw", "skip"):
            msg = f"Invalid on_error mode: {on_error!r}"
            raise ValueError(msg)
        if not isinstance(draft, Draft):
            draft = Draft.model_validate(draft)

        data = dict(draft.data)
        errors: list[ResolutionErrorEntry] = []
        edges: list[PendingEdge] = []

        with track_latency("draft.resolve"):
            for field_name, refs in draft.refs.items():
                specs = refs if isinstance(refs, list) else [refs]
                try:
                    resolved = [
                        await self._resolve_reference(draft.type, spec, data, entity_id)
                        for spec in specs
                    ]
                except Exception as exc:
                    if on_error == "throw":
                        raise
                    logger.warning(
                        "Skipping unresolved reference %s.%s: %s",
                        draft.type,
                        field_name,
                        exc,
                    )
                    errors.append(ResolutionErrorEntry(field=field_name, error=str(exc)))
                    continue

                ids = [edge.target_id for edge in resolved]
                data[field_name] = ids if isinstance(refs, list) else ids[0]
                edges.extend(resolved)
                if on_resolved is not None:
                    for target_id in ids:
                        await _maybe_await(on_resolved(field_name, target_id))

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.DRAFT_RESOLVED,
                entity_type=draft.type,
                entity_id=entity_id,
                resolved_fields=len(draft.refs) - len(errors),
                errors=len(errors),
            )
        return Resolved(
            type=draft.type,
            data=data,
            errors=errors if (on_error == "skip" or errors) else None,
            pending_edges=edges,
        )

    @staticmethod
    def _provenance(spec: ReferenceSpec) -> str:
        if spec.match_mode is MatchMode.fuzzy:
            return FUZZY_RESOLUTION
        return REFERENCE_RESOLUTION

    async def _resolve_reference(
        self,
        parent_type: str,
        spec: ReferenceSpec,
        parent_data: Mapping[str, Any],
        parent_id: str | None,
    ) -> PendingEdge:
        if spec.type not in self._graph:
            msg = f"Unknown target type {spec.type!r} for field {spec.field!r}"
            raise UnknownEntityTypeError(msg)

        if spec.match_mode is MatchMode.fuzzy and has_semantic_search(self._provider):
            query = spec.generated_text or spec.prompt or spec.field
            best: dict[str, Any] | None = None
            for target_type in spec.union_types or (spec.type,):
                if target_type not in self._graph:
                    continue
                matches = await self._provider.semantic_search(
                    target_type,
                    query,
                    min_score=self._config.draft_min_score,
                    limit=1,
                )
                for match in matches:
                    match.setdefault(TYPE_KEY, target_type)
                    if best is None or match.get(SCORE_KEY, 0.0) > best.get(SCORE_KEY, 0.0):
                        best = match
            if best is not None and best.get(SCORE_KEY, 0.0) >= self._config.draft_min_score:
                return PendingEdge(
                    field=spec.field,
                    target_type=best[TYPE_KEY],
                    target_id=best[ID_KEY],
                    match_mode=MatchMode.fuzzy,
                    similarity=best.get(SCORE_KEY),
                    matched_type=best[TYPE_KEY],
                )

        child = await self._generator.generate(
            spec.type,
            hint=spec.generated_text or spec.prompt,
            parent_type=parent_type,
            parent_data=parent_data,
            parent_id=parent_id,
            source_field=spec.field,
            generated_by=parent_id or self._provenance(spec),
            nested_depth=self._config.nested_generation_depth,
        )
        return PendingEdge(
            field=spec.field,
            target_type=child[TYPE_KEY],
            target_id=child[ID_KEY],
            match_mode=spec.match_mode,
            matched_type=child[TYPE_KEY] if spec.match_mode is MatchMode.fuzzy else None,
        )
