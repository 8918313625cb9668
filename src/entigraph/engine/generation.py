"""Synthesis of related entities.

``EntityGenerator`` fills a new entity's scalar fields through a
``ValueGenerator``, links it back to the entity that caused it (exact
backward fields pointing at the parent type receive the parent's
pre-generated identifier), optionally pre-creates its own required
exact-forward relations, and persists it through the ``Provider``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from entigraph.audit import AuditEventType
from entigraph.audit import AuditLogger
from entigraph.engine.values import NAME_FIELDS
from entigraph.engine.values import GenerationRequest
from entigraph.engine.values import PlaceholderValueGenerator
from entigraph.engine.values import ValueGenerator
from entigraph.models.edges import PendingEdge
from entigraph.schema.fields import TEXT_TYPES
from entigraph.schema.fields import Direction
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.fields import Operator
from entigraph.schema.graph import EntityNode
from entigraph.schema.graph import SchemaGraph
from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import Provider
from entigraph.storage.provider import Record
from entigraph.storage.provider import new_entity_id

logger = logging.getLogger(__name__)

GENERATED_KEY = "$generated"
GENERATED_BY_KEY = "$generatedBy"
SOURCE_FIELD_KEY = "$sourceField"
SIMILARITY_KEY = "$similarity"

_CONTEXT_OPTIONS = ("$instructions", "$context")
_TEMPLATE_RE = re.compile(r"\{([^{}]+)\}")


class EntityGenerator:
    """Creates and persists synthetic entities for relationship fields."""

    def __init__(
        self,
        graph: SchemaGraph,
        provider: Provider,
        values: ValueGenerator | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph
        self._provider = provider
        self._values = values or PlaceholderValueGenerator()
        self._audit = audit_logger

    @property
    def values(self) -> ValueGenerator:
        return self._values

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def should_generate_array(self, source_type: str, descriptor: FieldDescriptor) -> bool:
        """Decide whether an exact-forward array field gets a generated entry.

        Generation is skipped when the target declares a backward reference
        to *source_type* and also has required scalar fields: such
        relationships are populated from the other side.
        """
        if descriptor.is_union:
            return True
        target = self._graph.node(descriptor.related_type or "")
        has_backward_ref = any(
            f.is_relation
            and f.effective_direction is Direction.backward
            and source_type in f.target_types
            for f in target.fields.values()
        )
        has_required_scalars = any(
            not f.is_relation and not f.is_optional and not f.is_prompt_field
            for f in target.fields.values()
        )
        return not (has_backward_ref and has_required_scalars)

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def _relation_targets(self, type_name: str | None, field_name: str) -> tuple[str, ...]:
        if type_name is None or type_name not in self._graph:
            return ()
        descriptor = self._graph.node(type_name).fields.get(field_name)
        if descriptor is None or not descriptor.is_relation:
            return ()
        return tuple(t for t in descriptor.target_types if t in self._graph)

    async def resolve_context_path(
        self,
        path: str,
        data: Mapping[str, Any],
        type_name: str | None,
    ) -> Any:
        """Follow a dotted *path* through *data*, loading related records.

        Intermediate relationship fields holding an identifier are fetched
        from the provider so ``author.name`` reads the related author.
        """
        current: Any = data
        current_type = type_name
        parts = path.split(".")
        for index, part in enumerate(parts):
            if not isinstance(current, Mapping):
                return None
            value = current.get(part)
            targets = self._relation_targets(current_type, part)
            current, current_type = value, targets[0] if targets else None
            if index == len(parts) - 1 or not isinstance(value, str):
                continue
            for target_type in targets:
                fetched = await self._provider.get(target_type, value)
                if fetched is not None:
                    current, current_type = fetched, target_type
                    break
        return current

    async def resolve_instructions(
        self,
        template: str,
        data: Mapping[str, Any],
        type_name: str | None,
    ) -> str:
        """Substitute ``{field}`` and ``{relation.field}`` variables.

        Unknown variables resolve to the empty string.
        """
        pieces: list[str] = []
        last = 0
        for match in _TEMPLATE_RE.finditer(template):
            value = await self.resolve_context_path(match.group(1).strip(), data, type_name)
            pieces.append(template[last : match.start()])
            pieces.append("" if value is None else str(value))
            last = match.end()
        pieces.append(template[last:])
        return "".join(pieces)

    async def build_context(
        self,
        node: EntityNode,
        parent_data: Mapping[str, Any],
        parent_type: str | None = None,
    ) -> str | None:
        """Entity-level instructions plus the parent's display name.

        Template variables in the instructions are read from *parent_data*,
        typed as *parent_type*.
        """
        parts: list[str] = []
        for key in _CONTEXT_OPTIONS:
            value = node.option(key)
            if not isinstance(value, str) or not value.strip():
                continue
            resolved = await self.resolve_instructions(value, parent_data, parent_type)
            resolved = " ".join(resolved.split())
            if resolved:
                parts.append(resolved)
        for key in sorted(NAME_FIELDS):
            value = parent_data.get(key)
            if isinstance(value, str) and value:
                parts.append(value)
                break
        return " ".join(parts) or None

    # ------------------------------------------------------------------
    # Field generation
    # ------------------------------------------------------------------

    async def generate_fields(
        self,
        type_name: str,
        *,
        hint: str | None = None,
        parent_type: str | None = None,
        parent_data: Mapping[str, Any] | None = None,
        parent_id: str | None = None,
    ) -> dict[str, Any]:
        """Scalars plus the exact backward link to the parent."""
        node = self._graph.node(type_name)
        parent_data = parent_data or {}
        context = await self.build_context(node, parent_data, parent_type)
        data: dict[str, Any] = {}

        for descriptor in node.fields.values():
            if descriptor.is_relation:
                if (
                    descriptor.operator is Operator.backward_exact
                    and parent_id
                    and parent_type in descriptor.target_types
                ):
                    data[descriptor.name] = (
                        [parent_id] if descriptor.is_array else parent_id
                    )
                continue
            value = await self._scalar_value(
                type_name,
                descriptor,
                hint=hint,
                context=context,
                parent_type=parent_type,
                parent_data=parent_data,
            )
            if value is not None:
                data[descriptor.name] = value
        return data

    async def _scalar_value(
        self,
        type_name: str,
        descriptor: FieldDescriptor,
        *,
        hint: str | None,
        context: str | None,
        parent_type: str | None,
        parent_data: Mapping[str, Any],
    ) -> Any:
        if descriptor.is_prompt_field:
            request = GenerationRequest(
                field_name=descriptor.name,
                type_name=type_name,
                hint=descriptor.base_type,
                context=" ".join(p for p in (hint, context) if p) or None,
                parent_type=parent_type,
                parent_data=parent_data,
            )
            return await self._values.generate_value(request)
        if descriptor.is_optional:
            return None
        if descriptor.base_type in TEXT_TYPES:
            request = GenerationRequest(
                field_name=descriptor.name,
                type_name=type_name,
                hint=hint,
                context=context,
                parent_type=parent_type,
                parent_data=parent_data,
            )
            value = await self._values.generate_value(request)
            return [value] if descriptor.is_array else value
        if descriptor.base_type == "number":
            return [] if descriptor.is_array else 0
        if descriptor.base_type == "boolean":
            return [] if descriptor.is_array else False
        return None

    # ------------------------------------------------------------------
    # Entity generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        type_name: str,
        *,
        hint: str | None = None,
        parent_type: str | None = None,
        parent_data: Mapping[str, Any] | None = None,
        parent_id: str | None = None,
        source_field: str | None = None,
        generated_by: str | None = None,
        nested_depth: int = 0,
    ) -> Record:
        """Synthesize, persist, and return one entity of *type_name*.

        With ``nested_depth > 0`` the entity's own required exact-forward
        relations are generated first (each one level shallower) so the
        entity is created with their identifiers already in place.
        """
        node = self._graph.node(type_name)
        entity_id = new_entity_id()
        data = await self.generate_fields(
            type_name,
            hint=hint,
            parent_type=parent_type,
            parent_data=parent_data,
            parent_id=parent_id,
        )

        nested: list[PendingEdge] = []
        if nested_depth > 0:
            for descriptor in node.relation_fields:
                if (
                    descriptor.operator is not Operator.forward_exact
                    or descriptor.is_optional
                    or data.get(descriptor.name) is not None
                ):
                    continue
                if descriptor.is_array and not self.should_generate_array(
                    type_name, descriptor
                ):
                    continue
                child = await self.generate(
                    descriptor.related_type or "",
                    parent_type=type_name,
                    parent_data=data,
                    parent_id=entity_id,
                    source_field=descriptor.name,
                    generated_by=entity_id,
                    nested_depth=nested_depth - 1,
                )
                child_id = child[ID_KEY]
                data[descriptor.name] = [child_id] if descriptor.is_array else child_id
                nested.append(
                    PendingEdge(
                        field=descriptor.name,
                        target_type=child[TYPE_KEY],
                        target_id=child_id,
                    )
                )

        data[GENERATED_KEY] = True
        if generated_by:
            data[GENERATED_BY_KEY] = generated_by
        if source_field:
            data[SOURCE_FIELD_KEY] = source_field

        record = await self._provider.create(type_name, entity_id, data)
        for edge in nested:
            await self._provider.relate(
                type_name, entity_id, edge.field, edge.target_type, edge.target_id
            )
        logger.debug(
            "Generated %s %s (source_field=%s, nested=%d)",
            type_name,
            entity_id,
            source_field,
            len(nested),
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ENTITY_GENERATED,
                entity_type=type_name,
                entity_id=entity_id,
                generated_by=generated_by,
                source_field=source_field,
            )
        return record
