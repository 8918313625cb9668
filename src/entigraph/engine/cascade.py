"""Depth-bounded cascade generation.

Starting from a persisted root entity, the cascade walks forward (``->`` and
``~>``) relationship fields. Fields already holding identifiers are
descended into; empty ones receive one freshly generated child, linked and
recursed into. A field is only expanded while the depth of the entity
owning it is below ``max_depth``, so repeated runs never grow the tree past
that bound.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from collections.abc import Collection
from dataclasses import dataclass
from dataclasses import field
from typing import Any

from entigraph.audit import AuditEventType
from entigraph.audit import AuditLogger
from entigraph.config import CascadeConfig
from entigraph.engine.generation import EntityGenerator
from entigraph.models.records import CascadeErrorContext
from entigraph.models.records import CascadePhase
from entigraph.models.records import CascadeProgress
from entigraph.observability import track_latency
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.fields import Operator
from entigraph.schema.graph import SchemaGraph
from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import Provider
from entigraph.storage.provider import Record

logger = logging.getLogger(__name__)

_FORWARD_OPERATORS = frozenset({Operator.forward_exact, Operator.forward_fuzzy})

ProgressCallback = Callable[[CascadeProgress], Any]
ErrorCallback = Callable[[Exception, CascadeErrorContext], Any]


@dataclass
class CascadeOptions:
    """Per-call cascade settings."""

    max_depth: int | None = None
    cascade_types: Collection[str] | None = None
    on_progress: ProgressCallback | None = None
    on_error: ErrorCallback | None = None
    stop_on_error: bool = False


@dataclass
class CascadeResult:
    root: Record
    total_entities_created: int = 0
    types_generated: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class _CascadeState:
    max_depth: int
    options: CascadeOptions
    total_entities_created: int = 0
    types_generated: set[str] = field(default_factory=set)
    errors: list[str] = field(default_factory=list)
    aborted: bool = False


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def _linked_ids(value: Any) -> list[str]:
    if isinstance(value, str) and value:
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str) and item]
    return []


class CascadeGenerator:
    """Recursively generates descendants of an entity."""

    def __init__(
        self,
        graph: SchemaGraph,
        provider: Provider,
        generator: EntityGenerator,
        config: CascadeConfig | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._graph = graph
        self._provider = provider
        self._generator = generator
        self._config = config or CascadeConfig()
        self._audit = audit_logger

    async def run(
        self,
        type_name: str,
        record: Record,
        options: CascadeOptions | None = None,
    ) -> CascadeResult:
        """Cascade from *record*; return the refreshed root and counters."""
        options = options or CascadeOptions()
        max_depth = (
            options.max_depth
            if options.max_depth is not None
            else self._config.default_max_depth
        )
        state = _CascadeState(max_depth=max(max_depth, 0), options=options)

        with track_latency("cascade.run"):
            try:
                await self._expand(type_name, record, 0, state)
            except Exception:
                await self._emit(state, CascadePhase.error, 0, type_name)
                raise
            await self._emit(state, CascadePhase.complete, 0, type_name)

        root = await self._provider.get(type_name, record[ID_KEY]) or record
        logger.info(
            "Cascade from %s %s created %d entities",
            type_name,
            record[ID_KEY],
            state.total_entities_created,
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.CASCADE_RUN,
                entity_type=type_name,
                entity_id=record[ID_KEY],
                max_depth=state.max_depth,
                total_entities_created=state.total_entities_created,
                types_generated=sorted(state.types_generated),
            )
        return CascadeResult(
            root=root,
            total_entities_created=state.total_entities_created,
            types_generated=sorted(state.types_generated),
            errors=state.errors,
        )

    # ------------------------------------------------------------------
    # Recursion
    # ------------------------------------------------------------------

    def _allowed(self, descriptor: FieldDescriptor, state: _CascadeState) -> bool:
        allow = state.options.cascade_types
        if allow is None:
            return True
        return descriptor.related_type in allow

    async def _expand(
        self,
        type_name: str,
        record: Record,
        depth: int,
        state: _CascadeState,
    ) -> None:
        if depth >= state.max_depth:
            return
        node = self._graph.node(type_name)
        for descriptor in node.relation_fields:
            if descriptor.operator not in _FORWARD_OPERATORS:
                continue
            if not self._allowed(descriptor, state):
                continue

            await self._emit(
                state, CascadePhase.generating, depth, type_name, descriptor.name
            )
            try:
                record = await self._expand_field(
                    type_name, record, descriptor, depth, state
                )
            except Exception as exc:
                if state.aborted:
                    raise
                await self._report_error(exc, type_name, depth, descriptor, state)
                if state.options.stop_on_error:
                    state.aborted = True
                    raise

    async def _expand_field(
        self,
        type_name: str,
        record: Record,
        descriptor: FieldDescriptor,
        depth: int,
        state: _CascadeState,
    ) -> Record:
        existing = _linked_ids(record.get(descriptor.name))
        if existing:
            for child_id in existing:
                child = await self._fetch(descriptor, child_id)
                if child is not None:
                    await self._expand(child[TYPE_KEY], child, depth + 1, state)
            return record

        target_type = descriptor.related_type or ""
        child = await self._generator.generate(
            target_type,
            hint=descriptor.prompt,
            parent_type=type_name,
            parent_data=record,
            parent_id=record[ID_KEY],
            source_field=descriptor.name,
            generated_by=record[ID_KEY],
        )
        child_id = child[ID_KEY]
        value = [child_id] if descriptor.is_array else child_id
        record = await self._provider.update(
            type_name, record[ID_KEY], {descriptor.name: value}
        )
        await self._provider.relate(
            type_name, record[ID_KEY], descriptor.name, target_type, child_id
        )
        state.total_entities_created += 1
        state.types_generated.add(target_type)
        logger.debug(
            "Cascade depth=%d %s.%s -> %s %s",
            depth,
            type_name,
            descriptor.name,
            target_type,
            child_id,
        )
        await self._expand(target_type, child, depth + 1, state)
        return record

    async def _fetch(self, descriptor: FieldDescriptor, entity_id: str) -> Record | None:
        for target_type in descriptor.target_types:
            if target_type not in self._graph:
                continue
            found = await self._provider.get(target_type, entity_id)
            if found is not None:
                return found
        return None

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def _emit(
        self,
        state: _CascadeState,
        phase: CascadePhase,
        depth: int,
        type_name: str,
        field_name: str | None = None,
    ) -> None:
        callback = state.options.on_progress
        if callback is None:
            return
        progress = CascadeProgress(
            phase=phase,
            depth=depth,
            current_type=type_name,
            field=field_name,
            total_entities_created=state.total_entities_created,
            types_generated=sorted(state.types_generated),
        )
        await _maybe_await(callback(progress))

    async def _report_error(
        self,
        exc: Exception,
        type_name: str,
        depth: int,
        descriptor: FieldDescriptor,
        state: _CascadeState,
    ) -> None:
        state.errors.append(f"{type_name}.{descriptor.name}: {exc}")
        logger.warning(
            "Cascade failed at depth=%d on %s.%s: %s",
            depth,
            type_name,
            descriptor.name,
            exc,
        )
        callback = state.options.on_error
        if callback is None:
            return
        context = CascadeErrorContext(type=type_name, depth=depth, field=descriptor.name)
        await _maybe_await(callback(exc, context))
