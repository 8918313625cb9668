"""Lazy relation access on persisted records.

``hydrate()`` wraps a raw provider record in a ``Hydrated`` object. Nothing
is fetched up front: relationship fields are only resolved when
``get_relation()`` is awaited, and every record it returns is itself
hydrated. Forward single relations are also exposed synchronously as a
``RelationRef`` carrying the stored identifier.
"""

from __future__ import annotations

from collections.abc import Iterator
from collections.abc import Mapping
from typing import Any

from entigraph.schema.fields import Direction
from entigraph.schema.fields import FieldDescriptor
from entigraph.schema.graph import EntityNode
from entigraph.schema.graph import SchemaGraph
from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import Provider
from entigraph.storage.provider import Record


def _stored_ids(value: Any) -> list[str]:
    if isinstance(value, str) and value:
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str) and item]
    return []


class RelationRef:
    """A forward single relation: the stored id plus a way to load it."""

    __slots__ = ("_graph", "_id", "_provider", "_target_types")

    def __init__(
        self,
        entity_id: str,
        target_types: tuple[str, ...],
        graph: SchemaGraph,
        provider: Provider,
    ) -> None:
        self._id = entity_id
        self._target_types = target_types
        self._graph = graph
        self._provider = provider

    @property
    def id(self) -> str:
        return self._id

    @property
    def target_types(self) -> tuple[str, ...]:
        return self._target_types

    async def resolve(self) -> Hydrated | None:
        """Load the related record, trying each union member in order."""
        for target_type in self._target_types:
            if target_type not in self._graph:
                continue
            record = await self._provider.get(target_type, self._id)
            if record is not None:
                return Hydrated(
                    record,
                    self._graph,
                    self._provider,
                    matched_type=target_type if len(self._target_types) > 1 else None,
                )
        return None

    def __str__(self) -> str:
        return self._id

    def __repr__(self) -> str:
        return f"RelationRef(id={self._id!r}, types={list(self._target_types)!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RelationRef):
            return self._id == other._id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._id)


class Hydrated(Mapping[str, Any]):
    """Read-only view of a record with deferred relation accessors."""

    def __init__(
        self,
        record: Mapping[str, Any],
        graph: SchemaGraph,
        provider: Provider,
        *,
        matched_type: str | None = None,
    ) -> None:
        self._record: Record = dict(record)
        self._graph = graph
        self._provider = provider
        self.matched_type = matched_type

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._record[ID_KEY]

    @property
    def type(self) -> str:
        return self._record[TYPE_KEY]

    @property
    def node(self) -> EntityNode:
        return self._graph.node(self.type)

    @property
    def record(self) -> Record:
        """A copy of the underlying raw record."""
        return dict(self._record)

    def __getitem__(self, key: str) -> Any:
        return self._record[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._record)

    def __len__(self) -> int:
        return len(self._record)

    def __repr__(self) -> str:
        return f"Hydrated({self._record.get(TYPE_KEY)!r}, id={self._record.get(ID_KEY)!r})"

    @property
    def relation_fields(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.node.relation_fields)

    def _descriptor(self, field_name: str) -> FieldDescriptor:
        descriptor = self.node.fields.get(field_name)
        if descriptor is None or not descriptor.is_relation:
            msg = f"{self.type}.{field_name} is not a relationship field"
            raise KeyError(msg)
        return descriptor

    def _wrap(self, record: Record, fallback_type: str) -> Hydrated:
        if TYPE_KEY not in record:
            record = {**record, TYPE_KEY: fallback_type}
        return Hydrated(record, self._graph, self._provider)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def ref(self, field_name: str) -> RelationRef | None:
        """Forward single relation as a ``RelationRef``, or ``None`` if unset."""
        descriptor = self._descriptor(field_name)
        if descriptor.is_array or descriptor.effective_direction is Direction.backward:
            msg = f"{self.type}.{field_name} is not a forward single relation"
            raise ValueError(msg)
        value = self._record.get(field_name)
        if not isinstance(value, str) or not value:
            return None
        return RelationRef(value, descriptor.target_types, self._graph, self._provider)

    async def get_relation(self, field_name: str) -> Hydrated | list[Hydrated] | None:
        """Resolve *field_name*: one record, a list, or ``None``."""
        descriptor = self._descriptor(field_name)
        backward = descriptor.effective_direction is Direction.backward
        if descriptor.is_array:
            if backward:
                return await self._backward_many(descriptor)
            return await self._forward_many(descriptor)
        if backward:
            return await self._backward_one(descriptor)
        ref = self.ref(field_name)
        return await ref.resolve() if ref is not None else None

    async def _fetch_ids(self, descriptor: FieldDescriptor, ids: list[str]) -> list[Hydrated]:
        results = []
        for entity_id in ids:
            ref = RelationRef(entity_id, descriptor.target_types, self._graph, self._provider)
            hydrated = await ref.resolve()
            if hydrated is not None:
                results.append(hydrated)
        return results

    async def _forward_many(self, descriptor: FieldDescriptor) -> list[Hydrated]:
        target_type = descriptor.related_type or ""
        records = await self._provider.related(self.type, self.id, descriptor.name)
        if records:
            return [self._wrap(r, target_type) for r in records]

        stored = _stored_ids(self._record.get(descriptor.name))
        if stored:
            return await self._fetch_ids(descriptor, stored)

        # Inverse side of a dotted declaration: the other end stores the id
        if descriptor.operator is None and descriptor.backref and target_type in self._graph:
            records = await self._provider.list(
                target_type, where={descriptor.backref: self.id}
            )
            return [self._wrap(r, target_type) for r in records]
        return []

    async def _backward_one(self, descriptor: FieldDescriptor) -> Hydrated | None:
        stored = _stored_ids(self._record.get(descriptor.name))
        if stored:
            found = await self._fetch_ids(descriptor, stored[:1])
            return found[0] if found else None

        for target_type in descriptor.target_types:
            if target_type not in self._graph:
                continue
            inverse_fields = [
                f.name
                for f in self._graph.node(target_type).relation_fields
                if f.is_array
                and f.effective_direction is Direction.forward
                and self.type in f.target_types
            ]
            if not inverse_fields:
                continue
            for candidate in await self._provider.list(target_type):
                for name in inverse_fields:
                    if self.id in _stored_ids(candidate.get(name)):
                        return self._wrap(candidate, target_type)
        return None

    def _infer_backref(self, descriptor: FieldDescriptor, target_type: str) -> str:
        if descriptor.backref:
            return descriptor.backref
        for candidate in self._graph.node(target_type).relation_fields:
            if (
                candidate.effective_direction is Direction.forward
                and self.type in candidate.target_types
            ):
                return candidate.name
        return self.type.lower()

    async def _backward_many(self, descriptor: FieldDescriptor) -> list[Hydrated]:
        stored = _stored_ids(self._record.get(descriptor.name))
        if stored:
            return await self._fetch_ids(descriptor, stored)

        target_type = descriptor.related_type or ""
        if target_type not in self._graph:
            return []
        backref = self._infer_backref(descriptor, target_type)
        records = await self._provider.list(target_type, where={backref: self.id})
        return [self._wrap(r, target_type) for r in records]


def hydrate(record: Mapping[str, Any], graph: SchemaGraph, provider: Provider) -> Hydrated:
    """Wrap *record* with lazy relation accessors."""
    return Hydrated(record, graph, provider)
