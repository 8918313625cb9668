"""Provider contract consumed by the resolution, draft, and hydration layers.

Providers return plain ``dict`` records carrying ``$id`` and ``$type``. The
engine never reads ambient provider state: every component receives its
``Provider`` explicitly.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Any
from typing import Protocol
from typing import runtime_checkable

Record = dict[str, Any]

ID_KEY = "$id"
TYPE_KEY = "$type"
SCORE_KEY = "$score"


class EntityNotFoundError(LookupError):
    """Raised when updating or relating an entity that does not exist."""


def new_entity_id() -> str:
    """Return a fresh entity identifier."""
    return uuid.uuid4().hex


@runtime_checkable
class Provider(Protocol):
    """Storage operations required by the engine."""

    async def get(self, type_name: str, entity_id: str) -> Record | None: ...

    async def list(
        self,
        type_name: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        order: str = "asc",
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]: ...

    async def search(
        self,
        type_name: str,
        query: str,
        *,
        fields: list[str] | None = None,
        min_score: float | None = None,
        limit: int | None = None,
    ) -> list[Record]: ...

    async def create(
        self,
        type_name: str,
        entity_id: str | None,
        data: Mapping[str, Any],
    ) -> Record: ...

    async def update(
        self,
        type_name: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Record: ...

    async def delete(self, type_name: str, entity_id: str) -> bool: ...

    async def related(
        self,
        type_name: str,
        entity_id: str,
        field: str,
    ) -> list[Record]: ...

    async def relate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None: ...

    async def unrelate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
    ) -> None: ...


@runtime_checkable
class SemanticSearchProvider(Protocol):
    """Optional capability: similarity search annotated with ``$score``."""

    async def semantic_search(
        self,
        type_name: str,
        query: str,
        *,
        min_score: float = 0.0,
        limit: int = 10,
    ) -> list[Record]: ...


def has_semantic_search(provider: object) -> bool:
    """Return ``True`` when *provider* supports ``semantic_search``."""
    return isinstance(provider, SemanticSearchProvider)
