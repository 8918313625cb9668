"""In-process ``Provider`` backed by plain dictionaries.

Supports the optional ``semantic_search`` capability using deterministic
text similarity, which makes it the default backend for tests and local
experiments. Nothing is persisted across process restarts.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import SCORE_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import EntityNotFoundError
from entigraph.storage.provider import Record
from entigraph.storage.provider import new_entity_id
from entigraph.storage.similarity import record_similarity
from entigraph.storage.similarity import substring_score

logger = logging.getLogger(__name__)

_ORDERS = {"asc", "desc"}


def _strip_reserved(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in (ID_KEY, TYPE_KEY, SCORE_KEY)}


def _matches(record: Mapping[str, Any], where: Mapping[str, Any]) -> bool:
    for key, expected in where.items():
        actual = record.get(key)
        if actual == expected:
            continue
        if isinstance(actual, list) and expected in actual:
            continue
        return False
    return True


class MemoryProvider:
    """Dictionary storage keyed by ``type -> id``, relations keyed by field."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entities: dict[str, dict[str, dict[str, Any]]] = {}
        # (from_type, from_id, field) -> [(to_type, to_id, meta), ...]
        self._relations: dict[
            tuple[str, str, str], list[tuple[str, str, dict[str, Any]]]
        ] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _view(type_name: str, entity_id: str, data: Mapping[str, Any]) -> Record:
        return {**data, ID_KEY: entity_id, TYPE_KEY: type_name}

    def _all(self, type_name: str) -> list[Record]:
        store = self._entities.get(type_name, {})
        return [self._view(type_name, eid, data) for eid, data in store.items()]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, type_name: str, entity_id: str) -> Record | None:
        data = self._entities.get(type_name, {}).get(entity_id)
        if data is None:
            return None
        return self._view(type_name, entity_id, data)

    async def list(
        self,
        type_name: str,
        *,
        where: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        order: str = "asc",
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Record]:
        if order not in _ORDERS:
            msg = f"Invalid order: {order!r}"
            raise ValueError(msg)
        records = self._all(type_name)
        if where:
            records = [r for r in records if _matches(r, where)]
        if order_by:
            present = [r for r in records if r.get(order_by) is not None]
            missing = [r for r in records if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=order == "desc")
            records = present + missing
        if offset:
            records = records[offset:]
        if limit is not None:
            records = records[:limit]
        return records

    async def search(
        self,
        type_name: str,
        query: str,
        *,
        fields: list[str] | None = None,
        min_score: float | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        threshold = min_score if min_score is not None else 0.0
        scored = []
        for record in self._all(type_name):
            score = substring_score(query, record, fields)
            if score > 0 and score >= threshold:
                scored.append({**record, SCORE_KEY: score})
        scored.sort(key=lambda r: r[SCORE_KEY], reverse=True)
        return scored[:limit] if limit is not None else scored

    async def semantic_search(
        self,
        type_name: str,
        query: str,
        *,
        min_score: float = 0.0,
        limit: int = 10,
    ) -> list[Record]:
        scored = []
        for record in self._all(type_name):
            score = record_similarity(query, record)
            if score >= min_score and score > 0:
                scored.append({**record, SCORE_KEY: score})
        scored.sort(key=lambda r: r[SCORE_KEY], reverse=True)
        logger.debug(
            "semantic_search type=%s query=%r matches=%d",
            type_name,
            query,
            len(scored),
        )
        return scored[:limit]

    async def related(
        self,
        type_name: str,
        entity_id: str,
        field: str,
    ) -> list[Record]:
        links = self._relations.get((type_name, entity_id, field), [])
        records = []
        for to_type, to_id, _meta in links:
            record = await self.get(to_type, to_id)
            if record is not None:
                records.append(record)
        return records

    def relation_meta(
        self,
        type_name: str,
        entity_id: str,
        field: str,
    ) -> list[dict[str, Any]]:
        """Return ``{type, id, meta}`` for every link stored under *field*."""
        return [
            {"type": to_type, "id": to_id, "meta": dict(meta)}
            for to_type, to_id, meta in self._relations.get(
                (type_name, entity_id, field), []
            )
        ]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        type_name: str,
        entity_id: str | None,
        data: Mapping[str, Any],
    ) -> Record:
        entity_id = entity_id or new_entity_id()
        async with self._lock:
            store = self._entities.setdefault(type_name, {})
            if entity_id in store:
                msg = f"{type_name} {entity_id!r} already exists"
                raise ValueError(msg)
            store[entity_id] = _strip_reserved(data)
            return self._view(type_name, entity_id, store[entity_id])

    async def update(
        self,
        type_name: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Record:
        async with self._lock:
            current = self._entities.get(type_name, {}).get(entity_id)
            if current is None:
                msg = f"{type_name} {entity_id!r} not found"
                raise EntityNotFoundError(msg)
            for key, value in _strip_reserved(data).items():
                if value is None:
                    current.pop(key, None)
                else:
                    current[key] = value
            return self._view(type_name, entity_id, current)

    async def delete(self, type_name: str, entity_id: str) -> bool:
        async with self._lock:
            removed = self._entities.get(type_name, {}).pop(entity_id, None)
            if removed is None:
                return False
            for key in [k for k in self._relations if k[:2] == (type_name, entity_id)]:
                del self._relations[key]
            for key, links in self._relations.items():
                self._relations[key] = [
                    link for link in links if link[:2] != (type_name, entity_id)
                ]
            return True

    async def relate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        async with self._lock:
            if from_id not in self._entities.get(from_type, {}):
                msg = f"{from_type} {from_id!r} not found"
                raise EntityNotFoundError(msg)
            links = self._relations.setdefault((from_type, from_id, field), [])
            for index, (link_type, link_id, link_meta) in enumerate(links):
                if (link_type, link_id) == (to_type, to_id):
                    links[index] = (link_type, link_id, {**link_meta, **(meta or {})})
                    return
            links.append((to_type, to_id, dict(meta or {})))

    async def unrelate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
    ) -> None:
        async with self._lock:
            key = (from_type, from_id, field)
            links = self._relations.get(key)
            if not links:
                return
            self._relations[key] = [
                link for link in links if link[:2] != (to_type, to_id)
            ]
