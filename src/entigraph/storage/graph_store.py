"""Neo4j-backed ``Provider``.

Every entity is a node carrying the ``Entity`` base label plus its type
label. Record keys are stored verbatim as node properties (including ``$``
metadata keys); the entity identifier lives in the ``$id`` property.
Relationships are ``RELATED`` edges tagged with the declaring field name.

This provider does not implement ``semantic_search``: fuzzy resolution
passes degrade to "no match" against it.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Mapping
from typing import Any

from neo4j import AsyncDriver
from neo4j import time as neo4j_time

from entigraph.storage.provider import ID_KEY
from entigraph.storage.provider import SCORE_KEY
from entigraph.storage.provider import TYPE_KEY
from entigraph.storage.provider import EntityNotFoundError
from entigraph.storage.provider import Record
from entigraph.storage.provider import new_entity_id
from entigraph.storage.similarity import substring_score

# ---------------------------------------------------------------------------
# Query safety guards
# ---------------------------------------------------------------------------

_LABEL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_ALLOWED_ORDERS = {"asc": "ASC", "desc": "DESC"}
_JSON_KEYS = "$json"

_STATEMENTS = [
    "CREATE CONSTRAINT entity_unique_id IF NOT EXISTS "
    "FOR (n:Entity) REQUIRE n.`$id` IS UNIQUE",
    "CREATE INDEX entity_type IF NOT EXISTS FOR (n:Entity) ON (n.`$type`)",
    "CREATE INDEX related_field IF NOT EXISTS FOR ()-[r:RELATED]-() ON (r.field)",
]


def _require_label(value: str) -> str:
    if not _LABEL_RE.match(value) or value == "Entity":
        msg = f"Invalid entity type: {value!r}"
        raise ValueError(msg)
    return value


async def init_schema(driver: AsyncDriver) -> None:
    """Create the identifier constraint and lookup indexes (idempotent)."""
    async with driver.session() as session:
        for stmt in _STATEMENTS:
            await session.run(stmt)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _needs_json(value: object) -> bool:
    if isinstance(value, dict):
        return True
    return isinstance(value, list) and any(isinstance(v, (dict, list)) for v in value)


def _serialize_props(data: Mapping[str, Any]) -> dict[str, Any]:
    """Convert a record to a Neo4j property map.

    - Drops ``None`` values (Neo4j doesn't store nulls).
    - JSON-encodes nested maps and lists of maps, remembering their keys.
    """
    props: dict[str, Any] = {}
    json_keys: list[str] = []
    for key, value in data.items():
        if key in (SCORE_KEY, _JSON_KEYS) or value is None:
            continue
        if _needs_json(value):
            props[key] = json.dumps(value)
            json_keys.append(key)
        else:
            props[key] = value
    if json_keys:
        props[_JSON_KEYS] = json_keys
    return props


def _neo4j_to_python(value: object) -> object:
    if isinstance(value, (neo4j_time.DateTime, neo4j_time.Date)):
        return value.to_native()
    return value


def _deserialize(props: Mapping[str, Any]) -> Record:
    json_keys = set(props.get(_JSON_KEYS) or [])
    record: Record = {}
    for key, value in props.items():
        if key == _JSON_KEYS:
            continue
        if key in json_keys and isinstance(value, str):
            record[key] = json.loads(value)
        else:
            record[key] = _neo4j_to_python(value)
    return record


# ---------------------------------------------------------------------------
# Neo4jProvider
# ---------------------------------------------------------------------------


class Neo4jProvider:
    """Async ``Provider`` on top of a Neo4j driver."""

    def __init__(self, driver: AsyncDriver) -> None:
        self._driver = driver

    async def _run_single(self, query: str, **params: Any) -> Record | None:
        async with self._driver.session() as session:
            result = await session.run(query, **params)
            record = await result.single()
            if record is None:
                return None
            return _deserialize(record["props"])

    async def _run_many(self, query: str, **params: Any) -> list[Record]:
        async with self._driver.session() as session:
            result = await session.run(query, **params)
            return [_deserialize(record["props"]) async for record in result]

    # ----- Reads -----

    async def get(self, type_name: str, entity_id: str) -> Record | None:
        label = _require_label(type_name)
        query = f"MATCH (n:Entity:{label} {{`$id`: $id}}) RETURN properties(n) AS props"
        return await self._run_single(query, id=entity_id)

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
        label = _require_label(type_name)
        direction = _ALLOWED_ORDERS.get(order)
        if direction is None:
            msg = f"Invalid order: {order!r}"
            raise ValueError(msg)

        params: dict[str, Any] = {}
        clauses = []
        for index, (key, value) in enumerate((where or {}).items()):
            params[f"k{index}"] = key
            params[f"v{index}"] = value
            # Equality on scalars, containment on list properties
            clauses.append(
                f"$v{index} IN CASE WHEN n[$k{index}] IS :: LIST<ANY> "
                f"THEN n[$k{index}] ELSE [n[$k{index}]] END"
            )

        query = f"MATCH (n:Entity:{label})"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " RETURN properties(n) AS props"
        if order_by:
            params["order_by"] = order_by
            query += f" ORDER BY n[$order_by] {direction}"
        if offset:
            params["offset"] = offset
            query += " SKIP $offset"
        if limit is not None:
            params["limit"] = limit
            query += " LIMIT $limit"
        return await self._run_many(query, **params)

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
        for record in await self.list(type_name):
            score = substring_score(query, record, fields)
            if score > 0 and score >= threshold:
                scored.append({**record, SCORE_KEY: score})
        scored.sort(key=lambda r: r[SCORE_KEY], reverse=True)
        return scored[:limit] if limit is not None else scored

    async def related(
        self,
        type_name: str,
        entity_id: str,
        field: str,
    ) -> list[Record]:
        label = _require_label(type_name)
        query = (
            f"MATCH (a:Entity:{label} {{`$id`: $id}})-[r:RELATED {{field: $field}}]->(b:Entity) "
            "RETURN properties(b) AS props "
            "ORDER BY r.seq"
        )
        return await self._run_many(query, id=entity_id, field=field)

    # ----- Writes -----

    async def create(
        self,
        type_name: str,
        entity_id: str | None,
        data: Mapping[str, Any],
    ) -> Record:
        label = _require_label(type_name)
        props = _serialize_props(data)
        props[ID_KEY] = entity_id or new_entity_id()
        props[TYPE_KEY] = type_name
        query = f"CREATE (n:Entity:{label} $props) RETURN properties(n) AS props"
        record = await self._run_single(query, props=props)
        if record is None:
            msg = f"Failed to create {type_name} {props[ID_KEY]!r}"
            raise RuntimeError(msg)
        return record

    async def update(
        self,
        type_name: str,
        entity_id: str,
        data: Mapping[str, Any],
    ) -> Record:
        label = _require_label(type_name)
        current = await self.get(type_name, entity_id)
        if current is None:
            msg = f"{type_name} {entity_id!r} not found"
            raise EntityNotFoundError(msg)
        props = _serialize_props({**current, **data})
        props[ID_KEY] = entity_id
        props[TYPE_KEY] = type_name
        query = (
            f"MATCH (n:Entity:{label} {{`$id`: $id}}) "
            "SET n = $props "
            "RETURN properties(n) AS props"
        )
        record = await self._run_single(query, id=entity_id, props=props)
        if record is None:
            msg = f"{type_name} {entity_id!r} not found"
            raise EntityNotFoundError(msg)
        return record

    async def delete(self, type_name: str, entity_id: str) -> bool:
        label = _require_label(type_name)
        query = (
            f"MATCH (n:Entity:{label} {{`$id`: $id}}) "
            "DETACH DELETE n RETURN count(n) AS cnt"
        )
        async with self._driver.session() as session:
            result = await session.run(query, id=entity_id)
            record = await result.single()
            return record["cnt"] > 0

    async def relate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        from_label = _require_label(from_type)
        to_label = _require_label(to_type)
        query = (
            f"MATCH (a:Entity:{from_label} {{`$id`: $from_id}}), "
            f"(b:Entity:{to_label} {{`$id`: $to_id}}) "
            "MERGE (a)-[r:RELATED {field: $field}]->(b) "
            "ON CREATE SET r.seq = $seq "
            "SET r += $meta "
            "RETURN type(r) AS t"
        )
        async with self._driver.session() as session:
            result = await session.run(
                query,
                from_id=from_id,
                to_id=to_id,
                field=field,
                seq=time.time_ns(),
                meta=_serialize_props(meta or {}),
            )
            record = await result.single()
        if record is None:
            msg = f"Cannot relate {from_type} {from_id!r} to {to_type} {to_id!r}"
            raise EntityNotFoundError(msg)

    async def unrelate(
        self,
        from_type: str,
        from_id: str,
        field: str,
        to_type: str,
        to_id: str,
    ) -> None:
        from_label = _require_label(from_type)
        to_label = _require_label(to_type)
        query = (
            f"MATCH (a:Entity:{from_label} {{`$id`: $from_id}})"
            "-[r:RELATED {field: $field}]->"
            f"(b:Entity:{to_label} {{`$id`: $to_id}}) "
            "DELETE r"
        )
        async with self._driver.session() as session:
            await session.run(query, from_id=from_id, to_id=to_id, field=field)
