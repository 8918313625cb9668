"""Storage domain: the Provider contract and bundled backends.

Exports are loaded lazily so the Neo4j driver is only imported when the
Neo4j backend is actually used.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "EntityNotFoundError",
    "MemoryProvider",
    "Neo4jProvider",
    "Provider",
    "Record",
    "SemanticSearchProvider",
    "has_semantic_search",
    "init_schema",
    "new_entity_id",
    "text_similarity",
]


_EXPORT_TO_MODULE = {
    "EntityNotFoundError": "entigraph.storage.provider",
    "Provider": "entigraph.storage.provider",
    "Record": "entigraph.storage.provider",
    "SemanticSearchProvider": "entigraph.storage.provider",
    "has_semantic_search": "entigraph.storage.provider",
    "new_entity_id": "entigraph.storage.provider",
    "MemoryProvider": "entigraph.storage.memory",
    "Neo4jProvider": "entigraph.storage.graph_store",
    "init_schema": "entigraph.storage.graph_store",
    "text_similarity": "entigraph.storage.similarity",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
