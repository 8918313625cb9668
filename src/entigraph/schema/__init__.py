"""Schema domain: field-definition parsing and the schema graph.

Exports are loaded lazily to avoid import cycles between the schema and
models packages.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "Direction",
    "EntityNode",
    "FieldDescriptor",
    "MatchMode",
    "Operator",
    "SchemaGraph",
    "SchemaValidationError",
    "UnknownEntityTypeError",
    "build_schema_graph",
    "parse_field",
    "parse_operator",
    "parse_schema",
]


_EXPORT_TO_MODULE = {
    "Direction": "entigraph.schema.fields",
    "FieldDescriptor": "entigraph.schema.fields",
    "MatchMode": "entigraph.schema.fields",
    "Operator": "entigraph.schema.fields",
    "SchemaValidationError": "entigraph.schema.fields",
    "parse_field": "entigraph.schema.fields",
    "parse_operator": "entigraph.schema.fields",
    "EntityNode": "entigraph.schema.graph",
    "SchemaGraph": "entigraph.schema.graph",
    "UnknownEntityTypeError": "entigraph.schema.graph",
    "build_schema_graph": "entigraph.schema.graph",
    "parse_schema": "entigraph.schema.graph",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
