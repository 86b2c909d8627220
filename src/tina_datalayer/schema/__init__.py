"""
Schema Package

User schema definitions, the schema compiler and the query-layer schema
derived from a compiled schema.
"""

from .compiler import compile_schema, compile_schema_file, find_schema_file, load_schema_definition
from .models import (
    CompiledCollection,
    CompiledField,
    CompiledSchema,
    FieldType,
    SchemaDefinition,
)
from .query_schema import build_query_schema, render_sdl

__all__ = [
    "compile_schema",
    "compile_schema_file",
    "find_schema_file",
    "load_schema_definition",
    "CompiledCollection",
    "CompiledField",
    "CompiledSchema",
    "FieldType",
    "SchemaDefinition",
    "build_query_schema",
    "render_sdl",
]
