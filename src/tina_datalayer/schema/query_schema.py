"""
Query-Layer Schema

Derives the document handed to client generation: the queryable shape of
every collection, built from a CompiledSchema plus the shape of the content
currently indexed. The output is deterministic for a given schema and index
state (collections and fields in declaration order, keys sorted on dump).

This step only reads from the store.
"""

from __future__ import annotations

from typing import Any, Dict, List

from .models import CompiledCollection, CompiledField, CompiledSchema, FieldType
from ..store.base import Store


GRAPHQL_SCALARS = {
    FieldType.STRING: "String",
    FieldType.NUMBER: "Float",
    FieldType.BOOLEAN: "Boolean",
    FieldType.DATETIME: "String",
    FieldType.RICH_TEXT: "String",
    FieldType.IMAGE: "String",
}


def type_name(*parts: str) -> str:
    """PascalCase a collection (and nested field) name into a type name."""
    out = []
    for part in parts:
        for chunk in part.replace("-", "_").split("_"):
            if chunk:
                out.append(chunk[0].upper() + chunk[1:])
    return "".join(out)


def _graphql_type(
    field: CompiledField,
    owner: str,
    schema: CompiledSchema,
) -> str:
    if field.type is FieldType.OBJECT:
        base = type_name(owner, field.name)
    elif field.type is FieldType.REFERENCE:
        base = type_name(schema.collection(field.references).name)
    else:
        base = GRAPHQL_SCALARS[field.type]

    if field.list:
        base = f"[{base}!]"
    if field.required:
        base += "!"
    return base


def _describe_fields(
    fields: tuple,
    owner: str,
    schema: CompiledSchema,
    presence: Dict[str, int],
    prefix: str = "",
) -> List[Dict[str, Any]]:
    described = []
    for field in fields:
        dotted = f"{prefix}{field.name}"
        entry: Dict[str, Any] = {
            "name": field.name,
            "type": field.type.value,
            "graphqlType": _graphql_type(field, owner, schema),
            "required": field.required,
            "list": field.list,
            "indexed": field.indexed,
            "presentIn": presence.get(dotted, 0),
        }
        if field.is_body:
            entry["isBody"] = True
        if field.references:
            entry["references"] = field.references
        if field.fields:
            entry["fields"] = _describe_fields(
                field.fields,
                type_name(owner, field.name),
                schema,
                presence,
                prefix=f"{dotted}.",
            )
        described.append(entry)
    return described


def _count_presence(fields: Dict[str, Any], presence: Dict[str, int], prefix: str = "") -> None:
    for name, value in fields.items():
        if value is None:
            continue
        dotted = f"{prefix}{name}"
        presence[dotted] = presence.get(dotted, 0) + 1
        if isinstance(value, dict):
            _count_presence(value, presence, prefix=f"{dotted}.")


def _describe_collection(
    collection: CompiledCollection,
    schema: CompiledSchema,
    store: Store,
) -> Dict[str, Any]:
    presence: Dict[str, int] = {}
    count = 0
    for record in store.scan(collection.name):
        count += 1
        _count_presence(record.fields, presence)

    return {
        "name": collection.name,
        "typeName": type_name(collection.name),
        "label": collection.label,
        "globs": list(collection.globs),
        "format": collection.format,
        "documentCount": count,
        "fields": _describe_fields(
            collection.fields,
            type_name(collection.name),
            schema,
            presence,
        ),
    }


def build_query_schema(schema: CompiledSchema, store: Store) -> Dict[str, Any]:
    """
    Build the query-layer schema document.

    Parameters
    ----------
    schema : CompiledSchema
        Active compiled schema.

    store : Store
        Open store holding the content indexed under `schema`.
    """
    return {
        "version": schema.version,
        "collections": [
            _describe_collection(collection, schema, store)
            for collection in schema.collections
        ],
    }


# ---------------------------------------------------------------------
# SDL Rendering
# ---------------------------------------------------------------------

def _render_object_types(
    owner: str,
    fields: List[Dict[str, Any]],
    out: List[str],
    with_id: bool,
) -> None:
    lines = [f"type {owner} {{"]
    if with_id:
        lines.append("  id: ID!")
        lines.append("  _collection: String!")
    for field in fields:
        lines.append(f"  {field['name']}: {field['graphqlType']}")
    lines.append("}")
    out.append("\n".join(lines))

    for field in fields:
        if field.get("fields"):
            _render_object_types(
                type_name(owner, field["name"]),
                field["fields"],
                out,
                with_id=False,
            )


def render_sdl(document: Dict[str, Any]) -> str:
    """
    Render a query-layer schema document as GraphQL SDL.

    Queries accept a JSON filter, a sort field and a limit; execution
    semantics belong to the query layer, not to this document.
    """
    blocks: List[str] = ["scalar JSON"]
    query_lines = ["type Query {"]

    for collection in document["collections"]:
        name = collection["typeName"]
        _render_object_types(name, collection["fields"], blocks, with_id=True)

        field = collection["name"]
        query_lines.append(f"  {field}(relativePath: String!): {name}")
        query_lines.append(
            f"  {field}Connection(filter: JSON, sort: String, limit: Int): [{name}!]!"
        )

    query_lines.append("}")
    blocks.append("\n".join(query_lines))
    return "\n\n".join(blocks) + "\n"
