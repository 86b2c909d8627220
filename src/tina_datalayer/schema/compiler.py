"""
Schema Compiler

Turns a user-authored schema definition into a validated, normalized
CompiledSchema. The compiler is a pure function of its input: the same
definition always yields the same CompiledSchema (and the same version hash).

All problems found in a definition are collected and reported together in
one SchemaInvalid error.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from .models import (
    CollectionDefinition,
    CompiledCollection,
    CompiledConfig,
    CompiledField,
    CompiledSchema,
    FieldDefinition,
    FieldType,
    INDEXABLE_TYPES,
    SchemaDefinition,
)
from ..bridge.base import compile_glob, normalize_path
from ..config import settings
from ..core.errors import SchemaInvalid

logger = logging.getLogger("datalayer.schema")


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SCHEMA_FILENAMES = ("schema.json", "schema.yaml", "schema.yml")

# Loose spellings accepted in schema files
TYPE_ALIASES: Dict[str, FieldType] = {
    "text": FieldType.STRING,
    "str": FieldType.STRING,
    "int": FieldType.NUMBER,
    "float": FieldType.NUMBER,
    "bool": FieldType.BOOLEAN,
    "date": FieldType.DATETIME,
    "richtext": FieldType.RICH_TEXT,
    "rich_text": FieldType.RICH_TEXT,
}

DEFAULT_EXTENSIONS = "{md,mdx,json,yaml,yml}"

_GLOB_CHARS = set("*?[{")


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _resolve_type(raw: str) -> Optional[FieldType]:
    key = raw.strip().lower()
    try:
        return FieldType(key)
    except ValueError:
        return TYPE_ALIASES.get(key)


def _collection_globs(definition: CollectionDefinition, issues: List[str]) -> Tuple[str, ...]:
    raw = list(definition.paths or [])
    if definition.path:
        raw.insert(0, definition.path)
    if not raw:
        issues.append(f"collection '{definition.name}': a path or paths glob is required")
        return ()

    extension = definition.format or DEFAULT_EXTENSIONS
    globs: List[str] = []
    for pattern in raw:
        try:
            pattern = normalize_path(pattern)
        except ValueError as exc:
            issues.append(f"collection '{definition.name}': {exc}")
            continue

        if not _GLOB_CHARS.intersection(pattern):
            # A bare directory means "every document below it"
            pattern = f"{pattern}/**/*.{extension}"

        try:
            compile_glob(pattern)
        except re.error as exc:
            issues.append(f"collection '{definition.name}': bad glob {pattern!r}: {exc}")
            continue
        globs.append(pattern)
    return tuple(globs)


def _compile_fields(
    where: str,
    fields: List[FieldDefinition],
    globs_by_collection: Mapping[str, Tuple[str, ...]],
    issues: List[str],
    top_level: bool,
) -> Tuple[CompiledField, ...]:
    compiled: List[CompiledField] = []
    seen = set()

    for field in fields:
        label = f"{where}.{field.name}"

        if not NAME_PATTERN.match(field.name):
            issues.append(f"{label}: invalid field name")
            continue
        if field.name in seen:
            issues.append(f"{label}: duplicate field name")
            continue
        seen.add(field.name)

        field_type = _resolve_type(field.type)
        if field_type is None:
            issues.append(f"{label}: unknown type '{field.type}'")
            continue

        references = None
        reference_globs: Tuple[str, ...] = ()
        if field_type is FieldType.REFERENCE:
            references = field.references
            if not references:
                issues.append(f"{label}: reference fields must name a collection")
                continue
            if references not in globs_by_collection:
                issues.append(f"{label}: references unknown collection '{references}'")
                continue
            reference_globs = globs_by_collection[references]
        elif field.references:
            issues.append(f"{label}: only reference fields may name a collection")

        nested: Tuple[CompiledField, ...] = ()
        if field_type is FieldType.OBJECT:
            if not field.fields:
                issues.append(f"{label}: object fields need at least one sub-field")
                continue
            nested = _compile_fields(label, field.fields, globs_by_collection, issues, False)
        elif field.fields:
            issues.append(f"{label}: only object fields may declare sub-fields")

        if field.is_body:
            if not top_level:
                issues.append(f"{label}: only top-level fields can be the document body")
            elif field_type not in (FieldType.STRING, FieldType.RICH_TEXT) or field.list:
                issues.append(f"{label}: the document body must be a single string or rich-text field")

        compiled.append(
            CompiledField(
                name=field.name,
                type=field_type,
                required=field.required,
                list=field.list,
                indexed=field.indexed and field_type in INDEXABLE_TYPES,
                is_body=field.is_body,
                references=references,
                reference_globs=reference_globs,
                fields=nested,
            )
        )

    return tuple(compiled)


def _schema_version(collections: Tuple[CompiledCollection, ...], config: CompiledConfig) -> str:
    canonical = json.dumps(
        {
            "collections": [c.model_dump(mode="json") for c in collections],
            "config": config.model_dump(mode="json"),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def compile_schema(definition: SchemaDefinition | Mapping[str, Any]) -> CompiledSchema:
    """
    Validate and normalize a schema definition.

    Parameters
    ----------
    definition : SchemaDefinition | Mapping[str, Any]
        Parsed schema file contents or an already validated definition.

    Returns
    -------
    CompiledSchema
        Immutable compiled schema whose `version` identifies it.

    Raises
    ------
    SchemaInvalid
        With every problem found, if the definition does not compile.
    """
    if not isinstance(definition, SchemaDefinition):
        try:
            definition = SchemaDefinition.model_validate(definition)
        except ValidationError as exc:
            issues = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            raise SchemaInvalid("Schema definition is malformed", issues) from exc

    issues: List[str] = []

    names = set()
    globs_by_collection: Dict[str, Tuple[str, ...]] = {}
    for collection in definition.collections:
        if not NAME_PATTERN.match(collection.name):
            issues.append(f"collection '{collection.name}': invalid collection name")
        if collection.name in names:
            issues.append(f"collection '{collection.name}': duplicate collection name")
        names.add(collection.name)
        globs_by_collection[collection.name] = _collection_globs(collection, issues)

    compiled: List[CompiledCollection] = []
    for collection in definition.collections:
        fields = _compile_fields(
            collection.name,
            collection.fields,
            globs_by_collection,
            issues,
            True,
        )

        body_fields = [f for f in fields if f.is_body]
        if len(body_fields) > 1:
            issues.append(f"collection '{collection.name}': more than one body field")
        if body_fields and collection.format not in (None, "md", "mdx"):
            issues.append(
                f"collection '{collection.name}': body fields require markdown content"
            )

        compiled.append(
            CompiledCollection(
                name=collection.name,
                globs=globs_by_collection[collection.name],
                format=collection.format,
                fields=fields,
                label=collection.label,
            )
        )

    if issues:
        for issue in issues:
            logger.error("Schema issue: %s", issue)
        raise SchemaInvalid(f"Schema has {len(issues)} problem(s)", issues)

    config = CompiledConfig(output_path=definition.config.output_path)
    collections = tuple(compiled)
    schema = CompiledSchema(
        collections=collections,
        config=config,
        version=_schema_version(collections, config),
    )

    logger.info(
        "Compiled schema %s with %d collection(s)",
        schema.version[:12],
        len(schema.collections),
    )
    return schema


def find_schema_file(root_path: str | Path, schema_dir: Optional[str] = None) -> Path:
    """
    Locate the schema definition file under the root.

    Raises
    ------
    SchemaInvalid
        If no schema file exists.
    """
    base = Path(root_path) / (schema_dir or settings.schema_dir)
    for name in SCHEMA_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    raise SchemaInvalid(
        f"No schema definition found in {base} (expected one of {', '.join(SCHEMA_FILENAMES)})"
    )


def load_schema_definition(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaInvalid(f"Unable to read schema file {path}: {type(exc).__name__}") from exc

    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise SchemaInvalid(f"Schema file {path.name} is not valid: {exc}") from exc

    if not isinstance(data, dict):
        raise SchemaInvalid(f"Schema file {path.name} must contain a mapping")
    return data


def compile_schema_file(root_path: str | Path, schema_dir: Optional[str] = None) -> CompiledSchema:
    """Find, load and compile the schema definition of a project."""
    return compile_schema(load_schema_definition(find_schema_file(root_path, schema_dir)))
