"""
Content Validation

Validates parsed documents against a compiled collection by generating a
pydantic model per collection (memoized on the immutable collection), then
normalizes the result into JSON-compatible record fields.

Field values are validated strictly: numbers must be finite numbers, booleans
must be booleans. Numbers are accepted where strings are expected (YAML turns
`title: 2021` into an int). Datetimes are normalized to UTC ISO 8601 strings.
"""

from __future__ import annotations

from datetime import date, datetime
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    ValidationError,
    create_model,
)

from ..bridge.base import matches
from ..core.errors import ContentValidationError
from ..schema.models import CompiledCollection, CompiledField, FieldType
from ..store.base import normalize_datetime


_MODEL_CONFIG = ConfigDict(
    extra="ignore",
    populate_by_name=True,
    coerce_numbers_to_str=True,
    allow_inf_nan=False,
)


def _reference_check(field: CompiledField):
    def _check(value: str) -> str:
        if not matches(value, field.reference_globs):
            raise ValueError(
                f"'{value}' is not a document of collection '{field.references}'"
            )
        return value
    return _check


def _annotation(field: CompiledField, owner: str) -> Any:
    if field.type is FieldType.NUMBER:
        base: Any = Union[StrictInt, StrictFloat]
    elif field.type is FieldType.BOOLEAN:
        base = StrictBool
    elif field.type is FieldType.DATETIME:
        base = Union[datetime, date]
    elif field.type is FieldType.REFERENCE:
        base = Annotated[str, AfterValidator(_reference_check(field))]
    elif field.type is FieldType.OBJECT:
        base = _build_model(f"{owner}_{field.name}", field.fields)
    else:
        base = str

    if field.list:
        base = List[base]
    return base


def _build_model(name: str, fields: Tuple[CompiledField, ...]) -> Type[BaseModel]:
    definitions: Dict[str, Any] = {}
    for i, field in enumerate(fields):
        annotation = _annotation(field, name)
        # Positional attribute names keep user field names clear of BaseModel attributes
        if field.required:
            definitions[f"f{i}"] = (annotation, Field(..., alias=field.name))
        else:
            definitions[f"f{i}"] = (Optional[annotation], Field(default=None, alias=field.name))

    return create_model(name, __config__=_MODEL_CONFIG, **definitions)


@lru_cache(maxsize=128)
def collection_model(collection: CompiledCollection) -> Type[BaseModel]:
    """Return the (memoized) validation model for a collection."""
    return _build_model(f"Collection_{collection.name}", collection.fields)


def _normalize(value: Any, field: CompiledField) -> Any:
    if value is None:
        return None
    if field.list:
        return [_normalize_one(v, field) for v in value]
    return _normalize_one(value, field)


def _normalize_one(value: Any, field: CompiledField) -> Any:
    if field.type is FieldType.DATETIME:
        return normalize_datetime(value)
    if field.type is FieldType.OBJECT:
        return _normalize_fields(value, field.fields)
    return value


def _normalize_fields(data: Dict[str, Any], fields: Tuple[CompiledField, ...]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for field in fields:
        if field.name in data:
            out[field.name] = _normalize(data[field.name], field)
    return out


def validate_content(
    path: str,
    data: Dict[str, Any],
    collection: CompiledCollection,
) -> Dict[str, Any]:
    """
    Validate a parsed document and return normalized record fields.

    Only fields declared by the collection are kept; optional fields absent
    from the document are omitted.

    Raises
    ------
    ContentValidationError
        With one issue per failing field.
    """
    model = collection_model(collection)
    try:
        instance = model.model_validate(data)
    except ValidationError as exc:
        issues = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ContentValidationError(
            path,
            f"does not match collection '{collection.name}'",
            issues,
        ) from exc

    dumped = instance.model_dump(by_alias=True, exclude_unset=True)
    return _normalize_fields(dumped, collection.fields)
