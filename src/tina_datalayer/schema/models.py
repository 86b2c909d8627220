"""
Schema Data Models

Two families of models live here:

- Definition models (`SchemaDefinition`, `CollectionDefinition`,
  `FieldDefinition`) mirror the user-authored schema file and are tolerant
  of presentation-only keys (labels, ui hints).
- Compiled models (`CompiledSchema`, `CompiledCollection`, `CompiledField`)
  are the normalized, immutable output of the compiler. They are hashable so
  per-collection validators can be memoized on them.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ..bridge.base import matches
from ..core.errors import NotFound


ContentFormat = Literal["md", "mdx", "json", "yaml", "yml"]


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    RICH_TEXT = "rich-text"
    IMAGE = "image"
    REFERENCE = "reference"
    OBJECT = "object"


# Scalars that produce secondary index entries
INDEXABLE_TYPES = frozenset({
    FieldType.STRING,
    FieldType.NUMBER,
    FieldType.BOOLEAN,
    FieldType.DATETIME,
    FieldType.IMAGE,
    FieldType.REFERENCE,
})


# ---------------------------------------------------------------------
# Definition Models (user input)
# ---------------------------------------------------------------------

class FieldDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    required: bool = False
    list: bool = False
    indexed: bool = True
    is_body: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_body", "isBody"),
    )
    references: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "references", "referencesCollection", "references_collection"
        ),
    )
    fields: Optional[List["FieldDefinition"]] = None
    label: Optional[str] = None
    description: Optional[str] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CollectionDefinition(BaseModel):
    name: str = Field(..., min_length=1)
    path: Optional[str] = None
    paths: Optional[List[str]] = None
    format: Optional[ContentFormat] = None
    fields: List[FieldDefinition] = Field(default_factory=list)
    label: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class SchemaConfig(BaseModel):
    output_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("output_path", "outputPath"),
    )

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SchemaDefinition(BaseModel):
    collections: List[CollectionDefinition] = Field(..., min_length=1)
    config: SchemaConfig = Field(default_factory=SchemaConfig)

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------
# Compiled Models (immutable)
# ---------------------------------------------------------------------

class CompiledField(BaseModel):
    name: str
    type: FieldType
    required: bool = False
    list: bool = False
    indexed: bool = False
    is_body: bool = False
    references: Optional[str] = None
    # Globs of the referenced collection, resolved at compile time
    reference_globs: Tuple[str, ...] = ()
    fields: Tuple["CompiledField", ...] = ()

    model_config = ConfigDict(frozen=True, extra="forbid")


class CompiledCollection(BaseModel):
    name: str
    globs: Tuple[str, ...]
    format: Optional[ContentFormat] = None
    fields: Tuple[CompiledField, ...] = ()
    label: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    def matches(self, path: str) -> bool:
        return matches(path, self.globs)

    def field(self, name: str) -> Optional[CompiledField]:
        """Resolve a possibly dotted field name to its compiled field."""
        fields = self.fields
        found: Optional[CompiledField] = None
        for part in name.split("."):
            found = next((f for f in fields if f.name == part), None)
            if found is None:
                return None
            fields = found.fields
        return found

    @property
    def body_field(self) -> Optional[CompiledField]:
        return next((f for f in self.fields if f.is_body), None)


class CompiledConfig(BaseModel):
    output_path: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


class CompiledSchema(BaseModel):
    """
    Normalized, validated schema.

    `version` is the content hash of the normalized collections and is the
    schema identity stamped on every record.
    """

    collections: Tuple[CompiledCollection, ...]
    config: CompiledConfig = CompiledConfig()
    version: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    def collection(self, name: str) -> CompiledCollection:
        for collection in self.collections:
            if collection.name == name:
                return collection
        raise NotFound(f"collection {name}")

    def collection_for_path(self, path: str) -> Optional[CompiledCollection]:
        """Return the first declared collection whose globs match `path`."""
        for collection in self.collections:
            if collection.matches(path):
                return collection
        return None


FieldDefinition.model_rebuild()
CompiledField.model_rebuild()
