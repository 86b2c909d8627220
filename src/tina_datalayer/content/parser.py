"""
Content Parsing

Turns raw document payloads into plain field mappings and back:

- Markdown / MDX: YAML frontmatter between `---` fences; the remaining text
  becomes the collection's body field, when it declares one.
- JSON: a top-level object.
- YAML: a top-level mapping.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import yaml

from ..core.errors import ContentValidationError
from ..schema.models import CompiledCollection


MARKDOWN_FORMATS = ("md", "mdx")
FRONTMATTER_FENCE = "---"


def content_format(path: str, collection: Optional[CompiledCollection] = None) -> str:
    """Resolve the format of a document: collection format first, then extension."""
    if collection is not None and collection.format:
        return collection.format
    _, _, ext = path.rpartition(".")
    return ext.lower()


def split_frontmatter(text: str) -> tuple[Optional[str], str]:
    """
    Split a markdown document into (frontmatter, body).

    Returns (None, text) when the document has no frontmatter block.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != FRONTMATTER_FENCE:
        return None, text

    for i in range(1, len(lines)):
        if lines[i].rstrip("\r\n") == FRONTMATTER_FENCE:
            front = "".join(lines[1:i])
            body = "".join(lines[i + 1:])
            return front, body.lstrip("\r\n")

    # Opening fence without a closing one
    raise ValueError("unterminated frontmatter block")


def parse_content(path: str, raw: bytes, collection: CompiledCollection) -> Dict[str, Any]:
    """
    Parse one document into a field mapping.

    Raises
    ------
    ContentValidationError
        If the payload is not decodable or not a mapping.
    """
    fmt = content_format(path, collection)

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ContentValidationError(path, "content is not valid UTF-8") from exc

    try:
        if fmt in MARKDOWN_FORMATS:
            front, body = split_frontmatter(text)
            data = yaml.safe_load(front) if front else {}
            data = {} if data is None else data
            body_field = collection.body_field
            if isinstance(data, dict) and body_field is not None:
                data[body_field.name] = body
        elif fmt == "json":
            data = json.loads(text)
        elif fmt in ("yaml", "yml"):
            data = yaml.safe_load(text)
            data = {} if data is None else data
        else:
            raise ContentValidationError(path, f"unsupported content format '{fmt}'")
    except (ValueError, yaml.YAMLError) as exc:
        # json.JSONDecodeError is a ValueError
        raise ContentValidationError(path, f"could not parse {fmt} content: {exc}") from exc

    if not isinstance(data, dict):
        raise ContentValidationError(path, f"{fmt} content must be a mapping at the top level")
    return data


def serialize_content(path: str, fields: Dict[str, Any], collection: CompiledCollection) -> str:
    """
    Render a field mapping in the document's format.

    The inverse of `parse_content` for the field values it produces.
    """
    fmt = content_format(path, collection)
    data = dict(fields)

    if fmt in MARKDOWN_FORMATS:
        body = ""
        body_field = collection.body_field
        if body_field is not None:
            body = data.pop(body_field.name, None) or ""
        front = yaml.safe_dump(data, sort_keys=False, allow_unicode=True) if data else ""
        return f"{FRONTMATTER_FENCE}\n{front}{FRONTMATTER_FENCE}\n{body}"
    if fmt == "json":
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if fmt in ("yaml", "yml"):
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)

    raise ContentValidationError(path, f"unsupported content format '{fmt}'")
