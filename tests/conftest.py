from pathlib import Path

import pytest

from tina_datalayer.bridge.filesystem import FilesystemBridge
from tina_datalayer.database import Database
from tina_datalayer.schema.compiler import compile_schema_file
from tina_datalayer.store.memory import MemoryStore


SCHEMA_YAML = """\
collections:
  - name: posts
    label: Blog Posts
    path: posts
    format: md
    fields:
      - {name: title, type: string, required: true}
      - {name: date, type: datetime}
      - {name: rating, type: number}
      - {name: draft, type: boolean}
      - {name: tags, type: string, list: true}
      - {name: author, type: reference, references: authors}
      - name: seo
        type: object
        fields:
          - {name: slug, type: string}
      - {name: body, type: rich-text, isBody: true}
  - name: authors
    path: authors
    format: json
    fields:
      - {name: name, type: string, required: true}
"""


def write(root: Path, rel: str, text: str) -> Path:
    target = root / rel
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    return target


def post(title=None, body="Hello.", **fields) -> str:
    lines = ["---"]
    if title is not None:
        lines.append(f"title: {title}")
    for key, value in fields.items():
        lines.append(f"{key}: {value}")
    lines.append("---")
    lines.append(body)
    return "\n".join(lines) + "\n"


@pytest.fixture
def content_root(tmp_path) -> Path:
    """A content root with a schema and no documents."""
    write(tmp_path, ".tina/schema.yaml", SCHEMA_YAML)
    return tmp_path


@pytest.fixture
def schema(content_root):
    return compile_schema_file(content_root)


@pytest.fixture
def store():
    store = MemoryStore()
    store.open()
    yield store
    if store.is_open:
        store.close()


@pytest.fixture
def database(content_root, store, schema) -> Database:
    return Database(FilesystemBridge(content_root), store, schema)


def snapshot(root: Path) -> dict:
    """Map every file under root to its bytes."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
