"""
Bridge Contract

A Bridge is the abstraction over a raw content source: it reads, writes,
deletes and lists content entries identified by source-relative POSIX paths,
independent of any indexing concern.

Every variant (direct filesystem, audit, version-control-aware) exposes the
same capability set, so the Database stays source-agnostic.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Iterator, List, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------

# Directories that never hold content, whatever the bridge
IGNORED_DIRS = frozenset({".git", "node_modules", "__generated__"})


# ---------------------------------------------------------------------
# Data Model
# ---------------------------------------------------------------------

class ContentEntry(BaseModel):
    """
    A raw unit of content at a path.

    Owned by the bridge; the database only ever changes it through bridge
    write operations.
    """

    path: str = Field(
        ...,
        min_length=1,
        description="Source-relative POSIX path, unique per bridge.",
    )

    raw: bytes = Field(
        default=b"",
        description="Raw payload as stored in the source.",
    )

    kind: Literal["file", "directory"] = "file"

    model_config = ConfigDict(extra="forbid", frozen=True)


@runtime_checkable
class Bridge(Protocol):
    """Capability set every content source provides."""

    @property
    def output_path(self) -> str: ...

    def get(self, path: str) -> ContentEntry: ...

    def put(self, path: str, content: bytes | str) -> None: ...

    def delete(self, path: str) -> None: ...

    def list(self, pattern: str = "**/*") -> Iterator[str]: ...

    def add_output_path(self, path: str) -> None: ...

    def put_output(self, name: str, content: bytes | str) -> None: ...


# ---------------------------------------------------------------------
# Path Helpers
# ---------------------------------------------------------------------

def normalize_path(path: str) -> str:
    """
    Return a canonical source-relative POSIX path.

    Raises ValueError for absolute paths or paths escaping the root.
    """
    cleaned = path.replace("\\", "/").strip()
    if not cleaned or cleaned.startswith("/"):
        raise ValueError(f"Invalid content path: {path!r}")

    parts: List[str] = []
    for part in cleaned.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise ValueError(f"Content path escapes the root: {path!r}")
        parts.append(part)

    if not parts:
        raise ValueError(f"Invalid content path: {path!r}")
    return "/".join(parts)


def to_bytes(content: bytes | str) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return content


def _expand_braces(pattern: str) -> List[str]:
    match = re.search(r"\{([^{}]*)\}", pattern)
    if match is None:
        return [pattern]

    head, tail = pattern[: match.start()], pattern[match.end():]
    expanded: List[str] = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(head + option + tail))
    return expanded


def _translate(pattern: str) -> str:
    out: List[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    # "**/" matches zero or more whole directories
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern:
    """
    Compile a path glob to a regular expression.

    `**` spans directories, `*` and `?` stay within one path segment, and
    brace sets such as `{md,mdx}` are expanded.
    """
    alternatives = [_translate(p) for p in _expand_braces(pattern)]
    return re.compile("^(?:" + "|".join(alternatives) + ")$")


def matches(path: str, patterns: str | Iterable[str]) -> bool:
    if isinstance(patterns, str):
        patterns = (patterns,)
    return any(compile_glob(p).match(path) for p in patterns)


def is_ignored(path: str) -> bool:
    return any(part in IGNORED_DIRS for part in path.split("/"))
