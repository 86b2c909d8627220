"""
Store Contract and Data Models

This module defines the canonical index data model (Record, IndexEntry), the
range description used for index scans (IndexRange), the order-preserving
key encoding shared by every store, and the Store protocol itself.

Key Properties
--------------
- A Record and its IndexEntries are always written in one atomic batch
- Index keys sort in value order: null < booleans < numbers < strings
- Datetimes are indexed as UTC ISO 8601 strings, so they sort chronologically
"""

from __future__ import annotations

import math
import struct
from contextlib import AbstractContextManager
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------
# Key Encoding
# ---------------------------------------------------------------------

def normalize_datetime(value: datetime | date) -> str:
    """Render a datetime as a UTC ISO 8601 string ending in 'Z'."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def _encode_number(value: float) -> str:
    if math.isnan(value):
        raise ValueError("NaN cannot be indexed")
    (bits,) = struct.unpack(">Q", struct.pack(">d", float(value)))
    if bits & (1 << 63):
        bits = ~bits & 0xFFFFFFFFFFFFFFFF
    else:
        bits |= 1 << 63
    return f"{bits:016x}"


def sort_key(value: Any) -> str:
    """
    Encode a scalar into a string whose lexical order matches value order.
    """
    if value is None:
        return "0"
    if isinstance(value, bool):
        return "1" + ("1" if value else "0")
    if isinstance(value, (int, float)):
        return "2" + _encode_number(value)
    if isinstance(value, (datetime, date)):
        return "3" + normalize_datetime(value)
    return "3" + str(value)


# ---------------------------------------------------------------------
# Data Models
# ---------------------------------------------------------------------

class Record(BaseModel):
    """
    Indexed, validated representation of one content entry.
    """

    collection: str = Field(..., min_length=1)
    path: str = Field(..., min_length=1)
    fields: Dict[str, Any] = Field(default_factory=dict)
    schema_version: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid", frozen=True)


class IndexEntry(BaseModel):
    """
    Secondary index row keyed by (collection, field, value, path).
    """

    collection: str
    field: str
    value: Any = None
    key: str
    path: str

    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def build(cls, collection: str, field: str, value: Any, path: str) -> "IndexEntry":
        return cls(
            collection=collection,
            field=field,
            value=value,
            key=sort_key(value),
            path=path,
        )

    def identity(self) -> tuple:
        return (self.collection, self.field, self.key, self.path)


class IndexRange(BaseModel):
    """
    Description of an index scan over one field.

    All bounds are combined with AND. `in_` restricts to a set of values.
    """

    field: str
    eq: Any = None
    in_: Optional[List[Any]] = None
    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None
    starts_with: Optional[str] = None
    reverse: bool = False

    # Distinguishes "eq: null" from "no equality bound"
    has_eq: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)

    def lower_key(self) -> Optional[str]:
        """Smallest key that may match (inclusive)."""
        candidates = []
        if self.has_eq:
            candidates.append(sort_key(self.eq))
        if self.gte is not None:
            candidates.append(sort_key(self.gte))
        if self.gt is not None:
            candidates.append(sort_key(self.gt))
        if self.starts_with is not None:
            candidates.append(sort_key(self.starts_with))
        return max(candidates) if candidates else None

    def exceeds(self, key: str) -> bool:
        """True once an ascending scan has moved past every possible match."""
        if self.has_eq and key > sort_key(self.eq):
            return True
        if self.lt is not None and key >= sort_key(self.lt):
            return True
        if self.lte is not None and key > sort_key(self.lte):
            return True
        if self.starts_with is not None:
            prefix = sort_key(self.starts_with)
            if key > prefix and not key.startswith(prefix):
                return True
        return False

    def accepts(self, key: str) -> bool:
        if self.has_eq and key != sort_key(self.eq):
            return False
        if self.in_ is not None and key not in {sort_key(v) for v in self.in_}:
            return False
        if self.gt is not None and not key > sort_key(self.gt):
            return False
        if self.gte is not None and not key >= sort_key(self.gte):
            return False
        if self.lt is not None and not key < sort_key(self.lt):
            return False
        if self.lte is not None and not key <= sort_key(self.lte):
            return False
        if self.starts_with is not None and not key.startswith(sort_key(self.starts_with)):
            return False
        return True


# ---------------------------------------------------------------------
# Store Protocol
# ---------------------------------------------------------------------

class StoreBatch(Protocol):
    """Write set applied atomically when the owning context exits cleanly."""

    def put_record(self, record: Record, entries: Sequence[IndexEntry]) -> None: ...

    def delete_record(self, path: str) -> None: ...

    def set_meta(self, key: str, value: Optional[str]) -> None: ...


@runtime_checkable
class Store(Protocol):
    """Capability set every index store provides."""

    @property
    def is_open(self) -> bool: ...

    def open(self) -> None: ...

    def close(self) -> None: ...

    def batch(self) -> AbstractContextManager[StoreBatch]: ...

    def put_record(self, record: Record, entries: Sequence[IndexEntry]) -> None: ...

    def delete_record(self, path: str) -> None: ...

    def get_record(self, path: str) -> Record: ...

    def scan(self, collection: str, index: Optional[IndexRange] = None) -> Iterator[Record]: ...

    def index_entries(self, path: str) -> List[IndexEntry]: ...

    def paths(self, collection: Optional[str] = None) -> List[str]: ...

    def get_meta(self, key: str) -> Optional[str]: ...

    def set_meta(self, key: str, value: Optional[str]) -> None: ...

    def clear(self) -> None: ...
