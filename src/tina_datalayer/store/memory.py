"""
Memory Store

Ephemeral, in-process implementation of the Store contract used for
one-shot builds where durability is unnecessary.

Design choices
--------------
- Records keyed by path in a dict; index entries kept in one sorted list of
  (collection, field, key, path) tuples so range scans use bisection.
- Every write goes through a batch applied under a re-entrant lock, so
  readers observe either the state before or after a batch, never a mix.
- Copy-on-read semantics: scans snapshot their results under the lock.
- Contents survive close()/open(); they are lost with the instance.
"""

from __future__ import annotations

import bisect
from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .base import IndexEntry, IndexRange, Record
from ..core.errors import DatalayerIOError, NotFound


_Op = Tuple[str, object]


class _MemoryBatch:
    """Collects operations; applied by MemoryStore when the batch closes."""

    def __init__(self) -> None:
        self.ops: List[_Op] = []

    def put_record(self, record: Record, entries: Sequence[IndexEntry]) -> None:
        self.ops.append(("put", (record, list(entries))))

    def delete_record(self, path: str) -> None:
        self.ops.append(("delete", path))

    def set_meta(self, key: str, value: Optional[str]) -> None:
        self.ops.append(("meta", (key, value)))


class MemoryStore:
    """
    In-memory index store.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._entries: Dict[str, List[IndexEntry]] = {}
        self._index: List[Tuple[str, str, str, str]] = []
        self._meta: Dict[str, str] = {}
        self._open = False
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        with self._lock:
            if self._open:
                raise DatalayerIOError("store is already open")
            self._open = True

    def close(self) -> None:
        with self._lock:
            if not self._open:
                raise DatalayerIOError("store is not open")
            self._open = False

    def _require_open(self) -> None:
        if not self._open:
            raise DatalayerIOError("store is closed")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def batch(self) -> Iterator[_MemoryBatch]:
        self._require_open()
        batch = _MemoryBatch()
        yield batch
        self._apply(batch.ops)

    def _apply(self, ops: List[_Op]) -> None:
        with self._lock:
            self._require_open()

            # Validate before mutating so a failing batch leaves no trace
            present = set(self._records)
            for kind, payload in ops:
                if kind == "put":
                    present.add(payload[0].path)
                elif kind == "delete":
                    if payload not in present:
                        raise NotFound(payload)
                    present.discard(payload)

            for kind, payload in ops:
                if kind == "put":
                    record, entries = payload
                    self._remove(record.path)
                    self._records[record.path] = record
                    self._entries[record.path] = entries
                    for entry in entries:
                        bisect.insort(self._index, entry.identity())
                elif kind == "delete":
                    self._remove(payload)
                else:
                    key, value = payload
                    if value is None:
                        self._meta.pop(key, None)
                    else:
                        self._meta[key] = value

    def _remove(self, path: str) -> None:
        self._records.pop(path, None)
        for entry in self._entries.pop(path, []):
            ident = entry.identity()
            i = bisect.bisect_left(self._index, ident)
            if i < len(self._index) and self._index[i] == ident:
                del self._index[i]

    def put_record(self, record: Record, entries: Sequence[IndexEntry]) -> None:
        with self.batch() as b:
            b.put_record(record, entries)

    def delete_record(self, path: str) -> None:
        with self.batch() as b:
            b.delete_record(path)

    def set_meta(self, key: str, value: Optional[str]) -> None:
        with self.batch() as b:
            b.set_meta(key, value)

    def clear(self) -> None:
        with self._lock:
            self._require_open()
            self._records.clear()
            self._entries.clear()
            self._index.clear()
            self._meta.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, path: str) -> Record:
        with self._lock:
            self._require_open()
            record = self._records.get(path)
        if record is None:
            raise NotFound(path)
        return record

    def get_meta(self, key: str) -> Optional[str]:
        with self._lock:
            self._require_open()
            return self._meta.get(key)

    def index_entries(self, path: str) -> List[IndexEntry]:
        with self._lock:
            self._require_open()
            entries = list(self._entries.get(path, []))
        return sorted(entries, key=lambda e: (e.field, e.key))

    def paths(self, collection: Optional[str] = None) -> List[str]:
        with self._lock:
            self._require_open()
            return sorted(
                p for p, r in self._records.items()
                if collection is None or r.collection == collection
            )

    def scan(self, collection: str, index: Optional[IndexRange] = None) -> Iterator[Record]:
        """
        Yield records of a collection, by path or in index order.

        The result set is snapshotted on first iteration.
        """
        with self._lock:
            self._require_open()
            if index is None:
                records = [
                    self._records[p]
                    for p in sorted(self._records)
                    if self._records[p].collection == collection
                ]
            else:
                records = self._scan_index(collection, index)

        yield from records

    def _scan_index(self, collection: str, index: IndexRange) -> List[Record]:
        lower = index.lower_key() or ""
        i = bisect.bisect_left(self._index, (collection, index.field, lower, ""))

        seen = set()
        paths: List[str] = []
        while i < len(self._index):
            coll, field, key, path = self._index[i]
            i += 1
            if coll != collection or field != index.field or index.exceeds(key):
                break
            if not index.accepts(key) or path in seen:
                continue
            seen.add(path)
            paths.append(path)

        if index.reverse:
            paths.reverse()
        return [self._records[p] for p in paths]
