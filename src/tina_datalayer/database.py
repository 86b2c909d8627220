"""
Content Database

Orchestrates a Bridge (where content lives) and a Store (where the index
lives) under one active CompiledSchema.

Responsibilities
----------------
- Full and incremental indexing of content into Records + IndexEntries
- Query planning over the secondary index, with an in-process fallback
- Schema-version staleness checks on every read
- A per-path parse cache keyed on (schema version, content digest)

Concurrency
-----------
One indexing pass runs at a time per Database. A full pass is applied to
the Store in a single batch, so concurrent readers see either the previous
complete index or the new one.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from threading import Event, Lock, RLock
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .bridge.base import Bridge, normalize_path
from .config import settings
from .content.parser import parse_content, serialize_content
from .content.validation import validate_content
from .core.errors import (
    ConfigurationError,
    ContentValidationError,
    DatalayerError,
    DatalayerIOError,
    IndexCancelled,
    IndexInProgress,
    InvalidQuery,
    NotFound,
    StaleIndex,
)
from .schema.models import CompiledCollection, CompiledField, CompiledSchema, FieldType
from .store.base import IndexEntry, IndexRange, Record, Store, normalize_datetime, sort_key

logger = logging.getLogger("datalayer.database")


META_SCHEMA_VERSION = "schema_version"
META_FINGERPRINT = "content_fingerprint"

FILTER_OPS = ("eq", "in", "gt", "gte", "lt", "lte", "startsWith", "after", "before")

# Query operator -> IndexRange attribute
_RANGE_ATTRS = {
    "in": "in_",
    "gt": "gt",
    "gte": "gte",
    "lt": "lt",
    "lte": "lte",
    "after": "gt",
    "before": "lt",
    "startsWith": "starts_with",
}


# ---------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CacheEntry:
    """
    Memoized outcome of loading one path.

    `record` is None for a tombstone: the path failed validation under
    `schema_version`, and `error` says why.
    """

    schema_version: str
    digest: str
    record: Optional[Record] = None
    error: Optional[ContentValidationError] = None


@dataclass
class IndexingReport:
    """Outcome of one indexing pass."""

    schema_version: str
    indexed: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: List[DatalayerError] = field(default_factory=list)
    truncated: int = 0
    skipped: bool = False
    duration_ms: float = 0.0
    max_errors: int = 100

    def add_error(self, error: DatalayerError) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(error)
        else:
            self.truncated += 1

    @property
    def error_count(self) -> int:
        return len(self.errors) + self.truncated

    @property
    def validation_errors(self) -> List[ContentValidationError]:
        return [e for e in self.errors if isinstance(e, ContentValidationError)]

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "indexed": self.indexed,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "truncated": self.truncated,
            "durationMs": round(self.duration_ms, 3),
            "errors": [_describe_error(e) for e in self.errors],
        }


def _describe_error(error: DatalayerError) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "type": type(error).__name__,
        "path": getattr(error, "path", None),
        "message": str(error),
    }
    issues = getattr(error, "issues", None)
    if issues:
        out["issues"] = list(issues)
    return out


@dataclass(frozen=True)
class _Condition:
    field: str
    op: str
    value: Any


@dataclass
class _Loaded:
    path: str
    record: Optional[Record] = None
    entries: List[IndexEntry] = field(default_factory=list)
    # Read failed; the previous Record (if any) is left untouched
    io_failed: bool = False


# ---------------------------------------------------------------------
# Index Derivation
# ---------------------------------------------------------------------

def _indexed_values(
    data: Dict[str, Any],
    fields: Tuple[CompiledField, ...],
    prefix: str = "",
) -> Iterator[Tuple[str, Any]]:
    for f in fields:
        if f.name not in data:
            continue
        value = data[f.name]
        dotted = f"{prefix}{f.name}"

        if f.type is FieldType.OBJECT:
            # Only single nested objects contribute dotted entries
            if not f.list and isinstance(value, dict):
                yield from _indexed_values(value, f.fields, f"{dotted}.")
            continue

        if not f.indexed or value is None:
            continue
        for item in (value if f.list else [value]):
            if item is not None:
                yield dotted, item


def index_entries_for(record: Record, collection: CompiledCollection) -> List[IndexEntry]:
    """Derive the IndexEntries of a Record, deduplicated and in key order."""
    seen = set()
    entries: List[IndexEntry] = []
    for name, value in _indexed_values(record.fields, collection.fields):
        entry = IndexEntry.build(record.collection, name, value, record.path)
        if entry.identity() in seen:
            continue
        seen.add(entry.identity())
        entries.append(entry)
    entries.sort(key=lambda e: (e.field, e.key))
    return entries


def _lookup(data: Dict[str, Any], dotted: str) -> Any:
    value: Any = data
    for part in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


# ---------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------

class Database:
    """
    Content database over a Bridge and a Store.

    Parameters
    ----------
    bridge : Bridge
        Source of content entries.

    store : Store
        Index store. Must be opened by the caller.

    schema : CompiledSchema, optional
        Initial active schema; see `bind_schema`.
    """

    def __init__(
        self,
        bridge: Bridge,
        store: Store,
        schema: Optional[CompiledSchema] = None,
        max_reported_errors: Optional[int] = None,
    ) -> None:
        self._bridge = bridge
        self._store = store
        self._schema: Optional[CompiledSchema] = None
        self._cache: Dict[str, CacheEntry] = {}
        self._cache_lock = RLock()
        self._index_lock = Lock()
        self._max_errors = max_reported_errors or settings.max_reported_errors

        if schema is not None:
            self.bind_schema(schema)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def bridge(self) -> Bridge:
        return self._bridge

    @property
    def store(self) -> Store:
        return self._store

    @property
    def schema(self) -> Optional[CompiledSchema]:
        return self._schema

    @property
    def indexing(self) -> bool:
        return self._index_lock.locked()

    def bind_schema(self, schema: CompiledSchema) -> None:
        """Make `schema` the active schema; cache entries of other versions are dropped."""
        with self._cache_lock:
            self._schema = schema
            stale = [p for p, e in self._cache.items() if e.schema_version != schema.version]
            for path in stale:
                del self._cache[path]

    def clear_cache(self) -> None:
        """Drop every cache entry. The Store is not touched."""
        with self._cache_lock:
            dropped = len(self._cache)
            self._cache.clear()
        logger.debug("Cleared %d cache entries", dropped)

    def _require_schema(self) -> CompiledSchema:
        if self._schema is None:
            raise ConfigurationError("No schema is bound to the database")
        return self._schema

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(
        self,
        path: str,
        collection: CompiledCollection,
        schema: CompiledSchema,
        report: IndexingReport,
    ) -> Optional[Tuple[_Loaded, str]]:
        """
        Read, parse and validate one path.

        Returns None when the path vanished between listing and reading.
        The second element is the digest folded into the content fingerprint.
        """
        try:
            entry = self._bridge.get(path)
        except NotFound:
            return None
        except DatalayerIOError as exc:
            logger.warning("Unable to read %s: %s", path, exc)
            report.add_error(exc)
            return _Loaded(path, io_failed=True), "io-error"

        if entry.kind != "file":
            return None

        digest = hashlib.sha256(entry.raw).hexdigest()

        with self._cache_lock:
            cached = self._cache.get(path)
        if (
            cached is not None
            and cached.schema_version == schema.version
            and cached.digest == digest
        ):
            report.unchanged += 1
        else:
            cached = self._parse(path, entry.raw, digest, collection, schema)
            with self._cache_lock:
                self._cache[path] = cached

        if cached.error is not None:
            report.add_error(cached.error)
            return _Loaded(path), digest

        record = cached.record
        return _Loaded(path, record, index_entries_for(record, collection)), digest

    def _parse(
        self,
        path: str,
        raw: bytes,
        digest: str,
        collection: CompiledCollection,
        schema: CompiledSchema,
    ) -> CacheEntry:
        try:
            data = parse_content(path, raw, collection)
            fields = validate_content(path, data, collection)
        except ContentValidationError as exc:
            logger.debug("Validation failed for %s: %s", path, exc)
            return CacheEntry(schema.version, digest, error=exc)

        record = Record(
            collection=collection.name,
            path=path,
            fields=fields,
            schema_version=schema.version,
        )
        return CacheEntry(schema.version, digest, record=record)

    def _acquire(self, wait: bool) -> None:
        if not self._index_lock.acquire(blocking=wait):
            raise IndexInProgress("An indexing pass is already running")

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_content(
        self,
        schema: Optional[CompiledSchema] = None,
        *,
        force: bool = False,
        cancel: Optional[Event] = None,
        wait: bool = False,
    ) -> IndexingReport:
        """
        Reindex all content under the bridge against `schema`.

        Every listed path matching a collection glob is read, parsed and
        validated. Valid paths are upserted; invalid paths are reported and
        their previous Record is removed; Records whose path was not seen
        are deleted. The Store is updated in one batch at the end.

        Parameters
        ----------
        schema : CompiledSchema, optional
            Schema to bind before indexing. Defaults to the active schema.

        force : bool
            Rewrite the index even if the content fingerprint is unchanged.

        cancel : threading.Event, optional
            Checked between paths; when set, the pass raises IndexCancelled
            and leaves the Store untouched.

        wait : bool
            Block until a running pass finishes instead of failing.

        Raises
        ------
        IndexInProgress
            If another pass is running and `wait` is false.

        IndexCancelled
            If `cancel` was set during the pass.

        DatalayerIOError
            If the Store is closed or fails.
        """
        self._acquire(wait)
        try:
            if schema is not None:
                self.bind_schema(schema)
            schema = self._require_schema()
            return self._index_all(schema, force, cancel)
        finally:
            self._index_lock.release()

    def _index_all(
        self,
        schema: CompiledSchema,
        force: bool,
        cancel: Optional[Event],
    ) -> IndexingReport:
        started = time.perf_counter()
        report = IndexingReport(schema_version=schema.version, max_errors=self._max_errors)

        # Fails fast on a closed store
        previous_version = self._store.get_meta(META_SCHEMA_VERSION)
        previous_fingerprint = self._store.get_meta(META_FINGERPRINT)

        fingerprint = hashlib.sha256(schema.version.encode("utf-8"))
        loaded: List[_Loaded] = []
        visited = set()

        for path in self._bridge.list("**/*"):
            if cancel is not None and cancel.is_set():
                logger.info("Indexing cancelled after %d path(s)", len(visited))
                raise IndexCancelled(f"Indexing cancelled after {len(visited)} path(s)")

            collection = schema.collection_for_path(path)
            if collection is None:
                continue

            outcome = self._load(path, collection, schema, report)
            if outcome is None:
                continue
            item, digest = outcome
            visited.add(path)
            loaded.append(item)
            fingerprint.update(f"{path}\0{digest}\n".encode("utf-8"))

        fingerprint_hex = fingerprint.hexdigest()
        io_failures = any(item.io_failed for item in loaded)

        if (
            not force
            and not io_failures
            and previous_version == schema.version
            and previous_fingerprint == fingerprint_hex
        ):
            report.skipped = True
            report.duration_ms = (time.perf_counter() - started) * 1000
            logger.info("Content unchanged since last pass; index left as is")
            return report

        existing = set(self._store.paths())
        with self._store.batch() as batch:
            for item in loaded:
                if item.record is not None:
                    batch.put_record(item.record, item.entries)
                    report.indexed += 1
                elif not item.io_failed and item.path in existing:
                    batch.delete_record(item.path)
                    report.deleted += 1

            for path in sorted(existing - visited):
                batch.delete_record(path)
                report.deleted += 1

            batch.set_meta(META_SCHEMA_VERSION, schema.version)
            # A pass with unreadable paths must not be skipped next time
            batch.set_meta(META_FINGERPRINT, None if io_failures else fingerprint_hex)

        with self._cache_lock:
            for path in [p for p in self._cache if p not in visited]:
                del self._cache[path]

        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Indexed %d record(s), deleted %d, %d error(s) in %.1f ms (schema %s)",
            report.indexed,
            report.deleted,
            report.error_count,
            report.duration_ms,
            schema.version[:12],
        )
        return report

    def index_content_by_paths(
        self,
        paths: Iterable[str],
        *,
        wait: bool = False,
    ) -> IndexingReport:
        """
        Reindex specific paths.

        Paths outside every collection are ignored. A path that no longer
        exists in the bridge has its Record removed.

        Raises `StaleIndex` when the store was built under another schema
        version; only a full `index_content` pass can bring it forward.
        """
        self._acquire(wait)
        try:
            schema = self._require_schema()
            self._check_version(schema, self._store.get_meta(META_SCHEMA_VERSION))
            started = time.perf_counter()
            report = IndexingReport(schema_version=schema.version, max_errors=self._max_errors)

            loaded: List[_Loaded] = []
            for raw_path in paths:
                path = normalize_path(raw_path)
                collection = schema.collection_for_path(path)
                if collection is None:
                    continue
                outcome = self._load(path, collection, schema, report)
                loaded.append(outcome[0] if outcome is not None else _Loaded(path))

            existing = set(self._store.paths())
            with self._store.batch() as batch:
                for item in loaded:
                    if item.record is not None:
                        batch.put_record(item.record, item.entries)
                        report.indexed += 1
                    elif not item.io_failed and item.path in existing:
                        batch.delete_record(item.path)
                        existing.discard(item.path)
                        report.deleted += 1
                batch.set_meta(META_SCHEMA_VERSION, schema.version)
                batch.set_meta(META_FINGERPRINT, None)

            report.duration_ms = (time.perf_counter() - started) * 1000
            return report
        finally:
            self._index_lock.release()

    def delete_content_by_paths(self, paths: Iterable[str], *, wait: bool = False) -> int:
        """Remove the Records of `paths` from the index. Returns how many existed."""
        self._acquire(wait)
        try:
            targets = {normalize_path(p) for p in paths}
            existing = set(self._store.paths())
            removed = sorted(targets & existing)

            with self._store.batch() as batch:
                for path in removed:
                    batch.delete_record(path)
                batch.set_meta(META_FINGERPRINT, None)

            with self._cache_lock:
                for path in targets:
                    self._cache.pop(path, None)
            return len(removed)
        finally:
            self._index_lock.release()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _check_version(self, schema: CompiledSchema, found: Optional[str]) -> None:
        if found is not None and found != schema.version:
            raise StaleIndex(schema.version, found)

    def get(self, path: str) -> Record:
        """Return the current Record of `path`."""
        schema = self._require_schema()
        record = self._store.get_record(normalize_path(path))
        self._check_version(schema, record.schema_version)
        return record

    def put_document(self, path: str, fields: Dict[str, Any]) -> Record:
        """
        Validate, serialize and write a document, then index it.

        Raises
        ------
        ContentValidationError
            If the path belongs to no collection or the fields do not validate.

        WriteDenied
            If the bridge refuses the write.

        StaleIndex
            If the index was built under another schema version.
        """
        schema = self._require_schema()
        path = normalize_path(path)
        collection = schema.collection_for_path(path)
        if collection is None:
            raise ContentValidationError(path, "path does not belong to any collection")

        self._check_version(schema, self._store.get_meta(META_SCHEMA_VERSION))
        validate_content(path, fields, collection)
        self._bridge.put(path, serialize_content(path, fields, collection))

        report = self.index_content_by_paths([path], wait=True)
        if report.errors:
            raise report.errors[0]
        return self._store.get_record(path)

    def delete_document(self, path: str) -> None:
        """Delete a document through the bridge and drop its Record."""
        path = normalize_path(path)
        self._bridge.delete(path)
        self.delete_content_by_paths([path], wait=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        sort: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """
        Return the Records of a collection matching `filter`.

        Parameters
        ----------
        collection : str
            Collection name.

        filter : dict, optional
            `{field: value}` or `{field: {op: value}}`. Nested object fields
            use dotted names.

        sort : dict, optional
            `{field: "asc" | "desc"}`. Records without the field come last.

        limit : int, optional
            Maximum number of Records returned.

        Raises
        ------
        NotFound
            Unknown collection.

        InvalidQuery
            Unknown field, operator or sort direction.

        StaleIndex
            The index was built under another schema version.
        """
        schema = self._require_schema()
        compiled = schema.collection(collection)
        self._check_version(schema, self._store.get_meta(META_SCHEMA_VERSION))

        if limit is not None and limit < 0:
            raise InvalidQuery("limit must be non-negative")

        conditions = self._parse_filter(compiled, filter or {})
        sort_field, descending = self._parse_sort(compiled, sort)
        index, ordered = self._plan(compiled, conditions, sort_field, descending)

        results: List[Record] = []
        for record in self._candidates(compiled, index, ordered, sort_field):
            if record.schema_version != schema.version:
                raise StaleIndex(schema.version, record.schema_version)
            if all(self._matches(record, c) for c in conditions):
                results.append(record)
                if ordered and limit is not None and len(results) >= limit:
                    break

        if sort_field is not None and not ordered:
            results = self._sorted(results, sort_field, descending)
        if limit is not None:
            results = results[:limit]
        return results

    def _parse_filter(
        self,
        collection: CompiledCollection,
        raw: Dict[str, Any],
    ) -> List[_Condition]:
        if not isinstance(raw, dict):
            raise InvalidQuery("filter must be an object")

        conditions: List[_Condition] = []
        for name, clause in raw.items():
            compiled = collection.field(name)
            if compiled is None:
                raise InvalidQuery(f"unknown field '{name}' in collection '{collection.name}'")

            ops = clause if isinstance(clause, dict) else {"eq": clause}
            for op, value in ops.items():
                if op not in FILTER_OPS:
                    raise InvalidQuery(f"unknown operator '{op}' for field '{name}'")
                if op == "in" and not isinstance(value, list):
                    raise InvalidQuery(f"operator 'in' on '{name}' needs a list")
                if op == "startsWith" and not isinstance(value, str):
                    raise InvalidQuery(f"operator 'startsWith' on '{name}' needs a string")
                conditions.append(_Condition(name, op, self._coerce(compiled, value)))
        return conditions

    @staticmethod
    def _coerce(field: CompiledField, value: Any) -> Any:
        """Bring datetime operands into the indexed representation."""
        if field.type is not FieldType.DATETIME:
            return value
        if isinstance(value, list):
            return [Database._coerce(field, v) for v in value]
        if isinstance(value, str):
            try:
                return normalize_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
            except ValueError:
                return value
        return value

    @staticmethod
    def _parse_sort(
        collection: CompiledCollection,
        sort: Optional[Dict[str, str]],
    ) -> Tuple[Optional[str], bool]:
        if not sort:
            return None, False
        if not isinstance(sort, dict) or len(sort) != 1:
            raise InvalidQuery("sort must name exactly one field")

        (name, direction), = sort.items()
        if collection.field(name) is None:
            raise InvalidQuery(f"unknown sort field '{name}' in collection '{collection.name}'")
        direction = str(direction).lower()
        if direction not in ("asc", "desc"):
            raise InvalidQuery(f"sort direction must be 'asc' or 'desc', got '{direction}'")
        return name, direction == "desc"

    @staticmethod
    def _is_indexed(collection: CompiledCollection, name: str) -> bool:
        compiled = collection.field(name)
        if compiled is None or not compiled.indexed:
            return False
        # Fields nested under a list of objects are not indexed
        parts = name.split(".")
        fields = collection.fields
        for part in parts[:-1]:
            parent = next(f for f in fields if f.name == part)
            if parent.list:
                return False
            fields = parent.fields
        return True

    def _plan(
        self,
        collection: CompiledCollection,
        conditions: Sequence[_Condition],
        sort_field: Optional[str],
        descending: bool,
    ) -> Tuple[Optional[IndexRange], bool]:
        """
        Choose an index range for the scan.

        Returns (range, ordered); `ordered` is true when the scan already
        yields records in the requested sort order.
        """
        usable = [
            c for c in conditions
            if self._is_indexed(collection, c.field)
            and not (c.op == "eq" and c.value is None)
        ]

        if sort_field is not None and self._is_indexed(collection, sort_field):
            bounds = [c for c in usable if c.field == sort_field]
            return self._range(sort_field, bounds, descending), True

        if usable:
            chosen = usable[0].field
            bounds = [c for c in usable if c.field == chosen]
            return self._range(chosen, bounds, False), sort_field is None

        return None, sort_field is None

    @staticmethod
    def _range(name: str, conditions: Sequence[_Condition], reverse: bool) -> IndexRange:
        params: Dict[str, Any] = {"field": name, "reverse": reverse}
        for c in conditions:
            if c.op == "eq":
                params["eq"] = c.value
                params["has_eq"] = True
            else:
                params[_RANGE_ATTRS[c.op]] = c.value
        return IndexRange(**params)

    def _candidates(
        self,
        collection: CompiledCollection,
        index: Optional[IndexRange],
        ordered: bool,
        sort_field: Optional[str],
    ) -> Iterator[Record]:
        seen = set()
        for record in self._store.scan(collection.name, index):
            seen.add(record.path)
            yield record

        unbounded = index is not None and not any(
            (index.has_eq, index.in_, index.gt, index.gte, index.lt, index.lte, index.starts_with)
        )
        if ordered and sort_field is not None and unbounded:
            # An index-ordered scan skips records without the sort field
            for path in self._store.paths(collection.name):
                if path not in seen:
                    yield self._store.get_record(path)

    @staticmethod
    def _matches(record: Record, condition: _Condition) -> bool:
        value = _lookup(record.fields, condition.field)
        values = value if isinstance(value, list) else [value]
        return any(_compare(v, condition.op, condition.value) for v in values)

    @staticmethod
    def _sorted(records: List[Record], field_name: str, descending: bool) -> List[Record]:
        def key(record: Record) -> str:
            value = _lookup(record.fields, field_name)
            if isinstance(value, list):
                value = min((v for v in value if v is not None), key=sort_key, default=None)
            return sort_key(value)

        present = [r for r in records if _lookup(r.fields, field_name) not in (None, [])]
        missing = [r for r in records if _lookup(r.fields, field_name) in (None, [])]
        present.sort(key=lambda r: (key(r), r.path), reverse=descending)
        return present + missing


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "eq":
        return sort_key(value) == sort_key(operand)
    if op == "in":
        return sort_key(value) in {sort_key(o) for o in operand}
    if value is None:
        return False
    if op == "startsWith":
        return isinstance(value, str) and value.startswith(operand)

    left, right = sort_key(value), sort_key(operand)
    # Ordering comparisons only hold between values of the same kind
    if left[0] != right[0]:
        return False
    if op in ("gt", "after"):
        return left > right
    if op == "gte":
        return left >= right
    if op in ("lt", "before"):
        return left < right
    if op == "lte":
        return left <= right
    return False
