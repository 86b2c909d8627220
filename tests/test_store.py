"""
Store Contract Tests

Every test runs against both MemoryStore and SqlStore.
"""

import pytest

from tina_datalayer.core.errors import DatalayerIOError, NotFound
from tina_datalayer.store.base import IndexEntry, IndexRange, Record, sort_key
from tina_datalayer.store.memory import MemoryStore
from tina_datalayer.store.sql import SqlStore


def _record(path, collection="posts", **fields):
    return Record(collection=collection, path=path, fields=fields, schema_version="v1")


def _entries(record, **indexed):
    return [
        IndexEntry.build(record.collection, name, value, record.path)
        for name, value in indexed.items()
    ]


def _put(store, path, rating=None, **fields):
    record = _record(path, rating=rating, **fields)
    store.put_record(record, _entries(record, rating=rating) if rating is not None else [])
    return record


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    if request.param == "memory":
        store = MemoryStore()
    else:
        store = SqlStore(tmp_path / "db" / "index.sqlite")
    store.open()
    yield store
    if store.is_open:
        store.close()


class TestSortKey:

    def test_numbers_sort_numerically(self):
        values = [-10.5, -1, 0, 0.25, 2, 10, 1e9]
        assert sorted(values, key=sort_key) == values

    def test_type_order(self):
        assert sort_key(None) < sort_key(False) < sort_key(True) < sort_key(-5) < sort_key("a")


class TestLifecycle:

    def test_open_is_not_reentrant(self, any_store):
        with pytest.raises(DatalayerIOError):
            any_store.open()

    def test_closed_store_fails(self, any_store):
        any_store.close()
        with pytest.raises(DatalayerIOError):
            any_store.get_meta("schema_version")
        with pytest.raises(DatalayerIOError):
            any_store.close()


class TestRecords:

    def test_put_get_delete(self, any_store):
        record = _put(any_store, "posts/a.md", rating=3, title="A")

        assert any_store.get_record("posts/a.md") == record
        assert [e.field for e in any_store.index_entries("posts/a.md")] == ["rating"]

        any_store.delete_record("posts/a.md")
        with pytest.raises(NotFound):
            any_store.get_record("posts/a.md")
        assert any_store.index_entries("posts/a.md") == []

    def test_delete_missing(self, any_store):
        with pytest.raises(NotFound):
            any_store.delete_record("posts/none.md")

    def test_put_replaces_entries(self, any_store):
        _put(any_store, "posts/a.md", rating=3)
        _put(any_store, "posts/a.md", rating=5)

        entries = any_store.index_entries("posts/a.md")
        assert [e.value for e in entries] == [5]

    def test_paths_and_scan_by_path(self, any_store):
        _put(any_store, "posts/b.md")
        _put(any_store, "posts/a.md")
        other = _record("authors/x.json", collection="authors")
        any_store.put_record(other, [])

        assert any_store.paths() == ["authors/x.json", "posts/a.md", "posts/b.md"]
        assert any_store.paths("posts") == ["posts/a.md", "posts/b.md"]
        assert [r.path for r in any_store.scan("posts")] == ["posts/a.md", "posts/b.md"]

    def test_meta(self, any_store):
        assert any_store.get_meta("schema_version") is None
        any_store.set_meta("schema_version", "v1")
        assert any_store.get_meta("schema_version") == "v1"
        any_store.set_meta("schema_version", None)
        assert any_store.get_meta("schema_version") is None

    def test_clear(self, any_store):
        _put(any_store, "posts/a.md", rating=1)
        any_store.set_meta("k", "v")
        any_store.clear()

        assert any_store.paths() == []
        assert any_store.get_meta("k") is None


class TestBatch:

    def test_batch_is_atomic(self, any_store):
        _put(any_store, "posts/a.md", rating=1)

        with pytest.raises(RuntimeError):
            with any_store.batch() as batch:
                record = _record("posts/b.md")
                batch.put_record(record, [])
                batch.delete_record("posts/a.md")
                raise RuntimeError("boom")

        assert any_store.paths() == ["posts/a.md"]

    def test_failing_delete_discards_batch(self, any_store):
        with pytest.raises(NotFound):
            with any_store.batch() as batch:
                batch.put_record(_record("posts/b.md"), [])
                batch.delete_record("posts/none.md")

        assert any_store.paths() == []


class TestIndexScan:

    @pytest.fixture
    def rated(self, any_store):
        for path, rating in [("posts/a.md", 3), ("posts/b.md", 1), ("posts/c.md", 2), ("posts/d.md", 3)]:
            _put(any_store, path, rating=rating)
        _put(any_store, "posts/e.md")
        return any_store

    def _paths(self, store, **range_args):
        return [r.path for r in store.scan("posts", IndexRange(field="rating", **range_args))]

    def test_ordered_by_value_then_path(self, rated):
        assert self._paths(rated) == ["posts/b.md", "posts/c.md", "posts/a.md", "posts/d.md"]

    def test_reverse(self, rated):
        assert self._paths(rated, reverse=True) == ["posts/d.md", "posts/a.md", "posts/c.md", "posts/b.md"]

    def test_equality(self, rated):
        assert self._paths(rated, eq=3, has_eq=True) == ["posts/a.md", "posts/d.md"]

    def test_bounds(self, rated):
        assert self._paths(rated, gt=1, lte=3) == ["posts/c.md", "posts/a.md", "posts/d.md"]
        assert self._paths(rated, gte=2, lt=3) == ["posts/c.md"]

    def test_in(self, rated):
        assert self._paths(rated, in_=[1, 2]) == ["posts/b.md", "posts/c.md"]

    def test_starts_with(self, any_store):
        for path, slug in [("posts/a.md", "intro"), ("posts/b.md", "introduction"), ("posts/c.md", "other")]:
            record = _record(path, slug=slug)
            any_store.put_record(record, _entries(record, slug=slug))

        found = [r.path for r in any_store.scan("posts", IndexRange(field="slug", starts_with="intro"))]
        assert found == ["posts/a.md", "posts/b.md"]


def test_sql_store_is_durable(tmp_path):
    path = tmp_path / "index.sqlite"
    store = SqlStore(path)
    store.open()
    _put(store, "posts/a.md", rating=4)
    store.set_meta("schema_version", "v1")
    store.close()

    reopened = SqlStore(path)
    reopened.open()
    try:
        assert reopened.get_record("posts/a.md").fields == {"rating": 4}
        assert reopened.get_meta("schema_version") == "v1"
    finally:
        reopened.close()
