"""
SQL Store

Persistent implementation of the Store contract: SQLAlchemy over a SQLite
file in WAL mode. Used by long-running server and audit modes, where the
index must survive process restarts.

Key Properties
--------------
- Every batch is one database transaction (commit or rollback as a unit)
- Readers run in their own transaction and see the last committed batch
- Index scans are served by the (collection, field, key, path) primary key
- Single writer process; concurrent server processes are unsupported
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from sqlalchemy import create_engine, delete, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .base import IndexEntry, IndexRange, Record
from .models import Base, IndexEntryRow, MetaRow, RecordRow
from ..core.errors import DatalayerIOError, NotFound

logger = logging.getLogger("datalayer.store.sql")


def _to_record(row: RecordRow) -> Record:
    return Record(
        collection=row.collection,
        path=row.path,
        fields=row.fields,
        schema_version=row.schema_version,
    )


class _SqlBatch:
    """Write set bound to one open transaction."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def put_record(self, record: Record, entries: Sequence[IndexEntry]) -> None:
        self._session.execute(
            delete(IndexEntryRow).where(IndexEntryRow.path == record.path)
        )
        self._session.merge(
            RecordRow(
                path=record.path,
                collection=record.collection,
                fields=record.fields,
                schema_version=record.schema_version,
            )
        )
        self._session.add_all(
            IndexEntryRow(
                collection=e.collection,
                field=e.field,
                key=e.key,
                path=e.path,
                value=e.value,
            )
            for e in entries
        )
        self._session.flush()

    def delete_record(self, path: str) -> None:
        result = self._session.execute(
            delete(RecordRow).where(RecordRow.path == path)
        )
        if result.rowcount == 0:
            raise NotFound(path)
        self._session.execute(
            delete(IndexEntryRow).where(IndexEntryRow.path == path)
        )

    def delete_all(self) -> None:
        self._session.execute(delete(IndexEntryRow))
        self._session.execute(delete(RecordRow))
        self._session.execute(delete(MetaRow))

    def set_meta(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._session.execute(delete(MetaRow).where(MetaRow.key == key))
        else:
            self._session.merge(MetaRow(key=key, value=value))
        self._session.flush()


class SqlStore:
    """
    SQLite-backed persistent index store.
    """

    def __init__(self, db_path: str | Path, echo: bool = False) -> None:
        """
        Parameters
        ----------
        db_path : str | Path
            SQLite database file. Parent directories are created on open().

        echo : bool
            Log emitted SQL (debugging only).
        """
        self.db_path = Path(db_path)
        self._echo = echo
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        if self._engine is not None:
            raise DatalayerIOError("store is already open")

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=self._echo,
                connect_args={"check_same_thread": False},
            )

            @event.listens_for(engine, "connect")
            def _set_pragmas(dbapi_conn, _record) -> None:
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
                cursor.close()

            Base.metadata.create_all(engine)
        except (SQLAlchemyError, OSError) as exc:
            raise DatalayerIOError(
                f"Failed to open store at {self.db_path}: {type(exc).__name__}"
            ) from exc

        self._engine = engine
        self._session_factory = sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.debug("Opened store %s", self.db_path)

    def close(self) -> None:
        if self._engine is None:
            raise DatalayerIOError("store is not open")
        try:
            self._engine.dispose()
        except SQLAlchemyError as exc:
            raise DatalayerIOError(
                f"Failed to close store: {type(exc).__name__}"
            ) from exc
        finally:
            self._engine = None
            self._session_factory = None
        logger.debug("Closed store %s", self.db_path)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._session_factory is None:
            raise DatalayerIOError("store is closed")
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise DatalayerIOError(
                f"Store operation failed: {type(exc).__name__}"
            ) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @contextmanager
    def batch(self) -> Iterator[_SqlBatch]:
        """
        Open a write batch; it commits on clean exit and rolls back on error.
        """
        with self._session() as session:
            with session.begin():
                yield _SqlBatch(session)

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
        with self.batch() as b:
            b.delete_all()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_record(self, path: str) -> Record:
        with self._session() as session:
            row = session.get(RecordRow, path)
            if row is None:
                raise NotFound(path)
            return _to_record(row)

    def get_meta(self, key: str) -> Optional[str]:
        with self._session() as session:
            row = session.get(MetaRow, key)
            return row.value if row is not None else None

    def index_entries(self, path: str) -> List[IndexEntry]:
        stmt = (
            select(IndexEntryRow)
            .where(IndexEntryRow.path == path)
            .order_by(IndexEntryRow.field, IndexEntryRow.key)
        )
        with self._session() as session:
            return [
                IndexEntry(
                    collection=row.collection,
                    field=row.field,
                    value=row.value,
                    key=row.key,
                    path=row.path,
                )
                for row in session.execute(stmt).scalars()
            ]

    def paths(self, collection: Optional[str] = None) -> List[str]:
        stmt = select(RecordRow.path).order_by(RecordRow.path)
        if collection is not None:
            stmt = stmt.where(RecordRow.collection == collection)
        with self._session() as session:
            return [row[0] for row in session.execute(stmt).all()]

    def scan(self, collection: str, index: Optional[IndexRange] = None) -> Iterator[Record]:
        """
        Yield records of a collection, by path or in index order.

        The result set is read in one transaction on first iteration.
        """
        with self._session() as session:
            if index is None:
                stmt = (
                    select(RecordRow)
                    .where(RecordRow.collection == collection)
                    .order_by(RecordRow.path)
                )
                records = [_to_record(r) for r in session.execute(stmt).scalars()]
            else:
                records = self._scan_index(session, collection, index)

        yield from records

    def _scan_index(self, session: Session, collection: str, index: IndexRange) -> List[Record]:
        key = IndexEntryRow.key
        stmt = (
            select(RecordRow, key)
            .join(IndexEntryRow, IndexEntryRow.path == RecordRow.path)
            .where(
                IndexEntryRow.collection == collection,
                IndexEntryRow.field == index.field,
            )
        )

        lower = index.lower_key()
        if lower is not None:
            stmt = stmt.where(key >= lower)

        stmt = stmt.order_by(key, IndexEntryRow.path)

        seen = set()
        records: List[Record] = []
        for row, row_key in session.execute(stmt).all():
            # Exact bounds share one implementation with the memory store
            if not index.accepts(row_key) or row.path in seen:
                continue
            seen.add(row.path)
            records.append(_to_record(row))

        if index.reverse:
            records.reverse()
        return records
