"""
SQLAlchemy Models

Defines the persistent index schema:
- Records (one row per indexed content path)
- Index entries (secondary index rows, ordered by encoded key)
- Store metadata (active schema version, content fingerprint)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Record Model
# ---------------------------------------------------------------------

class RecordRow(Base):
    """
    Validated content record.
    """
    __tablename__ = "record"

    path: Mapped[str] = mapped_column(Text, primary_key=True)
    collection: Mapped[str] = mapped_column(String(128), nullable=False)
    fields: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    schema_version: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        Index("idx_record_collection_path", "collection", "path"),
    )


# ---------------------------------------------------------------------
# Index Entry Model
# ---------------------------------------------------------------------

class IndexEntryRow(Base):
    """
    Secondary index row; the primary key doubles as the ordered scan key.
    """
    __tablename__ = "index_entry"

    collection: Mapped[str] = mapped_column(String(128), primary_key=True)
    field: Mapped[str] = mapped_column(String(256), primary_key=True)
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    path: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("idx_index_entry_path", "path"),
    )


# ---------------------------------------------------------------------
# Metadata Model
# ---------------------------------------------------------------------

class MetaRow(Base):
    """
    Key/value metadata about the index as a whole.
    """
    __tablename__ = "store_meta"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
