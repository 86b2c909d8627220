"""
Store Package

Index store abstractions: an in-memory store for one-shot builds and a
SQLAlchemy/SQLite store for persistent server mode.
"""

from .base import IndexEntry, IndexRange, Record, Store, StoreBatch, normalize_datetime, sort_key
from .memory import MemoryStore
from .sql import SqlStore

__all__ = [
    "IndexEntry",
    "IndexRange",
    "Record",
    "Store",
    "StoreBatch",
    "normalize_datetime",
    "sort_key",
    "MemoryStore",
    "SqlStore",
]
