"""Storage backends for strata.store."""

from .base import StorageBackend, StoredDocument
from .memory import MemoryBackend
from .sqlite import SQLiteBackend

__all__ = [
    "StorageBackend",
    "StoredDocument",
    "MemoryBackend",
    "SQLiteBackend",
]
