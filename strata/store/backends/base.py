"""Abstract base class for storage backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional
import time

from ...query import BackendCapabilities, QueryPlan


@dataclass
class StoredDocument:
    """A record as kept by a backend."""

    table: str
    key: Any  # Identifier in storage form (scalar, flattened or structured key)
    data: dict  # Full record, including the _id slot
    version: int = 1
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Backends implement the actual storage mechanism (memory, SQLite, ...)
    and the execution of query plans, while the Store class handles
    mapping, metadata and the public API.
    """

    @property
    @abstractmethod
    def capabilities(self) -> BackendCapabilities:
        """What this backend can express: OR support, key format, codec."""
        pass

    @abstractmethod
    def connect(self, **kwargs) -> None:
        """Establish connection to storage.

        Args:
            **kwargs: Backend-specific connection parameters
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        pass

    @abstractmethod
    def get(self, table: str, key: Any) -> Optional[StoredDocument]:
        """Retrieve a record by table and key.

        Returns:
            StoredDocument if found, None otherwise
        """
        pass

    @abstractmethod
    def put(self, document: StoredDocument) -> None:
        """Store or replace a record."""
        pass

    @abstractmethod
    def delete(self, table: str, key: Any) -> bool:
        """Delete a record.

        Returns:
            True if the record existed and was deleted, False if not found
        """
        pass

    @abstractmethod
    def exists(self, table: str, key: Any) -> bool:
        """Check if a record exists."""
        pass

    @abstractmethod
    def execute(self, plan: QueryPlan) -> Iterator[dict]:
        """Run a query plan.

        Yields:
            Matching records (projected when the plan has columns)
        """
        pass
