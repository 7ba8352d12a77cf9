"""In-memory key-value backend."""

import copy
import logging
from typing import Any, Dict, Hashable, Iterator, List, Optional

from ...conversion import ScalarCodec
from ...exceptions import ConnectionError
from ...keys import KeyFormat
from ...query import BackendCapabilities, QueryPlan
from .base import StorageBackend, StoredDocument

logger = logging.getLogger(__name__)


def _hashable(key: Any) -> Hashable:
    if isinstance(key, dict):
        return tuple((k, _hashable(v)) for k, v in key.items())
    if isinstance(key, list):
        return tuple(_hashable(v) for v in key)
    return key


def _sort_key(value: Any):
    return (value is None, value)


class MemoryBackend(StorageBackend):
    """In-memory key-value backend.

    Shaped like a key-value store: one dict of records per table, composite
    keys flattened into strings, and no support for OR queries. Values are
    kept as native Python objects. Data is lost when the backend is closed
    or the process ends.

    Example:
        backend = MemoryBackend()
        backend.connect()

        backend.put(StoredDocument(table="Student", key=1, data={"_id": 1}))
        record = backend.get("Student", 1)
    """

    _capabilities = BackendCapabilities(
        name="memory",
        supports_or=False,
        key_format=KeyFormat.FLATTENED,
        codec=ScalarCodec(),
    )

    def __init__(self):
        self._tables: Dict[str, Dict[Hashable, StoredDocument]] = {}
        self._connected = False

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._capabilities

    def connect(self, **kwargs) -> None:
        """Initialize the in-memory store."""
        self._tables = {}
        self._connected = True
        logger.debug("Memory backend connected")

    def close(self) -> None:
        """Clear the in-memory store."""
        self._tables.clear()
        self._connected = False
        logger.debug("Memory backend closed")

    def _rows(self, table: str, create: bool = False) -> Dict[Hashable, StoredDocument]:
        if not self._connected:
            raise ConnectionError("Memory backend is not connected")
        if create:
            return self._tables.setdefault(table, {})
        return self._tables.get(table, {})

    def get(self, table: str, key: Any) -> Optional[StoredDocument]:
        """Retrieve a record by table and key."""
        stored = self._rows(table).get(_hashable(key))
        return copy.deepcopy(stored)

    def put(self, document: StoredDocument) -> None:
        """Store or replace a record."""
        rows = self._rows(document.table, create=True)
        rows[_hashable(document.key)] = copy.deepcopy(document)

    def delete(self, table: str, key: Any) -> bool:
        """Delete a record."""
        rows = self._rows(table)
        hashed = _hashable(key)
        if hashed in rows:
            del rows[hashed]
            return True
        return False

    def exists(self, table: str, key: Any) -> bool:
        """Check if a record exists."""
        return _hashable(key) in self._rows(table)

    def execute(self, plan: QueryPlan) -> Iterator[dict]:
        """Run a query plan against one table.

        Identifier equality is a direct lookup. Otherwise the records are
        scanned in key order (the plan's key column for range queries,
        the record key for everything else), filtered, ordered and limited.
        """
        rows = self._rows(plan.table)

        if plan.is_direct_lookup:
            stored = rows.get(_hashable(plan.id_value))
            candidates = [stored.data] if stored is not None else []
        else:
            ordered = sorted(rows.items(), key=lambda item: repr(item[0]))
            candidates = [stored.data for _, stored in ordered]

        results = [document for document in candidates if plan.matches(document)]
        results = self._order(results, plan)
        if plan.max_results is not None:
            results = results[: plan.max_results]

        for document in results:
            yield plan.project(copy.deepcopy(document))

    @staticmethod
    def _order(documents: List[dict], plan: QueryPlan) -> List[dict]:
        if plan.order_by is not None:
            column, ascending = plan.order_by
        elif plan.key_name is not None and not plan.is_disjunction:
            column, ascending = plan.key_name, True
        else:
            return documents
        try:
            return sorted(
                documents,
                key=lambda document: _sort_key(document.get(column)),
                reverse=not ascending,
            )
        except TypeError:
            logger.warning("Cannot order %s by mixed-type column %s", plan.table, column)
            return documents
