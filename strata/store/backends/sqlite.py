"""SQLite document backend."""

import json
import logging
import sqlite3
from typing import Any, Iterator, List, Optional, Tuple

from ...conversion import JsonScalarCodec
from ...exceptions import ConnectionError
from ...keys import KeyFormat
from ...query import BackendCapabilities, QueryPlan
from .base import StorageBackend, StoredDocument

logger = logging.getLogger(__name__)


def _canonical(value: Any) -> str:
    # Same text SQLite's json functions produce for objects and arrays
    return json.dumps(value, separators=(",", ":"))


def _path(column: str) -> str:
    return '$."' + column.replace('"', '\\"') + '"'


class SQLiteBackend(StorageBackend):
    """SQLite document backend.

    Stores each record as a JSON document in a SQLite database file. Zero
    configuration required. Composite keys are stored as structured
    sub-documents, and both AND and OR queries run as SQL over
    ``json_extract``.

    Example:
        backend = SQLiteBackend()
        backend.connect(path="school.db")

        # Or in-memory
        backend.connect(path=":memory:")
    """

    _capabilities = BackendCapabilities(
        name="sqlite",
        supports_or=True,
        key_format=KeyFormat.STRUCTURED,
        codec=JsonScalarCodec(),
    )

    def __init__(self):
        self._conn: Optional[sqlite3.Connection] = None
        self._path: Optional[str] = None

    @property
    def capabilities(self) -> BackendCapabilities:
        return self._capabilities

    def connect(self, path: str = ":memory:", **kwargs) -> None:
        """Connect to SQLite database.

        Args:
            path: Database file path, or ":memory:" for in-memory database
        """
        self._path = path
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            raise ConnectionError(f"Cannot open SQLite database {path!r}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.debug("SQLite backend connected to %s", path)

    def _create_tables(self) -> None:
        """Create the documents table if it doesn't exist."""
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                tbl TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL,
                PRIMARY KEY (tbl, doc_key)
            )
            """
        )
        self._conn.commit()

    @property
    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ConnectionError("SQLite backend is not connected")
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.debug("SQLite backend closed (%s)", self._path)

    def get(self, table: str, key: Any) -> Optional[StoredDocument]:
        """Retrieve a record by table and key."""
        cursor = self._db.execute(
            "SELECT * FROM documents WHERE tbl = ? AND doc_key = ?",
            (table, _canonical(key)),
        )
        row = cursor.fetchone()
        if row is None:
            return None

        return StoredDocument(
            table=row["tbl"],
            key=json.loads(row["doc_key"]),
            data=json.loads(row["data"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def put(self, document: StoredDocument) -> None:
        """Store or replace a record."""
        self._db.execute(
            """
            INSERT OR REPLACE INTO documents
                (tbl, doc_key, data, version, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                document.table,
                _canonical(document.key),
                json.dumps(document.data),
                document.version,
                document.created_at,
                document.updated_at,
            ),
        )
        self._db.commit()

    def delete(self, table: str, key: Any) -> bool:
        """Delete a record."""
        cursor = self._db.execute(
            "DELETE FROM documents WHERE tbl = ? AND doc_key = ?",
            (table, _canonical(key)),
        )
        self._db.commit()
        return cursor.rowcount > 0

    def exists(self, table: str, key: Any) -> bool:
        """Check if a record exists."""
        cursor = self._db.execute(
            "SELECT 1 FROM documents WHERE tbl = ? AND doc_key = ?",
            (table, _canonical(key)),
        )
        return cursor.fetchone() is not None

    def execute(self, plan: QueryPlan) -> Iterator[dict]:
        """Run a query plan as a single SELECT.

        Identifier equality is answered from the primary key. Everything
        else becomes a WHERE clause over ``json_extract``, joined with the
        plan's connector.
        """
        if plan.is_direct_lookup:
            stored = self.get(plan.table, plan.id_value)
            if stored is not None and plan.matches(stored.data):
                yield plan.project(stored.data)
            return

        sql, params = self._select(plan)
        logger.debug("Executing %s with %r", sql, params)
        for row in self._db.execute(sql, params):
            yield plan.project(json.loads(row["data"]))

    def _select(self, plan: QueryPlan) -> Tuple[str, List[Any]]:
        where = ["tbl = ?"]
        params: List[Any] = [plan.table]

        if plan.discriminator is not None:
            where.append("json_extract(data, ?) = ?")
            params.extend([_path(plan.discriminator.column), plan.discriminator.value])

        if plan.conditions:
            parts = []
            for condition in plan.conditions:
                if condition.value is None:
                    if condition.operator == "=":
                        parts.append("json_extract(data, ?) IS NULL")
                        params.append(_path(condition.column))
                    else:
                        parts.append("0")
                    continue
                parts.append(f"json_extract(data, ?) {condition.operator} ?")
                params.extend([_path(condition.column), self._parameter(condition.value)])
            joiner = " OR " if plan.is_disjunction else " AND "
            where.append("(" + joiner.join(parts) + ")")

        sql = "SELECT data FROM documents WHERE " + " AND ".join(where)

        if plan.order_by is not None:
            column, ascending = plan.order_by
            sql += " ORDER BY json_extract(data, ?) " + ("ASC" if ascending else "DESC")
            params.append(_path(column))
        elif plan.key_name is not None and not plan.is_disjunction:
            sql += " ORDER BY json_extract(data, ?) ASC, doc_key"
            params.append(_path(plan.key_name))
        else:
            sql += " ORDER BY doc_key"

        if plan.max_results is not None:
            sql += " LIMIT ?"
            params.append(plan.max_results)
        return sql, params

    @staticmethod
    def _parameter(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return _canonical(value)
        return value
