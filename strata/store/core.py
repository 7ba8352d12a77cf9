"""Core Store class for entity persistence."""

import logging
import time
from typing import Any, Iterable, List, Optional, Tuple, Union
from urllib.parse import urlparse

from ..exceptions import NotFoundError
from ..handler import DataHandler
from ..mapper import ID_FIELD
from ..metadata import EntityDescriptor, MetadataRegistry
from ..query import QueryInterpreter, QueryPlan, Token
from ..relations import EnhancedEntity, RelationHolder
from .backends.base import StorageBackend, StoredDocument
from .backends.memory import MemoryBackend

logger = logging.getLogger(__name__)


class Store:
    """Entity persistence over a storage backend.

    Maps entities to records with the backend's codec and key format,
    translates filter queries into plans the backend executes, and hands
    back association identifiers for deferred resolution.

    Example:
        from strata import connect

        db = connect("sqlite:///school.db", registry)

        db.save(Student(id=42, name="Ann", tags=["x", "y"]))
        ann = db.find(Student, 42)

        adults = db.query(Student, [("age", ">=", 18), "AND", ("age", "<", 65)])
    """

    def __init__(
        self,
        backend: StorageBackend,
        registry: Optional[MetadataRegistry] = None,
        warn_extra_fields: bool = True,
    ):
        """Create a Store with the given backend.

        Use connect() for convenient URL-based connection.

        Args:
            backend: Connected storage backend
            registry: Metadata of the persistence unit (the default unit
                when omitted)
            warn_extra_fields: If True, warn about stored fields that map
                to no attribute
        """
        self._backend = backend
        self._registry = registry if registry is not None else MetadataRegistry.for_unit("default")
        capabilities = backend.capabilities
        self._handler = DataHandler(
            self._registry,
            codec=capabilities.codec,
            key_format=capabilities.key_format,
            warn_extra_fields=warn_extra_fields,
        )
        self._interpreter = QueryInterpreter(self._handler.mapper, capabilities)

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    @property
    def handler(self) -> DataHandler:
        return self._handler

    def _describe(self, entity_type: type) -> EntityDescriptor:
        return self._registry.describe(entity_type)

    # Record operations

    def save(self, entity: Any, relations: Optional[Iterable[RelationHolder]] = None) -> None:
        """Store or replace an entity.

        Args:
            entity: A registered entity instance
            relations: Pre-resolved association identifiers; derived from
                the entity when omitted

        Raises:
            UnknownEntityError: If the entity's class is not registered
            PersistenceError: If the identifier is missing or unusable
        """
        descriptor = self._describe(type(entity))
        document = self._handler.document_from_entity(descriptor, entity, relations)
        key = document[ID_FIELD]

        now = time.time()
        existing = self._backend.get(descriptor.table, key)
        self._backend.put(
            StoredDocument(
                table=descriptor.table,
                key=key,
                data=document,
                version=existing.version + 1 if existing else 1,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
        )
        logger.debug("Saved %s %r", descriptor.name, key)

    def find(self, entity_type: type, identifier: Any, relations: Optional[Iterable[str]] = None) -> Any:
        """Load an entity by identifier.

        Args:
            entity_type: The entity class
            identifier: Logical identifier (a key instance for composite keys)
            relations: Association names whose identifiers should be returned

        Returns:
            The entity, an EnhancedEntity when requested associations are
            stored, or None if nothing is stored under the identifier
        """
        descriptor = self._describe(entity_type)
        key = self._handler.identifier_value(descriptor, identifier)
        stored = self._backend.get(descriptor.table, key)
        if stored is None:
            return None
        return self._handler.entity_from_document(descriptor, stored.data, relations)

    def exists(self, entity_type: type, identifier: Any) -> bool:
        """Check whether an entity is stored under the identifier."""
        descriptor = self._describe(entity_type)
        return self._backend.exists(descriptor.table, self._handler.identifier_value(descriptor, identifier))

    def delete(self, entity_type: type, identifier: Any) -> None:
        """Delete an entity.

        Raises:
            NotFoundError: If nothing is stored under the identifier
        """
        descriptor = self._describe(entity_type)
        key = self._handler.identifier_value(descriptor, identifier)
        if not self._backend.delete(descriptor.table, key):
            raise NotFoundError(descriptor.table, identifier)
        logger.debug("Deleted %s %r", descriptor.name, key)

    # Query operations

    def translate(
        self,
        entity_type: type,
        tokens: Iterable[Token] = (),
        columns: Optional[Iterable[str]] = None,
        max_results: Optional[int] = None,
        order_by: Optional[Union[str, Tuple[str, bool]]] = None,
    ) -> QueryPlan:
        """Build the backend query plan for a filter query without running it."""
        return self._interpreter.translate(
            self._describe(entity_type),
            tokens,
            columns=columns,
            max_results=max_results,
            order_by=order_by,
        )

    def query(
        self,
        entity_type: type,
        tokens: Iterable[Token] = (),
        columns: Optional[Iterable[str]] = None,
        max_results: Optional[int] = None,
        order_by: Optional[Union[str, Tuple[str, bool]]] = None,
        relations: Optional[Iterable[str]] = None,
    ) -> List[Any]:
        """Run a filter query.

        Args:
            entity_type: The entity class
            tokens: Clauses and connectors, e.g.
                ``[("age", ">=", 18), "AND", ("age", "<", 65)]``
            columns: Attribute names to load (others keep their defaults)
            max_results: Result limit
            order_by: Attribute name, or (name, ascending)
            relations: Association names whose identifiers should be returned

        Returns:
            Entities (or EnhancedEntity wrappers) in backend order

        Raises:
            QueryError: If the query cannot be expressed on this backend
        """
        descriptor = self._describe(entity_type)
        plan = self._interpreter.translate(
            descriptor, tokens, columns=columns, max_results=max_results, order_by=order_by
        )
        return [
            self._handler.entity_from_document(descriptor, document, relations)
            for document in self._backend.execute(plan)
        ]

    def resolve(self, result: Any) -> Any:
        """Fetch the associations of an EnhancedEntity and set them.

        Plain entities are returned unchanged. Referenced entities that are
        no longer stored leave their attribute unset.

        Returns:
            The entity with its associations populated
        """
        if not isinstance(result, EnhancedEntity):
            return result
        descriptor = self._describe(type(result.entity))
        for column, identifier in result.relations.items():
            attr = descriptor.attribute(column)
            target = self.find(attr.python_type, identifier)
            if target is None:
                logger.warning(
                    "%s %r references missing %s %r",
                    descriptor.name,
                    result.entity_id,
                    attr.python_type.__name__,
                    identifier,
                )
                continue
            setattr(result.entity, attr.name, target)
        return result.entity

    # Lifecycle

    def close(self) -> None:
        """Close the store and release resources."""
        self._backend.close()

    def __enter__(self) -> "Store":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()


def connect(url: str, registry: Optional[MetadataRegistry] = None) -> Store:
    """Connect to a store using a URL.

    Supported URL schemes:
        - memory://          In-memory key-value storage (testing)
        - sqlite:///path.db  SQLite document storage
        - sqlite:///:memory: SQLite in-memory
        - mongodb://...      MongoDB (future)
        - couchdb://...      CouchDB (future)

    Args:
        url: Connection URL
        registry: Metadata of the persistence unit (the default unit when
            omitted)

    Returns:
        Connected Store instance

    Example:
        db = connect("sqlite:///school.db", registry)
        db = connect("memory://")
    """
    parsed = urlparse(url)
    scheme = parsed.scheme

    if scheme == "memory":
        backend = MemoryBackend()
        backend.connect()
        return Store(backend, registry)

    elif scheme == "sqlite":
        from .backends.sqlite import SQLiteBackend

        # Handle sqlite:///path and sqlite:///:memory:
        path = parsed.path
        if path.startswith("/"):
            path = path[1:]  # Remove leading slash from file path

        backend = SQLiteBackend()
        backend.connect(path=path if path else ":memory:")
        return Store(backend, registry)

    elif scheme == "mongodb":
        raise NotImplementedError("MongoDB backend not yet implemented")

    elif scheme == "couchdb":
        raise NotImplementedError("CouchDB backend not yet implemented")

    else:
        raise ValueError(f"Unknown storage scheme: {scheme}")
