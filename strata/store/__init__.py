"""Entity persistence over pluggable storage backends.

Quick Start:
    from strata import EntityDescriptor, MetadataRegistry, StorageKind, attribute, spec
    from strata.store import connect

    registry = MetadataRegistry()
    registry.register_entity(
        EntityDescriptor(
            Student,
            id_attribute=attribute("id", StorageKind.PRIMITIVE, int),
            attributes=[
                attribute("name", StorageKind.PRIMITIVE, str),
                attribute("tags", StorageKind.LIST, element=spec(StorageKind.PRIMITIVE, str)),
            ],
        )
    )
    registry.freeze()

    db = connect("sqlite:///school.db", registry)
    db.save(Student(id=42, name="Ann", tags=["x", "y"]))
    ann = db.find(Student, 42)

Supported backends:
    - memory://           In-memory key-value storage (testing)
    - sqlite:///path.db   SQLite document storage
    - sqlite:///:memory:  SQLite in-memory

Key Classes:
    - Store: Save, find, delete, query and resolve entities
    - connect(): Create a Store from a URL

Backend Classes:
    - MemoryBackend: Key-value shaped, flattened composite keys, AND only
    - SQLiteBackend: Document shaped, structured composite keys, AND and OR
"""

from .core import Store, connect
from .backends import StorageBackend, StoredDocument, MemoryBackend, SQLiteBackend

__all__ = [
    # Main API
    "Store",
    "connect",
    # Backends
    "StorageBackend",
    "StoredDocument",
    "MemoryBackend",
    "SQLiteBackend",
]
