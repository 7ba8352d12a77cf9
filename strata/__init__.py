"""
Strata - Entity mapping and query translation for NoSQL stores.

Maps plain Python objects to generic documents through explicit metadata,
and translates filter queries into plans that key-value and document
backends execute natively.

Submodules:
    strata.metadata - Attribute descriptors and the metadata registry
    strata.conversion - Scalar and collection conversion
    strata.mapper - Entity <-> document mapping
    strata.query - Filter query translation
    strata.store - Persistence over memory and SQLite backends
"""

__version__ = "0.1.0"

from .exceptions import (
    StrataError,
    ConnectionError,
    UnknownEntityError,
    UnknownAttributeError,
    RegistryFrozenError,
    TypeConversionError,
    MalformedGeometryError,
    UnknownEnumValueError,
    InstantiationError,
    PersistenceError,
    QueryError,
    UnsupportedOperatorError,
    MixedOperatorError,
    NotFoundError,
)
from .geometry import Point
from .metadata import (
    StorageKind,
    TypeSpec,
    AttributeDescriptor,
    EmbeddableDescriptor,
    EntityDescriptor,
    Discriminator,
    MetadataRegistry,
    attribute,
    spec,
)
from .conversion import ScalarCodec, JsonScalarCodec, TypeConverter
from .keys import KeyFormat, CompositeKeyCodec
from .mapper import DocumentMapper, ID_FIELD
from .relations import RelationHolder, EnhancedEntity, RelationResolver
from .handler import DataHandler
from .query import (
    FilterClause,
    LogicalConnector,
    BackendCapabilities,
    QueryPlan,
    QueryInterpreter,
)
from . import store
from .store import Store, connect

__all__ = [
    "__version__",
    # Metadata
    "StorageKind",
    "TypeSpec",
    "AttributeDescriptor",
    "EmbeddableDescriptor",
    "EntityDescriptor",
    "Discriminator",
    "MetadataRegistry",
    "attribute",
    "spec",
    "Point",
    # Mapping
    "ScalarCodec",
    "JsonScalarCodec",
    "TypeConverter",
    "KeyFormat",
    "CompositeKeyCodec",
    "DocumentMapper",
    "ID_FIELD",
    "RelationHolder",
    "EnhancedEntity",
    "RelationResolver",
    "DataHandler",
    # Queries
    "FilterClause",
    "LogicalConnector",
    "BackendCapabilities",
    "QueryPlan",
    "QueryInterpreter",
    # Persistence
    "store",
    "Store",
    "connect",
    # Exceptions
    "StrataError",
    "ConnectionError",
    "UnknownEntityError",
    "UnknownAttributeError",
    "RegistryFrozenError",
    "TypeConversionError",
    "MalformedGeometryError",
    "UnknownEnumValueError",
    "InstantiationError",
    "PersistenceError",
    "QueryError",
    "UnsupportedOperatorError",
    "MixedOperatorError",
    "NotFoundError",
]
