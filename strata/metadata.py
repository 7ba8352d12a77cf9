"""Attribute descriptors and the metadata registry.

Every mapped type is described once, explicitly, during a registration
phase. The mapping engine only ever reads these descriptors; it never
inspects classes or annotations to discover attributes.

Example:
    from strata.metadata import (
        EntityDescriptor, MetadataRegistry, StorageKind, attribute, spec,
    )

    registry = MetadataRegistry.for_unit("school")
    registry.register_entity(
        EntityDescriptor(
            Student,
            id_attribute=attribute("id", StorageKind.PRIMITIVE, int),
            attributes=[
                attribute("name", StorageKind.PRIMITIVE, str, column="NAME"),
                attribute("tags", StorageKind.LIST, element=spec(StorageKind.PRIMITIVE, str)),
            ],
        )
    )
    registry.freeze()

    registry.describe(Student).attribute("name").column  # "NAME"
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, Iterator, List, Optional, Sequence, Tuple, Type

from .exceptions import RegistryFrozenError, UnknownAttributeError, UnknownEntityError
from .geometry import Point


class StorageKind(Enum):
    """How an attribute is laid out in a stored document."""

    PRIMITIVE = "primitive"
    ENUM = "enum"
    MAP = "map"
    SET = "set"
    LIST = "list"
    EMBEDDED = "embedded"
    ASSOCIATION = "association"
    POINT = "point"


CONTAINER_KINDS = frozenset({StorageKind.MAP, StorageKind.SET, StorageKind.LIST})

_DEFAULT_TYPES = {
    StorageKind.MAP: dict,
    StorageKind.SET: set,
    StorageKind.LIST: list,
    StorageKind.POINT: Point,
}


@dataclass(frozen=True)
class TypeSpec:
    """Storage kind plus Python type, recursive for containers.

    Attributes:
        kind: The storage kind
        python_type: Logical type (container type for MAP/SET/LIST, target
            class for EMBEDDED and ASSOCIATION)
        element: Element spec for LIST/SET, value spec for MAP. None means
            each element is converted from its own runtime type.
        key: Key spec for MAP. None means keys must be strings.
        collection: For EMBEDDED only: list or set when the attribute holds
            a collection of embeddables
    """

    kind: StorageKind
    python_type: type
    element: Optional["TypeSpec"] = None
    key: Optional["TypeSpec"] = None
    collection: Optional[type] = None

    def __post_init__(self):
        if self.element is not None and self.kind not in CONTAINER_KINDS:
            raise ValueError(f"Only MAP, SET and LIST carry an element spec, not {self.kind.name}")
        if self.key is not None and self.kind is not StorageKind.MAP:
            raise ValueError(f"Only MAP carries a key spec, not {self.kind.name}")
        if self.collection is not None:
            if self.kind is not StorageKind.EMBEDDED:
                raise ValueError("Only EMBEDDED attributes can be collections of embeddables")
            if self.collection not in (list, set):
                raise ValueError(f"Embedded collection must be list or set, not {self.collection!r}")
        if self.kind is StorageKind.ENUM and not issubclass(self.python_type, Enum):
            raise ValueError(f"ENUM spec requires an Enum subclass, got {self.python_type!r}")


def spec(
    kind: StorageKind,
    python_type: Optional[type] = None,
    element: Optional[TypeSpec] = None,
    key: Optional[TypeSpec] = None,
    collection: Optional[type] = None,
) -> TypeSpec:
    """Build a TypeSpec, defaulting the Python type for containers and points."""
    if python_type is None:
        python_type = _DEFAULT_TYPES.get(kind)
        if python_type is None:
            raise ValueError(f"{kind.name} spec requires an explicit python_type")
    return TypeSpec(kind, python_type, element=element, key=key, collection=collection)


@dataclass(frozen=True)
class AttributeDescriptor:
    """One mapped attribute of an entity or embeddable.

    Attributes:
        name: Logical (Python attribute) name
        type: The attribute's TypeSpec
        column: Backend field name, defaults to name
        derived: Computed or static attribute, excluded from composite keys
    """

    name: str
    type: TypeSpec
    column: Optional[str] = None
    derived: bool = False

    def __post_init__(self):
        if not self.column:
            object.__setattr__(self, "column", self.name)

    @property
    def kind(self) -> StorageKind:
        return self.type.kind

    @property
    def python_type(self) -> type:
        return self.type.python_type

    @property
    def element(self) -> Optional[TypeSpec]:
        return self.type.element

    @property
    def is_association(self) -> bool:
        return self.type.kind is StorageKind.ASSOCIATION

    @property
    def is_embedded(self) -> bool:
        return self.type.kind is StorageKind.EMBEDDED

    @property
    def is_collection(self) -> bool:
        return self.type.kind in CONTAINER_KINDS or self.type.collection is not None


def attribute(
    name: str,
    kind: StorageKind,
    python_type: Optional[type] = None,
    *,
    column: Optional[str] = None,
    element: Optional[TypeSpec] = None,
    key: Optional[TypeSpec] = None,
    collection: Optional[type] = None,
    derived: bool = False,
) -> AttributeDescriptor:
    """Convenience constructor for AttributeDescriptor.

    Example:
        attribute("age", StorageKind.PRIMITIVE, int, column="AGE")
        attribute("home", StorageKind.POINT)
        attribute("addresses", StorageKind.EMBEDDED, Address, collection=list)
        attribute("phones", StorageKind.MAP,
                  key=spec(StorageKind.ENUM, PhoneKind),
                  element=spec(StorageKind.PRIMITIVE, str))
    """
    return AttributeDescriptor(
        name=name,
        type=spec(kind, python_type, element=element, key=key, collection=collection),
        column=column,
        derived=derived,
    )


@dataclass(frozen=True)
class Discriminator:
    """Inheritance discriminator written alongside a subtype's documents."""

    column: str
    value: str


@dataclass(frozen=True)
class EmbeddableDescriptor:
    """Attribute table of a value type stored nested inside another record."""

    python_type: type
    attributes: Tuple[AttributeDescriptor, ...]

    def __post_init__(self):
        object.__setattr__(self, "attributes", tuple(self.attributes))
        names = set()
        columns = set()
        for attr in self.attributes:
            if attr.name in names:
                raise ValueError(f"Duplicate attribute '{attr.name}' on {self.name}")
            if attr.column in columns:
                raise ValueError(f"Duplicate column '{attr.column}' on {self.name}")
            names.add(attr.name)
            columns.add(attr.column)

    @property
    def name(self) -> str:
        return self.python_type.__name__

    def attribute(self, name: str) -> AttributeDescriptor:
        """Look up an attribute by logical name, falling back to column name.

        Raises:
            UnknownAttributeError: If neither matches
        """
        for attr in self.attributes:
            if attr.name == name:
                return attr
        for attr in self.attributes:
            if attr.column == name:
                return attr
        raise UnknownAttributeError(self.name, name)

    def has_attribute(self, name: str) -> bool:
        return any(name in (attr.name, attr.column) for attr in self.attributes)

    @property
    def columns(self) -> List[str]:
        return [attr.column for attr in self.attributes]


@dataclass(frozen=True)
class EntityDescriptor(EmbeddableDescriptor):
    """Attribute table of a top-level entity.

    The identifier attribute is always part of ``attributes``; it is
    prepended when not listed explicitly. A composite identifier is an
    EMBEDDED attribute whose type is a registered embeddable.
    """

    id_attribute: AttributeDescriptor = field(default=None)
    table: Optional[str] = None
    persistence_unit: str = "default"
    discriminator: Optional[Discriminator] = None

    def __post_init__(self):
        if self.id_attribute is None:
            raise ValueError(f"{self.python_type.__name__} needs an id_attribute")
        attributes = tuple(self.attributes)
        if not any(attr.name == self.id_attribute.name for attr in attributes):
            attributes = (self.id_attribute,) + attributes
        object.__setattr__(self, "attributes", attributes)
        if not self.table:
            object.__setattr__(self, "table", self.python_type.__name__)
        super().__post_init__()

    @property
    def is_composite_key(self) -> bool:
        return self.id_attribute.kind is StorageKind.EMBEDDED

    def is_identifier(self, attr: AttributeDescriptor) -> bool:
        return attr.name == self.id_attribute.name

    @property
    def associations(self) -> List[AttributeDescriptor]:
        return [attr for attr in self.attributes if attr.is_association]


class MetadataRegistry:
    """Descriptors of every entity and embeddable of one persistence unit.

    Registration happens once at startup; ``freeze()`` ends it. After that
    the registry is read-only and safe to share between threads without
    locking.

    Example:
        registry = MetadataRegistry.for_unit("school")
        registry.register_embeddable(EmbeddableDescriptor(Address, [...]))
        registry.register_entity(EntityDescriptor(Student, [...], id_attribute=...))
        registry.freeze()

        registry.describe(Student)
        registry.is_embeddable(Address)  # True
    """

    _units: ClassVar[Dict[str, "MetadataRegistry"]] = {}

    def __init__(self, persistence_unit: str = "default"):
        self.persistence_unit = persistence_unit
        self._entities: Dict[type, EntityDescriptor] = {}
        self._embeddables: Dict[type, EmbeddableDescriptor] = {}
        self._enums: Dict[str, Type[Enum]] = {}
        self._frozen = False

    @classmethod
    def for_unit(cls, persistence_unit: str) -> "MetadataRegistry":
        """Get the process-wide registry for a persistence unit, creating it once."""
        registry = cls._units.get(persistence_unit)
        if registry is None:
            registry = cls(persistence_unit)
            cls._units[persistence_unit] = registry
        return registry

    @classmethod
    def clear_units(cls) -> None:
        """Forget all process-wide registries."""
        cls._units.clear()

    # Registration phase

    def _check_open(self) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Registry for unit '{self.persistence_unit}' is frozen"
            )

    def register_entity(self, descriptor: EntityDescriptor) -> None:
        """Register an entity descriptor.

        Enum types used anywhere in its attributes are indexed by name so
        tagged collection elements can be decoded later.
        """
        self._check_open()
        self._entities[descriptor.python_type] = descriptor
        self._index_enums(descriptor.attributes)

    def register_embeddable(self, descriptor: EmbeddableDescriptor) -> None:
        """Register an embeddable (including composite key types)."""
        self._check_open()
        self._embeddables[descriptor.python_type] = descriptor
        self._index_enums(descriptor.attributes)

    def register_enum(self, enum_type: Type[Enum]) -> None:
        """Make an enum decodable when it appears in an untyped collection."""
        self._check_open()
        self._enums[enum_type.__name__] = enum_type

    def _index_enums(self, attributes: Sequence[AttributeDescriptor]) -> None:
        for attr in attributes:
            for type_spec in _walk(attr.type):
                if type_spec.kind is StorageKind.ENUM:
                    self._enums[type_spec.python_type.__name__] = type_spec.python_type

    def freeze(self) -> None:
        """End the registration phase."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # Lookups

    def describe(self, entity_type: type) -> EntityDescriptor:
        """Get the descriptor of an entity type.

        Raises:
            UnknownEntityError: If the type was never registered
        """
        descriptor = self._entities.get(entity_type)
        if descriptor is None:
            raise UnknownEntityError(entity_type)
        return descriptor

    def is_entity(self, python_type: type) -> bool:
        return python_type in self._entities

    def is_embeddable(self, python_type: type) -> bool:
        return python_type in self._embeddables

    def embeddable(self, python_type: type) -> EmbeddableDescriptor:
        """Get the descriptor of an embeddable type.

        Raises:
            UnknownEntityError: If the type was never registered as embeddable
        """
        descriptor = self._embeddables.get(python_type)
        if descriptor is None:
            raise UnknownEntityError(python_type)
        return descriptor

    def embeddable_named(self, name: str) -> Optional[EmbeddableDescriptor]:
        for python_type, descriptor in self._embeddables.items():
            if python_type.__name__ == name:
                return descriptor
        return None

    def enum_named(self, name: str) -> Optional[Type[Enum]]:
        return self._enums.get(name)

    def entities(self) -> Iterator[EntityDescriptor]:
        return iter(list(self._entities.values()))


def _walk(type_spec: TypeSpec) -> Iterator[TypeSpec]:
    yield type_spec
    if type_spec.element is not None:
        yield from _walk(type_spec.element)
    if type_spec.key is not None:
        yield from _walk(type_spec.key)
