"""Mapping between entities and generic documents.

The write path is lenient: a field that cannot be converted is logged and
left out, so the rest of the document is still written. The read path is
strict: the first field that cannot be set aborts the whole read with a
PersistenceError.
"""

import logging
import warnings
from typing import Any, Dict, Optional

from .conversion import ScalarCodec, TypeConverter
from .exceptions import PersistenceError, StrataError
from .keys import CompositeKeyCodec, KeyFormat, instantiate
from .metadata import AttributeDescriptor, EmbeddableDescriptor, EntityDescriptor, MetadataRegistry

logger = logging.getLogger(__name__)

ID_FIELD = "_id"


class DocumentMapper:
    """Build documents from entities and entities from documents.

    Example:
        mapper = DocumentMapper(registry)

        document = mapper.to_document(descriptor, student)
        # {'name': 'Ann', 'tags': ['x', 'y']}
        mapper.write_identifier(descriptor, student, document)
        # {'name': 'Ann', 'tags': ['x', 'y'], '_id': 42}

        loaded = mapper.from_document(descriptor, document)
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        converter: Optional[TypeConverter] = None,
        key_format: KeyFormat = KeyFormat.STRUCTURED,
        warn_extra_fields: bool = True,
        codec: Optional[ScalarCodec] = None,
    ):
        """Initialize the mapper.

        Args:
            registry: Metadata of the persistence unit
            converter: Type converter to use; one is created around
                ``codec`` when omitted
            key_format: Encoding for composite identifiers
            warn_extra_fields: If True, emit warnings for document fields
                that map to no attribute
            codec: Scalar codec for a newly created converter (JSON when
                omitted)
        """
        self.registry = registry
        if converter is None:
            converter = TypeConverter(registry, codec=codec, mapper=self)
        self.converter = converter
        self.keys = CompositeKeyCodec(self.converter)
        self.key_format = key_format
        self.warn_extra_fields = warn_extra_fields

    @staticmethod
    def _identifier_of(
        descriptor: EmbeddableDescriptor, id_attribute: Optional[AttributeDescriptor]
    ) -> Optional[AttributeDescriptor]:
        if id_attribute is None and isinstance(descriptor, EntityDescriptor):
            return descriptor.id_attribute
        return id_attribute

    def to_document(
        self,
        descriptor: EmbeddableDescriptor,
        entity: Any,
        id_attribute: Optional[AttributeDescriptor] = None,
    ) -> Dict[str, Any]:
        """Build the document body of an entity or embeddable.

        The identifier is left out (see write_identifier), associations are
        left to the relation resolver, and None values are omitted.

        Args:
            descriptor: Entity or embeddable descriptor
            entity: The instance to map
            id_attribute: Identifier to exclude; defaults to the entity's own

        Returns:
            Document of column names to storage values
        """
        id_attribute = self._identifier_of(descriptor, id_attribute)
        document = {}
        for attr in descriptor.attributes:
            if id_attribute is not None and attr.name == id_attribute.name:
                continue
            if attr.is_association:
                continue
            try:
                stored = self.converter.to_storage_value(attr, getattr(entity, attr.name))
            except (AttributeError, StrataError) as e:
                logger.error(
                    "Can't write property %s.%s (column %s), skipping: %s",
                    descriptor.name,
                    attr.name,
                    attr.column,
                    e,
                )
                continue
            if stored is not None:
                document[attr.column] = stored
        return document

    def from_document(
        self,
        descriptor: EmbeddableDescriptor,
        document: Optional[Dict[str, Any]],
        id_attribute: Optional[AttributeDescriptor] = None,
    ) -> Any:
        """Create an instance and populate it from a document.

        Absent columns leave the constructor's default in place.

        Args:
            descriptor: Entity or embeddable descriptor
            document: Stored document (None is treated as empty)
            id_attribute: Identifier read from the reserved slot; defaults
                to the entity's own

        Returns:
            New populated instance

        Raises:
            InstantiationError: If the type cannot be default-constructed
            PersistenceError: On the first field that cannot be set
        """
        id_attribute = self._identifier_of(descriptor, id_attribute)
        document = document or {}
        entity = instantiate(descriptor.python_type)

        if self.warn_extra_fields:
            self._warn_unknown_fields(descriptor, document)

        for attr in descriptor.attributes:
            if id_attribute is not None and attr.name == id_attribute.name:
                continue
            if attr.is_association:
                continue
            stored = document.get(attr.column)
            if stored is None:
                continue
            try:
                setattr(entity, attr.name, self.converter.from_storage_value(attr, stored))
            except (AttributeError, StrataError) as e:
                logger.error(
                    "Error while setting column %s of %s: %s", attr.column, descriptor.name, e
                )
                raise PersistenceError(
                    f"Cannot set {descriptor.name}.{attr.name} from column '{attr.column}': {e}"
                ) from e

        if id_attribute is not None:
            identifier = self._read_identifier(descriptor, id_attribute, document)
            try:
                setattr(entity, id_attribute.name, identifier)
            except AttributeError as e:
                raise PersistenceError(
                    f"Cannot set identifier {descriptor.name}.{id_attribute.name}: {e}"
                ) from e
        return entity

    # Identifier slot

    def identifier_value(
        self,
        descriptor: EntityDescriptor,
        identifier: Any,
        key_format: Optional[KeyFormat] = None,
    ) -> Any:
        """Storage form of an identifier value.

        Composite keys are flattened or structured according to
        ``key_format`` (the mapper's default when omitted).

        Raises:
            PersistenceError: If the identifier is None or cannot be converted
        """
        return self._identifier_value(descriptor.name, descriptor.id_attribute, identifier, key_format)

    def _identifier_value(
        self,
        owner: str,
        id_attribute: AttributeDescriptor,
        identifier: Any,
        key_format: Optional[KeyFormat] = None,
    ) -> Any:
        if identifier is None:
            raise PersistenceError(f"{owner} has no identifier value")
        if id_attribute.is_embedded:
            key_descriptor = self.registry.embeddable(id_attribute.python_type)
            return self.keys.encode_as(key_format or self.key_format, key_descriptor, identifier)
        try:
            return self.converter.to_storage_value(id_attribute, identifier)
        except StrataError as e:
            raise PersistenceError(f"Cannot convert identifier of {owner}: {e}") from e

    def identifier_from_storage(self, descriptor: EntityDescriptor, stored: Any) -> Any:
        """Logical identifier from its storage form (either key encoding)."""
        return self._identifier_from_storage(descriptor.name, descriptor.id_attribute, stored)

    def _identifier_from_storage(self, owner: str, id_attribute: AttributeDescriptor, stored: Any) -> Any:
        if id_attribute.is_embedded:
            key_descriptor = self.registry.embeddable(id_attribute.python_type)
            return self.keys.decode_any(key_descriptor, stored)
        try:
            return self.converter.from_storage_value(id_attribute, stored)
        except StrataError as e:
            raise PersistenceError(f"Cannot read identifier of {owner}: {e}") from e

    def write_identifier(
        self,
        descriptor: EntityDescriptor,
        entity: Any,
        document: Dict[str, Any],
        key_format: Optional[KeyFormat] = None,
    ) -> Dict[str, Any]:
        """Put the entity's identifier into the document's reserved slot."""
        try:
            identifier = getattr(entity, descriptor.id_attribute.name)
        except AttributeError as e:
            raise PersistenceError(f"Cannot read identifier of {descriptor.name}: {e}") from e
        document[ID_FIELD] = self.identifier_value(descriptor, identifier, key_format)
        return document

    def read_identifier(self, descriptor: EntityDescriptor, document: Dict[str, Any]) -> Any:
        """Logical identifier stored in a document's reserved slot.

        Raises:
            PersistenceError: If the slot is empty or cannot be decoded
        """
        return self._read_identifier(descriptor, descriptor.id_attribute, document)

    def _read_identifier(
        self, descriptor: EmbeddableDescriptor, id_attribute: AttributeDescriptor, document: Dict[str, Any]
    ) -> Any:
        stored = document.get(ID_FIELD)
        if stored is None:
            raise PersistenceError(f"Document for {descriptor.name} has no '{ID_FIELD}' value")
        return self._identifier_from_storage(descriptor.name, id_attribute, stored)

    def _warn_unknown_fields(self, descriptor: EmbeddableDescriptor, document: Dict[str, Any]) -> None:
        known = set(descriptor.columns)
        known.add(ID_FIELD)
        discriminator = getattr(descriptor, "discriminator", None)
        if discriminator is not None:
            known.add(discriminator.column)
        for name in document:
            if name not in known:
                warnings.warn(
                    f"Ignoring unknown field '{name}' when loading {descriptor.name}. "
                    f"This field may have been removed from the descriptor.",
                    UserWarning,
                )
