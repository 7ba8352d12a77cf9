"""Complete stored records for entities.

The data handler combines the document mapper, the relation resolver and
the entity's discriminator into the full record a backend stores: body,
``_id`` slot, relation fields and discriminator column.
"""

from typing import Any, Dict, Iterable, Optional

from .conversion import ScalarCodec
from .keys import KeyFormat
from .mapper import DocumentMapper
from .metadata import EntityDescriptor, MetadataRegistry
from .relations import RelationHolder, RelationResolver


class DataHandler:
    """Convert entities to stored records and back.

    Example:
        handler = DataHandler(registry)

        record = handler.document_from_entity(descriptor, student)
        # {'name': 'Ann', 'tags': ['x', 'y'], '_id': 42}

        handler.entity_from_document(descriptor, record)          # Student
        handler.entity_from_document(descriptor, record, ["tutor"])  # EnhancedEntity
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        codec: Optional[ScalarCodec] = None,
        key_format: KeyFormat = KeyFormat.STRUCTURED,
        warn_extra_fields: bool = True,
    ):
        self.registry = registry
        self.mapper = DocumentMapper(
            registry,
            key_format=key_format,
            warn_extra_fields=warn_extra_fields,
            codec=codec,
        )
        self.converter = self.mapper.converter
        self.relations = RelationResolver(self.mapper)

    def document_from_entity(
        self,
        descriptor: EntityDescriptor,
        entity: Any,
        relations: Optional[Iterable[RelationHolder]] = None,
    ) -> Dict[str, Any]:
        """Build the full record of an entity.

        Args:
            descriptor: The entity's descriptor
            entity: The entity instance
            relations: Pre-resolved association identifiers; derived from
                the entity's association attributes when omitted

        Returns:
            Record with body, identifier, relation fields and discriminator
        """
        document = self.mapper.to_document(descriptor, entity)
        self.mapper.write_identifier(descriptor, entity, document)
        if relations is None:
            relations = self.relations.holders_for(descriptor, entity)
        self.relations.attach(document, relations)
        if descriptor.discriminator is not None:
            document[descriptor.discriminator.column] = descriptor.discriminator.value
        return document

    def entity_from_document(
        self,
        descriptor: EntityDescriptor,
        document: Dict[str, Any],
        relations: Optional[Iterable[str]] = None,
    ) -> Any:
        """Rebuild an entity from its record.

        Args:
            descriptor: The entity's descriptor
            document: The stored record
            relations: Association names or columns whose identifiers should
                be returned for resolution

        Returns:
            The entity, or an EnhancedEntity when requested associations
            have stored identifiers
        """
        entity = self.mapper.from_document(descriptor, document)
        relation_value = self.relations.extract(descriptor, document, relations)
        entity_id = getattr(entity, descriptor.id_attribute.name)
        return self.relations.enhance(entity, entity_id, relation_value)

    def identifier_value(self, descriptor: EntityDescriptor, identifier: Any) -> Any:
        return self.mapper.identifier_value(descriptor, identifier)
