"""Association identifiers on the write and read paths.

Associations are never stored inline. On write, the identifier of each
referenced entity is written as a plain field. On read, those identifiers
are handed back next to the entity as an EnhancedEntity so the caller can
decide whether and when to fetch the referenced entities.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .mapper import DocumentMapper
from .metadata import EntityDescriptor


@dataclass(frozen=True)
class RelationHolder:
    """A pre-resolved association: column name and referenced identifier."""

    relation_name: str
    relation_value: Any


@dataclass
class EnhancedEntity:
    """An entity whose associations still need fetching.

    Attributes:
        entity: The reconstructed entity (associations unset)
        entity_id: The entity's own identifier
        relations: Association column -> identifier of the referenced entity
    """

    entity: Any
    entity_id: Any
    relations: Dict[str, Any] = field(default_factory=dict)


class RelationResolver:
    """Write association identifiers into documents and read them back."""

    def __init__(self, mapper: DocumentMapper):
        self.mapper = mapper
        self.registry = mapper.registry

    def holders_for(self, descriptor: EntityDescriptor, entity: Any) -> List[RelationHolder]:
        """Derive relation holders from an entity's association attributes.

        An association attribute may hold the referenced entity or just its
        identifier. Unset associations produce no holder.
        """
        holders = []
        for attr in descriptor.associations:
            target = getattr(entity, attr.name, None)
            if target is None:
                continue
            target_descriptor = self.registry.describe(attr.python_type)
            if isinstance(target, target_descriptor.python_type):
                identifier = getattr(target, target_descriptor.id_attribute.name, None)
            else:
                identifier = target
            if identifier is None:
                continue
            holders.append(
                RelationHolder(attr.column, self.mapper.identifier_value(target_descriptor, identifier))
            )
        return holders

    def attach(self, document: Dict[str, Any], holders: Optional[Iterable[RelationHolder]]) -> Dict[str, Any]:
        """Write relation holders into a document as scalar fields."""
        for holder in holders or ():
            value = holder.relation_value
            if value is None:
                continue
            if self.registry.is_embeddable(type(value)):
                key_descriptor = self.registry.embeddable(type(value))
                value = self.mapper.keys.encode_as(self.mapper.key_format, key_descriptor, value)
            else:
                value = self.mapper.converter.codec.encode(type(value), value)
            document[holder.relation_name] = value
        return document

    def extract(
        self,
        descriptor: EntityDescriptor,
        document: Dict[str, Any],
        relations: Optional[Iterable[str]],
    ) -> Dict[str, Any]:
        """Collect identifiers of requested associations from a document.

        Args:
            descriptor: Descriptor of the document's entity
            document: The stored document
            relations: Association names or columns of interest

        Returns:
            Column -> identifier coerced to the referenced entity's id type.
            Empty when nothing was requested or nothing is stored.

        Raises:
            PersistenceError: If a stored identifier cannot be converted
        """
        relation_value = {}
        if not relations:
            return relation_value
        wanted = set(relations)
        for attr in descriptor.associations:
            if attr.column not in wanted and attr.name not in wanted:
                continue
            if descriptor.is_identifier(attr):
                continue
            stored = document.get(attr.column)
            if stored is None:
                continue
            target_descriptor = self.registry.describe(attr.python_type)
            relation_value[attr.column] = self.mapper.identifier_from_storage(target_descriptor, stored)
        return relation_value

    @staticmethod
    def enhance(entity: Any, entity_id: Any, relation_value: Dict[str, Any]) -> Any:
        """Wrap the entity when it has unresolved associations."""
        if relation_value:
            return EnhancedEntity(entity, entity_id, dict(relation_value))
        return entity
