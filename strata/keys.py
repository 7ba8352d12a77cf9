"""Composite key encoding.

A composite identifier is an embeddable whose attributes, in declaration
order, make up the key. Two encodings are supported:

- FLATTENED: one string, field values joined with the ``\\x01`` separator,
  for key-value shaped backends
- STRUCTURED: a sub-document with one entry per key column, for
  document shaped backends
"""

import logging
from enum import Enum
from typing import Any, Dict, List

from .exceptions import InstantiationError, PersistenceError, StrataError
from .metadata import AttributeDescriptor, EmbeddableDescriptor

logger = logging.getLogger(__name__)

SEPARATOR = "\x01"


class KeyFormat(Enum):
    """How a backend stores composite identifiers."""

    FLATTENED = "flattened"
    STRUCTURED = "structured"


def instantiate(python_type: type) -> Any:
    """Default-construct a mapped type.

    Raises:
        InstantiationError: If the constructor fails
    """
    try:
        return python_type()
    except Exception as e:
        raise InstantiationError(python_type, e) from e


class CompositeKeyCodec:
    """Encode and decode composite identifiers.

    Encoding is deterministic: the same key values and the same descriptor
    always produce the same key, which backends rely on for exact-match
    lookups.

    Example:
        codec = CompositeKeyCodec(converter)
        key = codec.encode(enrolment_key_descriptor, EnrolmentKey("CS101", 42))
        # "CS101\\x0142"
        codec.decode(enrolment_key_descriptor, key)  # EnrolmentKey("CS101", 42)
    """

    def __init__(self, converter):
        self.converter = converter

    @staticmethod
    def key_attributes(descriptor: EmbeddableDescriptor) -> List[AttributeDescriptor]:
        """Key fields in declaration order, without derived attributes."""
        return [attr for attr in descriptor.attributes if not attr.derived]

    def encode(self, descriptor: EmbeddableDescriptor, key: Any) -> str:
        """Flatten a key object into a single string.

        Raises:
            PersistenceError: Wrapping the first field that cannot be read
                or converted
        """
        parts = []
        for attr in self.key_attributes(descriptor):
            try:
                text = self.converter.to_key_string(attr, getattr(key, attr.name))
            except (AttributeError, StrataError) as e:
                logger.error("Error during persist of %s key field %s: %s", descriptor.name, attr.name, e)
                raise PersistenceError(
                    f"Cannot encode key field {descriptor.name}.{attr.name}: {e}"
                ) from e
            if SEPARATOR in text:
                raise PersistenceError(
                    f"Key field {descriptor.name}.{attr.name} contains the reserved separator"
                )
            parts.append(text)
        return SEPARATOR.join(parts)

    def decode(self, descriptor: EmbeddableDescriptor, text: str) -> Any:
        """Rebuild a key object from its flattened form.

        Raises:
            PersistenceError: If the field count does not match or a field
                cannot be converted
        """
        attributes = self.key_attributes(descriptor)
        parts = text.split(SEPARATOR)
        if len(parts) != len(attributes):
            raise PersistenceError(
                f"Key for {descriptor.name} has {len(parts)} fields, expected {len(attributes)}"
            )
        key = instantiate(descriptor.python_type)
        for attr, part in zip(attributes, parts):
            try:
                setattr(key, attr.name, self.converter.from_key_string(attr, part))
            except (AttributeError, StrataError) as e:
                raise PersistenceError(
                    f"Cannot decode key field {descriptor.name}.{attr.name}: {e}"
                ) from e
        return key

    def encode_structured(self, descriptor: EmbeddableDescriptor, key: Any) -> Dict[str, Any]:
        """Key object as a sub-document keyed by column name."""
        document = {}
        for attr in self.key_attributes(descriptor):
            try:
                stored = self.converter.to_storage_value(attr, getattr(key, attr.name))
            except (AttributeError, StrataError) as e:
                logger.error("Error during persist of %s key field %s: %s", descriptor.name, attr.name, e)
                raise PersistenceError(
                    f"Cannot encode key field {descriptor.name}.{attr.name}: {e}"
                ) from e
            if stored is not None:
                document[attr.column] = stored
        return document

    def decode_structured(self, descriptor: EmbeddableDescriptor, document: Dict[str, Any]) -> Any:
        """Rebuild a key object from its sub-document."""
        key = instantiate(descriptor.python_type)
        for attr in self.key_attributes(descriptor):
            try:
                value = self.converter.from_storage_value(attr, document.get(attr.column))
                setattr(key, attr.name, value)
            except (AttributeError, StrataError) as e:
                raise PersistenceError(
                    f"Cannot decode key field {descriptor.name}.{attr.name}: {e}"
                ) from e
        return key

    def encode_as(self, key_format: KeyFormat, descriptor: EmbeddableDescriptor, key: Any) -> Any:
        if key_format is KeyFormat.FLATTENED:
            return self.encode(descriptor, key)
        return self.encode_structured(descriptor, key)

    def decode_any(self, descriptor: EmbeddableDescriptor, stored: Any) -> Any:
        """Decode either encoding, chosen by the stored value's shape."""
        if isinstance(stored, dict):
            return self.decode_structured(descriptor, stored)
        if isinstance(stored, str):
            return self.decode(descriptor, stored)
        raise PersistenceError(
            f"Stored key for {descriptor.name} is neither a string nor a document: {stored!r}"
        )
