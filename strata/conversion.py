"""Type conversion between logical attribute values and storage values.

Storage values are what a backend keeps inside a document: scalars,
lists and string-keyed dicts. Each backend plugs in a ScalarCodec that
decides how non-JSON scalars (datetimes, decimals, UUIDs, bytes) are
represented.

Elements of collections that declare no element type are stored with a
tagged wrapper when their type cannot be recovered from the stored value
itself, e.g. ``{"__datetime__": "2024-01-02T03:04:05"}``. Plain dicts that
use one of the tag names as a key are wrapped in ``{"__map__": ...}`` so
they read back as dicts.
"""

import base64
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Union
from uuid import UUID

from .exceptions import MalformedGeometryError, TypeConversionError, UnknownEnumValueError
from .geometry import Point
from .metadata import (
    AttributeDescriptor,
    EmbeddableDescriptor,
    MetadataRegistry,
    StorageKind,
    TypeSpec,
)

if TYPE_CHECKING:
    from .mapper import DocumentMapper


_SCALARS = (str, int, float, bool)

_TRUE = ("true", "1", "yes")
_FALSE = ("false", "0", "no")


class Tag(str, Enum):
    """Markers for self-describing collection elements."""

    MAP = "__map__"
    ENUM = "__enum__"
    DATETIME = "__datetime__"
    DATE = "__date__"
    TIME = "__time__"
    DECIMAL = "__decimal__"
    UUID = "__uuid__"
    BYTES = "__bytes__"
    POINT = "__point__"
    SET = "__set__"
    TUPLE = "__tuple__"
    EMBEDDED = "__embedded__"


def coerce(python_type: type, value: Any) -> Any:
    """Coerce a value to the declared Python type.

    Used for query literals and on the read path. Widening conversions
    (int to float, ISO strings to datetimes, numeric strings to numbers)
    are allowed; lossy ones are not.

    Args:
        python_type: The declared logical type
        value: The value to coerce

    Returns:
        The coerced value (None stays None)

    Raises:
        TypeConversionError: If the value cannot represent the type
    """
    if value is None or python_type is object or python_type is Any:
        return value

    if python_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        elif isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise TypeConversionError(
            f"Cannot convert {value!r} to bool", value=value, target=bool
        )

    if isinstance(value, python_type) and not (
        isinstance(value, bool) and python_type in (int, float, Decimal)
    ):
        return value

    try:
        if isinstance(value, bool):
            pass
        elif python_type is int:
            if isinstance(value, float) and value.is_integer():
                return int(value)
            if isinstance(value, Decimal) and value == value.to_integral_value():
                return int(value)
            if isinstance(value, str):
                return int(value.strip())
        elif python_type is float:
            if isinstance(value, (int, Decimal, str)):
                return float(value)
        elif python_type is str:
            if isinstance(value, (int, float, Decimal, UUID)):
                return str(value)
            if isinstance(value, Enum):
                return value.name
        elif python_type is Decimal:
            if isinstance(value, (int, float, str)):
                return Decimal(str(value))
        elif python_type is datetime:
            if isinstance(value, str):
                return datetime.fromisoformat(value)
        elif python_type is date:
            if isinstance(value, str):
                return date.fromisoformat(value)
        elif python_type is time:
            if isinstance(value, str):
                return time.fromisoformat(value)
        elif python_type is UUID:
            if isinstance(value, (str, int)):
                return UUID(value) if isinstance(value, str) else UUID(int=value)
        elif python_type is bytes:
            if isinstance(value, (bytearray, memoryview)):
                return bytes(value)
            if isinstance(value, str):
                return value.encode("utf-8")
    except (ValueError, TypeError, ArithmeticError) as e:
        raise TypeConversionError(
            f"Cannot convert {value!r} to {python_type.__name__}: {e}",
            value=value,
            target=python_type,
        ) from e

    raise TypeConversionError(
        f"Cannot convert {type(value).__name__} value {value!r} to {python_type.__name__}",
        value=value,
        target=python_type,
    )


class ScalarCodec:
    """Backend-native scalar encoding.

    The base codec keeps Python objects as they are, which suits backends
    that hold live objects (the in-memory backend).
    """

    name = "native"

    def encode(self, python_type: type, value: Any) -> Any:
        return value

    def decode(self, python_type: type, stored: Any) -> Any:
        return coerce(python_type, stored)


class JsonScalarCodec(ScalarCodec):
    """Scalar encoding for JSON document stores.

    Temporal values become ISO-8601 strings, Decimal and UUID their string
    form and bytes base64 text, so documents survive ``json.dumps``.
    """

    name = "json"

    def encode(self, python_type: type, value: Any) -> Any:
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        if isinstance(value, (Decimal, UUID)):
            return str(value)
        if isinstance(value, bytes):
            return base64.b64encode(value).decode("ascii")
        return value

    def decode(self, python_type: type, stored: Any) -> Any:
        if python_type is bytes and isinstance(stored, str):
            try:
                return base64.b64decode(stored.encode("ascii"), validate=True)
            except ValueError as e:
                raise TypeConversionError(
                    f"Stored bytes are not valid base64: {e}", value=stored, target=bytes
                ) from e
        return coerce(python_type, stored)


Convertible = Union[AttributeDescriptor, TypeSpec]


def _spec_of(target: Convertible) -> TypeSpec:
    if isinstance(target, AttributeDescriptor):
        return target.type
    return target


class TypeConverter:
    """Convert attribute values to and from their storage form.

    Conversion is driven entirely by the TypeSpec of the attribute, so a
    converter holds no per-call state and can be shared across threads.

    Example:
        converter = TypeConverter(registry)

        stored = converter.to_storage_value(attr, ["x", "y"])
        converter.from_storage_value(attr, stored)  # ["x", "y"]
    """

    def __init__(
        self,
        registry: MetadataRegistry,
        codec: Optional[ScalarCodec] = None,
        mapper: Optional["DocumentMapper"] = None,
    ):
        self.registry = registry
        self.codec = codec if codec is not None else JsonScalarCodec()
        self._mapper = mapper

    @property
    def mapper(self) -> "DocumentMapper":
        """Document mapper used for embedded values."""
        if self._mapper is None:
            from .mapper import DocumentMapper

            self._mapper = DocumentMapper(self.registry, converter=self)
        return self._mapper

    # Values

    def to_storage_value(self, target: Convertible, value: Any) -> Any:
        """Convert a logical value to its storage form.

        Args:
            target: Attribute descriptor or TypeSpec
            value: Logical value

        Returns:
            Storage value, or None when the value is None (absent) or the
            attribute is an association

        Raises:
            TypeConversionError: If the value does not fit the declared type
        """
        type_spec = _spec_of(target)
        if value is None:
            return None
        kind = type_spec.kind

        if kind is StorageKind.PRIMITIVE:
            coerced = coerce(type_spec.python_type, value)
            return self.codec.encode(type_spec.python_type, coerced)
        if kind is StorageKind.ENUM:
            return self._enum_member(type_spec.python_type, value).name
        if kind is StorageKind.POINT:
            return self._encode_point(value)
        if kind is StorageKind.LIST:
            return [
                self._encode_element(type_spec.element, item)
                for item in self._iterable(value, kind)
            ]
        if kind is StorageKind.SET:
            encoded = [
                self._encode_element(type_spec.element, item)
                for item in self._iterable(value, kind)
            ]
            return sorted(encoded, key=repr)
        if kind is StorageKind.MAP:
            if not isinstance(value, dict):
                raise TypeConversionError(
                    f"MAP value must be a dict, got {type(value).__name__}", value=value
                )
            return {
                self._encode_map_key(type_spec.key, k): self._encode_element(type_spec.element, v)
                for k, v in value.items()
            }
        if kind is StorageKind.EMBEDDED:
            embeddable = self.registry.embeddable(type_spec.python_type)
            if type_spec.collection is not None:
                return [
                    self.mapper.to_document(embeddable, self._embedded(embeddable, item))
                    for item in self._iterable(value, kind)
                ]
            return self.mapper.to_document(embeddable, self._embedded(embeddable, value))
        # Associations carry identifiers only; see strata.relations
        return None

    def from_storage_value(self, target: Convertible, stored: Any) -> Any:
        """Convert a storage value back to its logical form.

        Args:
            target: Attribute descriptor or TypeSpec
            stored: Storage value (None means absent)

        Returns:
            Logical value, or None when absent

        Raises:
            TypeConversionError: If the stored value does not fit the
                declared type (including MalformedGeometryError and
                UnknownEnumValueError)
        """
        type_spec = _spec_of(target)
        if stored is None:
            return None
        kind = type_spec.kind

        if kind is StorageKind.PRIMITIVE:
            return self.codec.decode(type_spec.python_type, stored)
        if kind is StorageKind.ENUM:
            return self._enum_member(type_spec.python_type, stored)
        if kind is StorageKind.POINT:
            return self._decode_point(stored)
        if kind in (StorageKind.LIST, StorageKind.SET):
            if not isinstance(stored, (list, tuple)):
                raise TypeConversionError(
                    f"Stored {kind.name} must be a sequence, got {type(stored).__name__}",
                    value=stored,
                )
            items = [self._decode_element(type_spec.element, item) for item in stored]
            if kind is StorageKind.SET:
                return self._to_set(type_spec.python_type, items, stored)
            return type_spec.python_type(items)
        if kind is StorageKind.MAP:
            if not isinstance(stored, dict):
                raise TypeConversionError(
                    f"Stored MAP must be a document, got {type(stored).__name__}", value=stored
                )
            return type_spec.python_type(
                (self._decode_map_key(type_spec.key, k), self._decode_element(type_spec.element, v))
                for k, v in stored.items()
            )
        if kind is StorageKind.EMBEDDED:
            embeddable = self.registry.embeddable(type_spec.python_type)
            if type_spec.collection is not None:
                if not isinstance(stored, (list, tuple)):
                    raise TypeConversionError(
                        f"Stored embedded collection must be a sequence, got {type(stored).__name__}",
                        value=stored,
                    )
                return type_spec.collection(
                    self.mapper.from_document(embeddable, document) for document in stored
                )
            return self.mapper.from_document(embeddable, stored)
        return None

    # Keys

    def to_key_string(self, target: Convertible, value: Any) -> str:
        """String form of a key field, used by flattened keys and map keys."""
        type_spec = _spec_of(target)
        if value is None:
            return ""
        if type_spec.kind is StorageKind.ENUM:
            return self._enum_member(type_spec.python_type, value).name
        if type_spec.kind is not StorageKind.PRIMITIVE:
            raise TypeConversionError(
                f"{type_spec.kind.name} values cannot be used as key fields", value=value
            )
        coerced = coerce(type_spec.python_type, value)
        if isinstance(coerced, bool):
            return "true" if coerced else "false"
        if isinstance(coerced, (datetime, date, time)):
            return coerced.isoformat()
        if isinstance(coerced, bytes):
            return base64.b64encode(coerced).decode("ascii")
        return str(coerced)

    def from_key_string(self, target: Convertible, text: str) -> Any:
        """Inverse of to_key_string."""
        type_spec = _spec_of(target)
        if text == "" and type_spec.python_type is not str:
            return None
        if type_spec.kind is StorageKind.ENUM:
            return self._enum_member(type_spec.python_type, text)
        if type_spec.kind is not StorageKind.PRIMITIVE:
            raise TypeConversionError(
                f"{type_spec.kind.name} values cannot be used as key fields", value=text
            )
        if type_spec.python_type is bytes:
            return JsonScalarCodec().decode(bytes, text)
        return coerce(type_spec.python_type, text)

    # Helpers

    @staticmethod
    def _iterable(value: Any, kind: StorageKind):
        if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
            raise TypeConversionError(
                f"{kind.name} value must be a collection, got {type(value).__name__}",
                value=value,
            )
        return value

    @staticmethod
    def _enum_member(enum_type: type, value: Any) -> Enum:
        if isinstance(value, enum_type):
            return value
        if isinstance(value, str):
            try:
                return enum_type[value]
            except KeyError:
                raise UnknownEnumValueError(enum_type, value) from None
        raise TypeConversionError(
            f"Cannot convert {type(value).__name__} to {enum_type.__name__}",
            value=value,
            target=enum_type,
        )

    @staticmethod
    def _to_set(set_type: type, items: list, stored: Any) -> Any:
        try:
            return set_type(items)
        except TypeError as e:
            raise TypeConversionError(
                f"Stored set holds unhashable elements: {stored!r}", value=stored, target=set_type
            ) from e

    @staticmethod
    def _embedded(embeddable: EmbeddableDescriptor, value: Any) -> Any:
        if isinstance(value, embeddable.python_type):
            return value
        raise TypeConversionError(
            f"EMBEDDED value must be a {embeddable.name}, got {type(value).__name__}",
            value=value,
            target=embeddable.python_type,
        )

    @staticmethod
    def _encode_point(value: Any) -> list:
        if isinstance(value, Point):
            return value.to_list()
        raise TypeConversionError(
            f"POINT value must be a Point, got {type(value).__name__}", value=value, target=Point
        )

    @staticmethod
    def _decode_point(stored: Any) -> Point:
        if not isinstance(stored, (list, tuple)) or len(stored) < 2:
            raise MalformedGeometryError(
                f"Geo-point must be a two element sequence, got {stored!r}", value=stored
            )
        x, y = stored[0], stored[1]
        if x is None or y is None:
            raise MalformedGeometryError(
                f"Geo-point is missing a coordinate: {stored!r}", value=stored
            )
        try:
            return Point(float(str(x)), float(str(y)))
        except ValueError as e:
            raise MalformedGeometryError(
                f"Error while reading geolocation data, possible corrupt data: {stored!r}",
                value=stored,
            ) from e

    def _encode_element(self, element: Optional[TypeSpec], value: Any) -> Any:
        if element is not None:
            return self.to_storage_value(element, value)
        return self._encode_tagged(value)

    def _decode_element(self, element: Optional[TypeSpec], stored: Any) -> Any:
        if element is not None:
            return self.from_storage_value(element, stored)
        return self._decode_tagged(stored)

    def _encode_map_key(self, key: Optional[TypeSpec], value: Any) -> str:
        if key is not None:
            return self.to_key_string(key, value)
        if not isinstance(value, str):
            raise TypeConversionError(
                f"Map key {value!r} is not a string and the map declares no key type",
                value=value,
            )
        return value

    def _decode_map_key(self, key: Optional[TypeSpec], text: str) -> Any:
        if key is not None:
            return self.from_key_string(key, text)
        return text

    def _encode_tagged(self, value: Any) -> Any:
        """Encode a collection element from its own runtime type."""
        if value is None or isinstance(value, _SCALARS):
            return value
        if isinstance(value, Enum):
            name = type(value).__name__
            if self.registry.enum_named(name) is not type(value):
                raise TypeConversionError(
                    f"Enum {name} is not registered; cannot store it in an untyped collection",
                    value=value,
                )
            return {Tag.ENUM.value: name, "name": value.name}
        if isinstance(value, datetime):
            return {Tag.DATETIME.value: value.isoformat()}
        if isinstance(value, date):
            return {Tag.DATE.value: value.isoformat()}
        if isinstance(value, time):
            return {Tag.TIME.value: value.isoformat()}
        if isinstance(value, Decimal):
            return {Tag.DECIMAL.value: str(value)}
        if isinstance(value, UUID):
            return {Tag.UUID.value: str(value)}
        if isinstance(value, bytes):
            return {Tag.BYTES.value: base64.b64encode(value).decode("ascii")}
        if isinstance(value, Point):
            return {Tag.POINT.value: value.to_list()}
        if isinstance(value, (set, frozenset)):
            return {Tag.SET.value: sorted((self._encode_tagged(v) for v in value), key=repr)}
        if isinstance(value, tuple):
            return {Tag.TUPLE.value: [self._encode_tagged(v) for v in value]}
        if isinstance(value, list):
            return [self._encode_tagged(v) for v in value]
        if isinstance(value, dict):
            encoded = {self._encode_map_key(None, k): self._encode_tagged(v) for k, v in value.items()}
            if any(tag.value in encoded for tag in Tag):
                return {Tag.MAP.value: encoded}
            return encoded
        if self.registry.is_embeddable(type(value)):
            embeddable = self.registry.embeddable(type(value))
            return {
                Tag.EMBEDDED.value: embeddable.name,
                "data": self.mapper.to_document(embeddable, value),
            }
        raise TypeConversionError(
            f"Cannot store {type(value).__name__} in an untyped collection", value=value
        )

    def _decode_tagged(self, stored: Any) -> Any:
        """Decode a collection element written by _encode_tagged."""
        if isinstance(stored, list):
            return [self._decode_tagged(v) for v in stored]
        if not isinstance(stored, dict):
            return stored
        for tag in Tag:
            if tag.value in stored:
                return self._decode_tag(tag, stored)
        return {k: self._decode_tagged(v) for k, v in stored.items()}

    def _decode_tag(self, tag: Tag, stored: Dict[str, Any]) -> Any:
        payload = stored[tag.value]
        if tag is Tag.ENUM:
            enum_type = self.registry.enum_named(payload)
            if enum_type is None:
                raise TypeConversionError(f"Unknown enum type '{payload}'", value=stored)
            return self._enum_member(enum_type, stored.get("name"))
        if tag is Tag.DATETIME:
            return coerce(datetime, payload)
        if tag is Tag.DATE:
            return coerce(date, payload)
        if tag is Tag.TIME:
            return coerce(time, payload)
        if tag is Tag.DECIMAL:
            return coerce(Decimal, payload)
        if tag is Tag.UUID:
            return coerce(UUID, payload)
        if tag is Tag.BYTES:
            return JsonScalarCodec().decode(bytes, payload)
        if tag is Tag.POINT:
            return self._decode_point(payload)
        if tag is Tag.MAP:
            if not isinstance(payload, dict):
                raise TypeConversionError(
                    f"Tagged map must be a document, got {payload!r}", value=stored
                )
            return {k: self._decode_tagged(v) for k, v in payload.items()}
        if tag in (Tag.SET, Tag.TUPLE):
            if not isinstance(payload, list):
                raise TypeConversionError(
                    f"Tagged {tag.name.lower()} must be a sequence, got {payload!r}", value=stored
                )
            items = [self._decode_tagged(v) for v in payload]
            if tag is Tag.TUPLE:
                return tuple(items)
            return self._to_set(set, items, stored)
        embeddable = self.registry.embeddable_named(payload)
        if embeddable is None:
            raise TypeConversionError(f"Unknown embeddable type '{payload}'", value=stored)
        return self.mapper.from_document(embeddable, stored.get("data") or {})
