"""Tests for strata.keys."""

from dataclasses import dataclass
from typing import Optional

import pytest

from strata import (
    CompositeKeyCodec,
    EmbeddableDescriptor,
    InstantiationError,
    KeyFormat,
    PersistenceError,
    StorageKind,
    TypeConverter,
    attribute,
)
from strata.keys import SEPARATOR, instantiate

from school import EnrolmentKey, Level


@dataclass
class ShelfKey:
    aisle: Optional[int] = None
    level: Optional[Level] = None
    label: Optional[str] = None


class NeedsArguments:
    def __init__(self, value):
        self.value = value


@pytest.fixture
def codec(mapper):
    return mapper.keys


@pytest.fixture
def enrolment_key(registry):
    return registry.embeddable(EnrolmentKey)


class TestFlattenedKeys:
    """Tests for the flattened string encoding."""

    def test_encode(self, codec, enrolment_key):
        """Fields are joined with the separator in declaration order."""
        assert codec.encode(enrolment_key, EnrolmentKey("CS101", 42)) == "CS101\x0142"

    def test_deterministic(self, codec, enrolment_key):
        """Equal keys always encode identically."""
        first = codec.encode(enrolment_key, EnrolmentKey("CS101", 42))
        second = codec.encode(enrolment_key, EnrolmentKey(course="CS101", number=42))
        assert first == second

    def test_decode(self, codec, enrolment_key):
        """Flattened keys decode back into key objects."""
        assert codec.decode(enrolment_key, "CS101" + SEPARATOR + "42") == EnrolmentKey("CS101", 42)

    def test_derived_fields_skipped(self, codec):
        """Derived attributes are not part of the key."""
        descriptor = EmbeddableDescriptor(
            ShelfKey,
            [
                attribute("aisle", StorageKind.PRIMITIVE, int),
                attribute("level", StorageKind.ENUM, Level),
                attribute("label", StorageKind.PRIMITIVE, str, derived=True),
            ],
        )
        key = ShelfKey(aisle=3, level=Level.SENIOR, label="A3")

        text = codec.encode(descriptor, key)

        assert text == "3\x01SENIOR"
        assert codec.decode(descriptor, text) == ShelfKey(aisle=3, level=Level.SENIOR)

    def test_missing_field_round_trips_as_none(self, codec, enrolment_key):
        """An unset numeric field reads back as None."""
        text = codec.encode(enrolment_key, EnrolmentKey("CS101", None))
        assert text == "CS101\x01"
        assert codec.decode(enrolment_key, text) == EnrolmentKey("CS101", None)

    def test_field_count_mismatch(self, codec, enrolment_key):
        """Keys with the wrong number of fields are rejected."""
        with pytest.raises(PersistenceError):
            codec.decode(enrolment_key, "CS101")

    def test_separator_in_field(self, codec, enrolment_key):
        """A field containing the separator cannot be encoded."""
        with pytest.raises(PersistenceError):
            codec.encode(enrolment_key, EnrolmentKey("CS\x01101", 1))

    def test_bad_field_value(self, codec, enrolment_key):
        """Unconvertible field values fail the whole key."""
        with pytest.raises(PersistenceError):
            codec.encode(enrolment_key, EnrolmentKey("CS101", "forty-two"))
        with pytest.raises(PersistenceError):
            codec.decode(enrolment_key, "CS101\x01forty-two")

    def test_missing_attribute(self, codec, enrolment_key):
        """Key objects lacking a field cannot be encoded."""
        with pytest.raises(PersistenceError):
            codec.encode(enrolment_key, object())


class TestStructuredKeys:
    """Tests for the structured sub-document encoding."""

    def test_encode_structured(self, codec, enrolment_key):
        """Structured keys map columns to storage values."""
        document = codec.encode_structured(enrolment_key, EnrolmentKey("CS101", 42))
        assert document == {"course": "CS101", "number": 42}
        assert list(document) == ["course", "number"]

    def test_decode_structured(self, codec, enrolment_key):
        """Structured keys decode back into key objects."""
        key = codec.decode_structured(enrolment_key, {"course": "CS101", "number": "42"})
        assert key == EnrolmentKey("CS101", 42)

    def test_encode_as(self, codec, enrolment_key):
        """encode_as picks the encoding by key format."""
        key = EnrolmentKey("CS101", 42)
        assert codec.encode_as(KeyFormat.FLATTENED, enrolment_key, key) == "CS101\x0142"
        assert codec.encode_as(KeyFormat.STRUCTURED, enrolment_key, key) == {"course": "CS101", "number": 42}

    def test_decode_any(self, codec, enrolment_key):
        """decode_any accepts both encodings and nothing else."""
        expected = EnrolmentKey("CS101", 42)
        assert codec.decode_any(enrolment_key, "CS101\x0142") == expected
        assert codec.decode_any(enrolment_key, {"course": "CS101", "number": 42}) == expected
        with pytest.raises(PersistenceError):
            codec.decode_any(enrolment_key, 42)


class TestInstantiate:
    """Tests for instantiate()."""

    def test_default_constructible(self):
        """Types with a no-argument constructor are created."""
        assert instantiate(EnrolmentKey) == EnrolmentKey()

    def test_constructor_failure(self):
        """Constructor failures raise InstantiationError."""
        with pytest.raises(InstantiationError) as excinfo:
            instantiate(NeedsArguments)
        assert excinfo.value.entity_type is NeedsArguments
        assert isinstance(excinfo.value.cause, TypeError)


def test_codec_standalone(registry):
    """The codec only needs a converter."""
    codec = CompositeKeyCodec(TypeConverter(registry))
    key_descriptor = registry.embeddable(EnrolmentKey)
    assert codec.encode(key_descriptor, EnrolmentKey("MA", 1)) == "MA\x011"
