"""Tests for strata.mapper."""

import logging
import warnings
from datetime import date
from decimal import Decimal

import pytest

from strata import (
    DocumentMapper,
    EntityDescriptor,
    InstantiationError,
    MetadataRegistry,
    PersistenceError,
    Point,
    StorageKind,
    attribute,
)

from school import Address, Enrolment, EnrolmentKey, Level, Student, Teacher


class Frozen:
    """Entity that cannot be default-constructed."""

    def __init__(self, id):
        self.id = id


class TestWritePath:
    """Tests for to_document() and write_identifier()."""

    def test_student_document(self, mapper, registry):
        """A student maps to its body plus the reserved identifier slot."""
        descriptor = registry.describe(Student)
        student = Student(id=42, name="Ann", tags=["x", "y"])

        document = mapper.to_document(descriptor, student)
        assert document == {"name": "Ann", "tags": ["x", "y"]}

        mapper.write_identifier(descriptor, student, document)
        assert document == {"name": "Ann", "tags": ["x", "y"], "_id": 42}

    def test_columns_used(self, mapper, registry):
        """Fields are written under their column names."""
        document = mapper.to_document(registry.describe(Student), Student(id=1, age=20))
        assert document == {"AGE": 20}

    def test_associations_left_out(self, mapper, registry):
        """Association attributes are not written by the mapper."""
        document = mapper.to_document(registry.describe(Student), Student(id=1, tutor=Teacher(id=7)))
        assert "tutor" not in document
        assert "tutor_id" not in document

    def test_lenient_write(self, mapper, registry, caplog):
        """An unconvertible field is logged and skipped; the rest is written."""
        descriptor = registry.describe(Student)
        student = Student(id=1, name="Ann", age="old", level=Level.FRESHMAN)

        with caplog.at_level(logging.ERROR, logger="strata.mapper"):
            document = mapper.to_document(descriptor, student)

        assert document == {"name": "Ann", "level": "FRESHMAN"}
        assert "age" in caplog.text

    def test_wrong_embeddable_type_skipped(self, mapper, registry, caplog):
        """A value that is not the embeddable type is left out, not stored empty."""
        descriptor = registry.describe(Student)
        student = Student(
            id=1, name="Ann", address="not an address", previous=[Address(city="Oslo"), "Bergen"]
        )

        with caplog.at_level(logging.ERROR, logger="strata.mapper"):
            document = mapper.to_document(descriptor, student)

        assert document == {"name": "Ann"}
        assert "address" in caplog.text
        assert "previous" in caplog.text

    def test_missing_identifier(self, mapper, registry):
        """An entity without identifier value cannot be written."""
        descriptor = registry.describe(Student)
        with pytest.raises(PersistenceError):
            mapper.write_identifier(descriptor, Student(name="Ann"), {})

    def test_composite_identifier_structured(self, mapper, registry):
        """Document stores keep composite keys as sub-documents."""
        descriptor = registry.describe(Enrolment)
        enrolment = Enrolment(key=EnrolmentKey("CS101", 42), grade="A")

        document = mapper.write_identifier(descriptor, enrolment, mapper.to_document(descriptor, enrolment))

        assert document == {"grade": "A", "_id": {"course": "CS101", "number": 42}}

    def test_composite_identifier_flattened(self, flat_mapper, registry):
        """Key-value stores keep composite keys as single strings."""
        descriptor = registry.describe(Enrolment)
        enrolment = Enrolment(key=EnrolmentKey("CS101", 42))

        document = flat_mapper.write_identifier(descriptor, enrolment, {})

        assert document == {"_id": "CS101\x0142"}


class TestReadPath:
    """Tests for from_document() and read_identifier()."""

    def test_round_trip(self, mapper, registry):
        """Every attribute kind survives a write and a read."""
        descriptor = registry.describe(Student)
        student = Student(
            id=7,
            name="Ann",
            age=19,
            level=Level.SOPHOMORE,
            enrolled=date(2024, 9, 1),
            tags=["x", "y"],
            nicknames={"annie", "a"},
            scores={"math": 90, "art": 75},
            extras=[1, "two", date(2024, 1, 1)],
            address=Address(street="Main", city="Springfield", location=Point(1.0, 2.0)),
            previous=[Address(city="Oslo")],
            home=Point(13.4, 52.5),
            balance=Decimal("12.50"),
        )

        document = mapper.write_identifier(descriptor, student, mapper.to_document(descriptor, student))
        loaded = mapper.from_document(descriptor, document)

        assert loaded == student
        assert loaded is not student

    def test_student_from_document(self, mapper, registry):
        """The identifier is read from the reserved slot."""
        loaded = mapper.from_document(
            registry.describe(Student), {"name": "Ann", "tags": ["x", "y"], "_id": 42}
        )
        assert loaded == Student(id=42, name="Ann", tags=["x", "y"])

    def test_absent_fields_keep_defaults(self, mapper, registry):
        """Columns missing from the document leave attributes at their defaults."""
        loaded = mapper.from_document(registry.describe(Student), {"_id": 1})
        assert loaded == Student(id=1)

    def test_strict_read(self, mapper, registry, caplog):
        """The first unconvertible field aborts the read."""
        with caplog.at_level(logging.ERROR, logger="strata.mapper"):
            with pytest.raises(PersistenceError) as excinfo:
                mapper.from_document(registry.describe(Student), {"_id": 1, "AGE": "old"})
        assert "AGE" in str(excinfo.value)
        assert "AGE" in caplog.text

    def test_corrupt_point(self, mapper, registry):
        """Malformed geo-points abort the read."""
        with pytest.raises(PersistenceError):
            mapper.from_document(registry.describe(Student), {"_id": 1, "home": ["x", "y"]})

    def test_missing_identifier_slot(self, mapper, registry):
        """A document without _id cannot be read as an entity."""
        with pytest.raises(PersistenceError):
            mapper.from_document(registry.describe(Student), {"name": "Ann"})

    def test_unknown_fields_warn(self, mapper, registry):
        """Fields that map to no attribute are ignored with a warning."""
        with pytest.warns(UserWarning, match="shoe_size"):
            loaded = mapper.from_document(registry.describe(Student), {"_id": 1, "shoe_size": 44})
        assert loaded == Student(id=1)

    def test_unknown_fields_silenced(self, registry):
        """Warnings can be switched off."""
        mapper = DocumentMapper(registry, warn_extra_fields=False)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            mapper.from_document(registry.describe(Student), {"_id": 1, "shoe_size": 44})

    def test_relation_columns_are_known(self, mapper, registry):
        """Association columns do not trigger unknown field warnings."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            loaded = mapper.from_document(registry.describe(Student), {"_id": 1, "tutor_id": 7})
        assert loaded.tutor is None

    def test_composite_identifier(self, mapper, flat_mapper, registry):
        """Composite identifiers read back from either encoding."""
        descriptor = registry.describe(Enrolment)
        expected = Enrolment(key=EnrolmentKey("CS101", 42), grade="A")

        structured = {"grade": "A", "_id": {"course": "CS101", "number": 42}}
        flattened = {"grade": "A", "_id": "CS101\x0142"}

        assert mapper.from_document(descriptor, structured) == expected
        assert flat_mapper.from_document(descriptor, flattened) == expected
        assert mapper.read_identifier(descriptor, flattened) == EnrolmentKey("CS101", 42)

    def test_not_instantiable(self):
        """Entities without a no-argument constructor cannot be read."""
        registry = MetadataRegistry("frozen")
        registry.register_entity(
            EntityDescriptor(Frozen, [], id_attribute=attribute("id", StorageKind.PRIMITIVE, int))
        )
        mapper = DocumentMapper(registry)

        with pytest.raises(InstantiationError):
            mapper.from_document(registry.describe(Frozen), {"_id": 1})


class TestIdentifierValue:
    """Tests for identifier_value() and identifier_from_storage()."""

    def test_scalar(self, mapper, registry):
        """Scalar identifiers are coerced to their declared type."""
        descriptor = registry.describe(Student)
        assert mapper.identifier_value(descriptor, "42") == 42
        assert mapper.identifier_from_storage(descriptor, 42) == 42

    def test_none(self, mapper, registry):
        """None is not an identifier."""
        with pytest.raises(PersistenceError):
            mapper.identifier_value(registry.describe(Student), None)

    def test_bad_scalar(self, mapper, registry):
        """Unconvertible identifiers raise PersistenceError."""
        with pytest.raises(PersistenceError):
            mapper.identifier_value(registry.describe(Student), "forty-two")
