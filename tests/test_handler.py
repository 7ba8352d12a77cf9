"""Tests for strata.handler and strata.relations."""

import pytest

from strata import (
    DataHandler,
    EnhancedEntity,
    KeyFormat,
    PersistenceError,
    RelationHolder,
)

from school import Alumnus, Enrolment, EnrolmentKey, Student, Teacher


@pytest.fixture
def handler(registry):
    return DataHandler(registry)


class TestDocumentFromEntity:
    """Tests for DataHandler.document_from_entity()."""

    def test_plain_entity(self, handler, registry):
        """Entities without associations become body plus _id."""
        document = handler.document_from_entity(
            registry.describe(Student), Student(id=42, name="Ann", tags=["x", "y"])
        )
        assert document == {"name": "Ann", "tags": ["x", "y"], "_id": 42}

    def test_association_written_as_identifier(self, handler, registry):
        """Associations are stored as the referenced identifier."""
        student = Student(id=1, name="Ann", tutor=Teacher(id=7, name="Turing"))

        document = handler.document_from_entity(registry.describe(Student), student)

        assert document == {"name": "Ann", "_id": 1, "tutor_id": 7}

    def test_association_given_as_identifier(self, handler, registry):
        """An association attribute may hold the raw identifier."""
        document = handler.document_from_entity(registry.describe(Student), Student(id=1, tutor=7))
        assert document["tutor_id"] == 7

    def test_explicit_relation_holders(self, handler, registry):
        """Pre-resolved holders replace the entity's own associations."""
        student = Student(id=1, tutor=Teacher(id=7))

        document = handler.document_from_entity(
            registry.describe(Student), student, [RelationHolder("tutor_id", 9)]
        )

        assert document["tutor_id"] == 9

    def test_holder_with_composite_key(self, handler, registry):
        """Holders carrying key objects are encoded like identifiers."""
        document = handler.document_from_entity(
            registry.describe(Student),
            Student(id=1),
            [RelationHolder("enrolment", EnrolmentKey("CS101", 42)), RelationHolder("none", None)],
        )
        assert document["enrolment"] == {"course": "CS101", "number": 42}
        assert "none" not in document

    def test_composite_key_association(self, registry):
        """Entities with composite keys reference others by identifier too."""
        handler = DataHandler(registry, key_format=KeyFormat.FLATTENED)
        enrolment = Enrolment(key=EnrolmentKey("CS101", 42), grade="A", student=Student(id=3))

        document = handler.document_from_entity(registry.describe(Enrolment), enrolment)

        assert document == {"grade": "A", "_id": "CS101\x0142", "student_id": 3}

    def test_unset_association_skipped(self, handler, registry):
        """Associations that are None or lack an identifier are not written."""
        document = handler.document_from_entity(
            registry.describe(Student), Student(id=1, tutor=Teacher(name="nobody"))
        )
        assert "tutor_id" not in document

    def test_discriminator_written(self, handler, registry):
        """Inherited entities carry their discriminator column."""
        document = handler.document_from_entity(
            registry.describe(Alumnus), Alumnus(id=5, name="Bo", year=1999)
        )
        assert document == {"name": "Bo", "year": 1999, "_id": 5, "kind": "alumnus"}

    def test_missing_identifier(self, handler, registry):
        """Entities without identifier cannot be stored."""
        with pytest.raises(PersistenceError):
            handler.document_from_entity(registry.describe(Student), Student(name="Ann"))


class TestEntityFromDocument:
    """Tests for DataHandler.entity_from_document()."""

    def test_plain(self, handler, registry):
        """Without requested relations the entity is returned as is."""
        loaded = handler.entity_from_document(
            registry.describe(Student), {"name": "Ann", "_id": 1, "tutor_id": 7}
        )
        assert loaded == Student(id=1, name="Ann")

    def test_enhanced(self, handler, registry):
        """Requested associations come back as identifiers."""
        loaded = handler.entity_from_document(
            registry.describe(Student), {"name": "Ann", "_id": 1, "tutor_id": 7}, ["tutor"]
        )

        assert isinstance(loaded, EnhancedEntity)
        assert loaded.entity == Student(id=1, name="Ann")
        assert loaded.entity_id == 1
        assert loaded.relations == {"tutor_id": 7}

    def test_relation_by_column(self, handler, registry):
        """Relations can be requested by column name."""
        loaded = handler.entity_from_document(
            registry.describe(Student), {"_id": 1, "tutor_id": "7"}, ["tutor_id"]
        )
        assert loaded.relations == {"tutor_id": 7}

    def test_no_stored_relation(self, handler, registry):
        """Nothing to resolve means a plain entity."""
        loaded = handler.entity_from_document(registry.describe(Student), {"_id": 1}, ["tutor"])
        assert loaded == Student(id=1)

    def test_composite_key_entity(self, handler, registry):
        """The enhanced entity id is the key object."""
        loaded = handler.entity_from_document(
            registry.describe(Enrolment),
            {"grade": "B", "_id": {"course": "CS101", "number": 42}, "student_id": 3},
            ["student"],
        )
        assert loaded.entity_id == EnrolmentKey("CS101", 42)
        assert loaded.relations == {"student_id": 3}

    def test_discriminator_not_unknown(self, handler, registry, recwarn):
        """The discriminator column is not reported as unknown."""
        handler.entity_from_document(
            registry.describe(Alumnus), {"name": "Bo", "_id": 5, "kind": "alumnus"}
        )
        assert len(recwarn) == 0

    def test_identifier_value(self, handler, registry):
        """Identifiers use the handler's key format."""
        assert handler.identifier_value(registry.describe(Enrolment), EnrolmentKey("MA", 1)) == {
            "course": "MA",
            "number": 1,
        }
