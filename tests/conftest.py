"""Shared fixtures for the strata tests."""

import pytest

from strata import DocumentMapper, KeyFormat, MetadataRegistry

from school import build_registry


@pytest.fixture(autouse=True)
def reset_units():
    """Forget process-wide registries between tests."""
    MetadataRegistry.clear_units()
    yield
    MetadataRegistry.clear_units()


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def mapper(registry):
    """Document-store mapper: JSON scalars, structured composite keys."""
    return DocumentMapper(registry)


@pytest.fixture
def flat_mapper(registry):
    """Key-value mapper: flattened composite keys."""
    return DocumentMapper(registry, key_format=KeyFormat.FLATTENED)
