"""Exceptions for the strata package."""

from typing import Any, Optional


class StrataError(Exception):
    """Base exception for all strata errors."""

    pass


class ConnectionError(StrataError):
    """Failed to connect to storage backend."""

    pass


class UnknownEntityError(StrataError, KeyError):
    """No descriptor registered for the given type."""

    def __init__(self, entity_type: Any):
        self.entity_type = entity_type
        name = getattr(entity_type, "__name__", repr(entity_type))
        super().__init__(f"No descriptor registered for type: {name}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownAttributeError(StrataError, KeyError):
    """Entity has no attribute with the given name or column."""

    def __init__(self, entity_name: str, name: str):
        self.entity_name = entity_name
        self.name = name
        super().__init__(f"{entity_name} has no attribute or column '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class RegistryFrozenError(StrataError):
    """Registration attempted after the registry was frozen."""

    pass


class TypeConversionError(StrataError, TypeError):
    """A value could not be converted to or from its storage form."""

    def __init__(self, message: str, value: Any = None, target: Optional[type] = None):
        self.value = value
        self.target = target
        super().__init__(message)


class MalformedGeometryError(TypeConversionError):
    """Stored geo-point is not a two element numeric sequence."""

    pass


class UnknownEnumValueError(TypeConversionError):
    """Stored enum name does not match any member."""

    def __init__(self, enum_type: type, name: Any):
        self.enum_type = enum_type
        self.name = name
        super().__init__(
            f"'{name}' is not a member of {enum_type.__name__}",
            value=name,
            target=enum_type,
        )


class InstantiationError(StrataError):
    """Entity type could not be default-constructed on read."""

    def __init__(self, entity_type: type, cause: Optional[BaseException] = None):
        self.entity_type = entity_type
        self.cause = cause
        super().__init__(f"Cannot instantiate {entity_type.__name__}: {cause}")


class PersistenceError(StrataError):
    """A field could not be read or written; fatal for the whole operation."""

    pass


class QueryError(StrataError, ValueError):
    """A query could not be translated for the target backend."""

    pass


class UnsupportedOperatorError(QueryError):
    """Condition or connector the backend cannot express."""

    def __init__(self, operator: str, backend: str, detail: str = ""):
        self.operator = operator
        self.backend = backend
        message = f"Operator '{operator}' not supported for {backend}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MixedOperatorError(QueryError):
    """AND and OR connectors combined in one query."""

    def __init__(self, first: str, other: str, backend: str):
        self.first = first
        self.other = other
        self.backend = backend
        super().__init__(
            f"Multiple combination of {first}/{other} clauses not supported for {backend}"
        )


class NotFoundError(StrataError, KeyError):
    """No record stored under the given key."""

    def __init__(self, table: str, key: Any):
        self.table = table
        self.key = key
        super().__init__(f"No record in {table} with key: {key!r}")

    def __str__(self) -> str:
        return self.args[0]
