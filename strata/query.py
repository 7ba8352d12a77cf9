"""Translation of generic filter queries into backend query plans.

A query is an ordered sequence of filter clauses and logical connectors:

    [FilterClause("age", ">=", 18), "AND", FilterClause("age", "<", 65)]

The interpreter walks that sequence once and produces a QueryPlan: the
key attribute with its equality value or range bounds, whether the query
is a direct identifier lookup, the full condition list, projection, limit
and ordering. Backends execute the plan with their native access path.

Translation errors are permanent for a given query and are raised
immediately; there is never a partial plan.
"""

import operator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .conversion import JsonScalarCodec, ScalarCodec
from .exceptions import MixedOperatorError, UnsupportedOperatorError
from .keys import KeyFormat
from .mapper import ID_FIELD, DocumentMapper
from .metadata import AttributeDescriptor, Discriminator, EntityDescriptor, StorageKind


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}

CONDITIONS = frozenset(_COMPARATORS)

_FILTERABLE = frozenset(
    {StorageKind.PRIMITIVE, StorageKind.ENUM, StorageKind.ASSOCIATION, StorageKind.POINT}
)


@dataclass(frozen=True)
class FilterClause:
    """One predicate: attribute name, condition and literal value."""

    property: str
    condition: str
    value: Any


class LogicalConnector(Enum):
    """Connector between two filter clauses."""

    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, token: Any) -> Optional["LogicalConnector"]:
        """Parse a connector token, case-insensitively. None if unknown."""
        if isinstance(token, cls):
            return token
        if isinstance(token, str):
            return cls.__members__.get(token.strip().upper())
        return None


Token = Union[FilterClause, LogicalConnector, str, Tuple[str, str, Any]]


@dataclass(frozen=True)
class BackendCapabilities:
    """What a backend can express natively.

    Attributes:
        name: Backend name used in error messages
        supports_or: Whether disjunctions can be executed
        key_format: How composite identifiers are stored
        codec: Scalar codec for values in stored documents
    """

    name: str
    supports_or: bool = False
    key_format: KeyFormat = KeyFormat.FLATTENED
    codec: ScalarCodec = field(default_factory=JsonScalarCodec, compare=False)


@dataclass(frozen=True)
class Condition:
    """A translated clause: column, condition and storage value."""

    column: str
    operator: str
    value: Any

    def matches(self, document: Dict[str, Any]) -> bool:
        stored = document.get(self.column)
        if stored is None or self.value is None:
            return self.operator == "=" and stored is None and self.value is None
        try:
            return bool(_COMPARATORS[self.operator](stored, self.value))
        except TypeError:
            return False


@dataclass
class QueryPlan:
    """Backend-neutral plan produced by the interpreter.

    Attributes:
        table: Table (collection) of the queried entity
        entity_type: The queried entity class
        key_name: Column that drives the range scan (first filtered column)
        key_value: Equality value on key_name
        start_key: Lower bound on key_name
        end_key: Upper bound on key_name
        include_first_key: False when the lower bound is exclusive (">")
        include_last_key: False when the upper bound is exclusive ("<")
        id_query: True when a clause filters on the identifier
        id_value: Identifier storage value for an "=" clause on the identifier
        operator: Connector fixed by the first connector token
        conditions: Every translated clause, in query order
        columns: Projected columns (None means all)
        max_results: Result limit (None means unlimited)
        order_by: (column, ascending) sort spec
        discriminator: Discriminator filter for inherited entities
    """

    table: str
    entity_type: type
    key_name: Optional[str] = None
    key_value: Any = None
    start_key: Any = None
    end_key: Any = None
    include_first_key: bool = True
    include_last_key: bool = True
    id_query: bool = False
    id_value: Any = None
    operator: Optional[LogicalConnector] = None
    conditions: List[Condition] = field(default_factory=list)
    columns: Optional[List[str]] = None
    max_results: Optional[int] = None
    order_by: Optional[Tuple[str, bool]] = None
    discriminator: Optional[Discriminator] = None

    @property
    def is_disjunction(self) -> bool:
        return self.operator is LogicalConnector.OR

    @property
    def is_direct_lookup(self) -> bool:
        """Identifier equality that can bypass range and scan logic."""
        return self.id_query and self.id_value is not None and not self.is_disjunction

    def matches(self, document: Dict[str, Any]) -> bool:
        """Evaluate the plan's filter against a stored document."""
        if self.discriminator is not None:
            if document.get(self.discriminator.column) != self.discriminator.value:
                return False
        if not self.conditions:
            return True
        results = (condition.matches(document) for condition in self.conditions)
        if self.is_disjunction:
            return any(results)
        return all(results)

    def project(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Restrict a document to the projected columns (plus the identifier)."""
        if self.columns is None:
            return document
        wanted = set(self.columns)
        wanted.add(ID_FIELD)
        return {name: value for name, value in document.items() if name in wanted}


class QueryInterpreter:
    """Translate clause/connector sequences into QueryPlans for one backend.

    Example:
        interpreter = QueryInterpreter(mapper, BackendCapabilities("memory"))
        plan = interpreter.translate(
            registry.describe(Student),
            [FilterClause("age", ">=", 18), "AND", FilterClause("age", "<", 65)],
        )
        plan.start_key, plan.end_key, plan.include_last_key  # 18, 65, False
    """

    def __init__(self, mapper: DocumentMapper, capabilities: BackendCapabilities):
        self.mapper = mapper
        self.converter = mapper.converter
        self.registry = mapper.registry
        self.capabilities = capabilities

    def translate(
        self,
        descriptor: EntityDescriptor,
        tokens: Iterable[Token],
        columns: Optional[Iterable[str]] = None,
        max_results: Optional[int] = None,
        order_by: Optional[Union[str, Tuple[str, bool]]] = None,
    ) -> QueryPlan:
        """Build the plan for a query.

        Args:
            descriptor: Descriptor of the queried entity
            tokens: FilterClauses (or (property, condition, value) tuples)
                and connectors ("AND"/"OR" in any case, or LogicalConnector)
            columns: Attribute names to project
            max_results: Result limit
            order_by: Attribute name, or (name, ascending)

        Returns:
            The assembled QueryPlan

        Raises:
            UnsupportedOperatorError: Unknown condition or connector, or OR
                on a backend without disjunctions
            MixedOperatorError: AND and OR in the same query
            UnknownAttributeError: Clause on an unmapped attribute
            TypeConversionError: Literal that does not fit the attribute
        """
        if max_results is not None and max_results < 0:
            raise ValueError(f"max_results must be non-negative, got {max_results}")
        plan = QueryPlan(
            table=descriptor.table,
            entity_type=descriptor.python_type,
            max_results=max_results,
            discriminator=descriptor.discriminator,
        )
        if columns is not None:
            plan.columns = [self._column_of(descriptor, name) for name in columns]
        if order_by is not None:
            if isinstance(order_by, str):
                order_by = (order_by, True)
            name, ascending = order_by
            plan.order_by = (self._column_of(descriptor, name), bool(ascending))

        for token in tokens:
            if isinstance(token, tuple) and len(token) == 3:
                token = FilterClause(*token)
            if isinstance(token, FilterClause):
                self._on_clause(descriptor, plan, token)
            else:
                self._on_connector(plan, token)
        return plan

    def _column_of(self, descriptor: EntityDescriptor, name: str) -> str:
        attr = descriptor.attribute(name)
        if descriptor.is_identifier(attr):
            return ID_FIELD
        return attr.column

    def _on_clause(self, descriptor: EntityDescriptor, plan: QueryPlan, clause: FilterClause) -> None:
        condition = str(clause.condition).strip()
        if condition not in CONDITIONS:
            raise UnsupportedOperatorError(condition, self.capabilities.name)

        attr = descriptor.attribute(clause.property)
        if descriptor.is_identifier(attr):
            column = ID_FIELD
            value = self._identifier_literal(descriptor, clause.value)
            plan.id_query = True
            if condition == "=":
                plan.id_value = value
        else:
            column = attr.column
            value = self._literal(attr, condition, clause.value)

        plan.conditions.append(Condition(column, condition, value))

        if plan.key_name is None:
            plan.key_name = column
        if column != plan.key_name:
            return

        if condition == "=":
            plan.key_value = value
        elif condition in (">=", ">"):
            plan.start_key = value
            plan.include_first_key = condition == ">="
        elif condition == "<=":
            plan.end_key = value
            plan.include_last_key = True
        else:
            plan.end_key = value
            plan.include_last_key = False

    def _on_connector(self, plan: QueryPlan, token: Any) -> None:
        connector = LogicalConnector.parse(token)
        name = self.capabilities.name
        if connector is None:
            raise UnsupportedOperatorError(str(token).strip(), name, "invalid intra clause")
        if plan.operator is None:
            if connector is LogicalConnector.OR and not self.capabilities.supports_or:
                raise UnsupportedOperatorError("OR", name, "intra clause OR is not supported")
            plan.operator = connector
        elif plan.operator is not connector:
            raise MixedOperatorError(plan.operator.value, connector.value, name)

    def _identifier_literal(self, descriptor: EntityDescriptor, value: Any) -> Any:
        id_attribute = descriptor.id_attribute
        if id_attribute.is_embedded:
            return self.mapper.identifier_value(descriptor, value, self.capabilities.key_format)
        return self.converter.to_storage_value(id_attribute, value)

    def _literal(self, attr: AttributeDescriptor, condition: str, value: Any) -> Any:
        if attr.kind not in _FILTERABLE:
            raise UnsupportedOperatorError(
                condition,
                self.capabilities.name,
                f"cannot filter on {attr.kind.name} attribute '{attr.name}'",
            )
        if attr.is_association:
            target = self.registry.describe(attr.python_type)
            if isinstance(value, target.python_type):
                value = getattr(value, target.id_attribute.name)
            return self.mapper.identifier_value(target, value, self.capabilities.key_format)
        return self.converter.to_storage_value(attr, value)
