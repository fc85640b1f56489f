"""Per-resource field policy: which fields may be searched, sorted, joined and filtered."""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, Tuple, Union

from fastapi_listquery.models import AggregateKind

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# (relation, column) for avg/sum/min/max, relation name alone for count
AggregateEntry = Union[str, Tuple[str, str]]


def _check_identifier(value: str, what: str) -> str:
    if not isinstance(value, str) or not _IDENTIFIER.match(value):
        raise ValueError(f"Invalid {what} identifier: {value!r}")
    return value


@dataclass(frozen=True)
class RelationJoin:
    """
    Join needed to sort by a column of a related table.

    Attributes:
        relation: Relation name on the base model
        foreign_key: Column on the base table pointing at the related table
        table: Related table name
        related_key: Column on the related table matched by foreign_key
    """

    relation: str
    foreign_key: str
    table: str
    related_key: str = "id"

    def __post_init__(self):
        _check_identifier(self.relation, "relation")
        _check_identifier(self.foreign_key, "foreign key")
        _check_identifier(self.table, "table")
        _check_identifier(self.related_key, "related key")


@dataclass(frozen=True)
class FieldPolicy:
    """
    Static description of what a list endpoint allows.

    A policy is immutable and can be shared between concurrent requests.
    Every identifier is validated on construction; nothing from the request
    is ever used as a column name, only the columns named here.

    Attributes:
        search_fields: Columns matched by the global ``search`` term
        numeric_fields: Fields/columns cast to text before pattern matching
        column_fields: ``columnSearch`` alias -> column
        sortable_fields: ``sortBy`` alias -> column; the first entry is the fallback
        nullable_columns: Sort columns that get explicit NULLS FIRST/LAST ordering
        relation_joins: ``sortBy`` alias -> join required to sort by it
        aggregates: Aggregate kind -> relations (and columns) to attach
        filterable_fields: Generic filter alias -> column

    Example:
        policy = FieldPolicy(
            search_fields=["name", "email"],
            sortable_fields={"name": "name", "team": "teams.name"},
            relation_joins={"team": RelationJoin("team", "team_id", "teams")},
        )
    """

    search_fields: Sequence[str] = ()
    numeric_fields: Sequence[str] = ()
    column_fields: Mapping[str, str] = field(default_factory=dict)
    sortable_fields: Mapping[str, str] = field(default_factory=dict)
    nullable_columns: Sequence[str] = ()
    relation_joins: Mapping[str, RelationJoin] = field(default_factory=dict)
    aggregates: Mapping[AggregateKind, Iterable[AggregateEntry]] = field(default_factory=dict)
    filterable_fields: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Freeze collections and validate identifiers."""
        for name in ("search_fields", "numeric_fields", "nullable_columns"):
            values = tuple(getattr(self, name))
            for value in values:
                _check_identifier(value, "column")
            object.__setattr__(self, name, values)

        for name in ("column_fields", "sortable_fields", "filterable_fields"):
            mapping = dict(getattr(self, name))
            for column in mapping.values():
                _check_identifier(column, "column")
            object.__setattr__(self, name, MappingProxyType(mapping))

        joins = dict(self.relation_joins)
        for alias, join in joins.items():
            if not isinstance(join, RelationJoin):
                joins[alias] = RelationJoin(**join)
        object.__setattr__(self, "relation_joins", MappingProxyType(joins))

        aggregates = {}
        for kind, entries in dict(self.aggregates).items():
            kind = AggregateKind(kind)
            aggregates[kind] = tuple(self._normalize_aggregate(kind, entry) for entry in entries)
        object.__setattr__(self, "aggregates", MappingProxyType(aggregates))

    @staticmethod
    def _normalize_aggregate(kind: AggregateKind, entry: AggregateEntry) -> Tuple[str, Optional[str]]:
        if isinstance(entry, str):
            relation, column = entry, None
        else:
            relation, column = tuple(entry)
        _check_identifier(relation, "relation")
        if column is not None:
            _check_identifier(column, "column")
        elif kind is not AggregateKind.COUNT:
            raise ValueError(f"Aggregate '{kind}' on '{relation}' needs a column")
        return relation, column

    @property
    def default_sort(self) -> Tuple[Optional[str], Optional[str]]:
        """Alias and column used when the requested sort key is not whitelisted."""
        return next(iter(self.sortable_fields.items()), (None, None))

    def is_numeric(self, *names: str) -> bool:
        """True when any of the given field/column names is declared numeric."""
        return any(name in self.numeric_fields for name in names)
