"""Query handle interface and its SQLAlchemy/SQLModel adapter."""

import logging
from abc import ABC, abstractmethod
from math import ceil
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import (
    ColumnElement,
    Select,
    Table,
    and_,
    func,
    literal_column,
    or_,
    over,
    select,
    table,
)
from sqlalchemy import column as sa_column
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import selectinload

from fastapi_listquery.filters import build_filter_condition, contains_condition
from fastapi_listquery.models import AggregateKind, NullsPosition, PageResult, SortingOrder

logger = logging.getLogger(__name__)

TOTAL_COUNT_LABEL = "_total_count"

# Largest OFFSET a 64-bit SQL integer can hold
MAX_OFFSET = 2**63 - 1


def last_page_for(total: int, per_page: int) -> int:
    """Number of pages needed for ``total`` items."""
    return ceil(total / per_page)


def _detect_postgresql(session: Any) -> bool:
    """
    Detect if the session is connected to a PostgreSQL database.

    Args:
        session: Database session (sync or async)

    Returns:
        bool: True if the database dialect is PostgreSQL
    """
    bind = getattr(session, "bind", None)
    if bind is None:
        # Async sessions keep the bind on the wrapped sync session
        sync_session = getattr(session, "sync_session", None)
        bind = getattr(sync_session, "bind", None)
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None) == "postgresql"


class QueryHandle(ABC):
    """
    The narrow set of query-builder operations the list engine relies on.

    One adapter exists per ORM. A handle is mutable and belongs to exactly one
    request; every mutating method returns the handle itself for chaining.
    """

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Name of the base table."""

    @abstractmethod
    def column(self, name: str, qualified: bool = False) -> Any:
        """Resolve a policy column name, prefixed with its table when ``qualified``."""

    @abstractmethod
    def contains(self, column: Any, term: str, cast_to_text: bool = False) -> Any:
        """Case-insensitive substring predicate."""

    @abstractmethod
    def compare(self, column: Any, operator: str, value: Any) -> Optional[Any]:
        """Comparison predicate, or None for an unsupported operator."""

    @abstractmethod
    def where(self, *conditions: Any) -> "QueryHandle":
        """AND the conditions into the query."""

    @abstractmethod
    def where_any(self, conditions: Sequence[Any]) -> "QueryHandle":
        """AND a single parenthesized OR group into the query."""

    @abstractmethod
    def left_join(
        self, table_name: str, foreign_key: str, related_key: str = "id"
    ) -> "QueryHandle":
        """LEFT JOIN ``table_name`` on ``base.foreign_key = table_name.related_key``."""

    @abstractmethod
    def select_base(self) -> "QueryHandle":
        """Select only the base table's columns (``base.*``)."""

    @abstractmethod
    def order_by(self, column: Any, order: SortingOrder) -> "QueryHandle":
        """Append an ORDER BY clause."""

    @abstractmethod
    def order_by_nulls(
        self, column: Any, order: SortingOrder, nulls: NullsPosition
    ) -> "QueryHandle":
        """Append an ORDER BY clause with explicit NULL placement."""

    @abstractmethod
    def with_relations(self, relations: Sequence[str]) -> "QueryHandle":
        """Eager load the named relations."""

    @abstractmethod
    def with_aggregate(
        self, kind: AggregateKind, relation: str, column: Optional[str] = None
    ) -> "QueryHandle":
        """Attach an aggregate over a relation as an extra selected value."""

    @abstractmethod
    def paginate(self, limit: int, page: int) -> PageResult:
        """Execute the query for one page."""

    @abstractmethod
    async def paginate_async(self, limit: int, page: int) -> PageResult:
        """Execute the query for one page asynchronously."""


class SQLAlchemyQuery(QueryHandle):
    """
    QueryHandle over a SQLAlchemy ``Select`` of a mapped (SQLModel) class.

    Only identifiers handed over by a FieldPolicy are turned into columns;
    every value is a bound parameter.

    Example:
        query = SQLAlchemyQuery(Hero, session)
        query.where(query.contains(query.column("name"), "man"))
        page = query.paginate(limit=10, page=1)
    """

    def __init__(
        self,
        model: Type[Any],
        session: Any = None,
        statement: Optional[Select] = None,
        use_window_function: Optional[bool] = None,
    ):
        """
        Initialize SQLAlchemyQuery.

        Args:
            model: Mapped class the list is built from
            session: Sync ``Session`` or ``AsyncSession`` used by paginate
            statement: Base statement, defaults to ``select(model)``
            use_window_function: Force ``COUNT(*) OVER()`` pagination on/off.
                None = auto-detect based on database dialect (enabled for PostgreSQL).
        """
        self.model = model
        self.session = session
        self.statement = statement if statement is not None else select(model)
        self.use_window_function = use_window_function
        self._mapper = sa_inspect(model)
        self.table: Table = self._mapper.local_table
        self._loaded_relations: List[str] = []

    @property
    def table_name(self) -> str:
        return self.table.name

    def _lookup_table(self, name: str) -> Optional[Table]:
        return self.table.metadata.tables.get(name)

    def column(self, name: str, qualified: bool = False) -> ColumnElement[Any]:
        if "." in name:
            table_name, column_name = name.split(".", 1)
            target = self._lookup_table(table_name)
            if target is not None and column_name in target.c:
                return target.c[column_name]
            return literal_column(name)
        if name in self.table.c:
            base = self.table.c[name]
            return base if qualified else sa_column(name, type_=base.type)
        # Labels such as aggregate values are never table-qualified
        return sa_column(name)

    def contains(self, column: Any, term: str, cast_to_text: bool = False) -> Any:
        return contains_condition(column, term, cast_to_text=cast_to_text)

    def compare(self, column: Any, operator: str, value: Any) -> Optional[Any]:
        return build_filter_condition(column, operator, value)

    def where(self, *conditions: Any) -> "SQLAlchemyQuery":
        if conditions:
            self.statement = self.statement.where(*conditions)
        return self

    def where_any(self, conditions: Sequence[Any]) -> "SQLAlchemyQuery":
        if conditions:
            self.statement = self.statement.where(or_(*conditions))
        return self

    def left_join(
        self, table_name: str, foreign_key: str, related_key: str = "id"
    ) -> "SQLAlchemyQuery":
        target = self._lookup_table(table_name)
        if target is None:
            target = table(table_name, sa_column(related_key))
        onclause = self.table.c[foreign_key] == target.c[related_key]
        self.statement = self.statement.outerjoin(target, onclause)
        return self

    def select_base(self) -> "SQLAlchemyQuery":
        self.statement = self.statement.with_only_columns(self.model)
        return self

    def order_by(self, column: Any, order: SortingOrder) -> "SQLAlchemyQuery":
        self.statement = self.statement.order_by(
            column.desc() if order == SortingOrder.DESC else column.asc()
        )
        return self

    def order_by_nulls(
        self, column: Any, order: SortingOrder, nulls: NullsPosition
    ) -> "SQLAlchemyQuery":
        clause = column.desc() if order == SortingOrder.DESC else column.asc()
        clause = clause.nulls_last() if nulls == NullsPosition.LAST else clause.nulls_first()
        self.statement = self.statement.order_by(clause)
        return self

    def _relation_loader(self, path: str) -> Optional[Any]:
        mapper = self._mapper
        loader = None
        for part in path.split("."):
            if part not in mapper.relationships:
                return None
            attr = getattr(mapper.class_, part)
            loader = selectinload(attr) if loader is None else loader.selectinload(attr)
            mapper = mapper.relationships[part].mapper
        return loader

    def with_relations(self, relations: Sequence[str]) -> "SQLAlchemyQuery":
        options = []
        for name in relations:
            loader = self._relation_loader(name)
            if loader is None:
                logger.debug("Skipping unknown relation %r on %s", name, self.table_name)
                continue
            options.append(loader)
            self._loaded_relations.append(name)
        if options:
            self.statement = self.statement.options(*options)
        return self

    def with_aggregate(
        self, kind: AggregateKind, relation: str, column: Optional[str] = None
    ) -> "SQLAlchemyQuery":
        kind = AggregateKind(kind)
        prop = self._mapper.relationships[relation]
        if prop.secondary is not None:
            raise ValueError(f"Aggregates over many-to-many relation '{relation}' are not supported")
        target = prop.mapper.local_table
        onclause = and_(*(remote == local for local, remote in prop.local_remote_pairs))

        if kind is AggregateKind.COUNT:
            value = func.count()
            label = f"{relation}_count"
        else:
            value = getattr(func, kind.value)(target.c[column])
            label = f"{relation}_{kind.value}_{column}"

        subquery = (
            select(value).select_from(target).where(onclause).correlate(self.table)
        ).scalar_subquery()
        self.statement = self.statement.add_columns(subquery.label(label))
        return self

    # --- Execution ---

    def _should_use_window_function(self) -> bool:
        """Determine whether to use window function optimization."""
        if self.use_window_function is not None:
            return self.use_window_function
        return _detect_postgresql(self.session)

    def _count_statement(self) -> Select:
        return select(func.count()).select_from(self.statement.order_by(None).subquery())

    def _page_statement(self, limit: int, page: int) -> Select:
        return self.statement.offset(self._offset(limit, page)).limit(limit)

    def _window_statement(self, limit: int, page: int) -> Select:
        """
        Page query carrying the total row count on every row.

        Generates SQL like:
            SELECT ..., COUNT(*) OVER() AS _total_count
            FROM ... LIMIT :limit OFFSET :offset
        """
        return self._page_statement(limit, page).add_columns(
            over(func.count()).label(TOTAL_COUNT_LABEL)
        )

    @staticmethod
    def _entity_to_dict(entity: Any) -> Dict[str, Any]:
        if hasattr(entity, "model_dump"):
            return entity.model_dump()
        state = sa_inspect(entity, raiseerr=False)
        if state is None:
            return dict(entity)
        return {attr.key: getattr(entity, attr.key) for attr in state.mapper.column_attrs}

    @classmethod
    def _dump_with_relations(cls, entity: Any, paths: Sequence[str]) -> Dict[str, Any]:
        """Column fields of ``entity`` plus the eager loaded relations named by ``paths``."""
        record = cls._entity_to_dict(entity)
        nested: Dict[str, List[str]] = {}
        for path in paths:
            head, _, rest = path.partition(".")
            nested.setdefault(head, [])
            if rest:
                nested[head].append(rest)
        for name, subpaths in nested.items():
            value = getattr(entity, name)
            if value is None:
                record[name] = None
            elif isinstance(value, (list, tuple, set)):
                record[name] = [cls._dump_with_relations(item, subpaths) for item in value]
            else:
                record[name] = cls._dump_with_relations(value, subpaths)
        return record

    def _to_record(self, row: Any) -> Any:
        """
        Plain entity for single-column rows; a dict when aggregates or relations were added.

        Serializing a model only yields its columns, so loaded relations are
        dumped into the record explicitly.
        """
        items = [(key, value) for key, value in row._mapping.items() if key != TOTAL_COUNT_LABEL]
        if len(items) == 1 and not self._loaded_relations:
            return items[0][1]
        (_, entity), extras = items[0], items[1:]
        record = self._dump_with_relations(entity, self._loaded_relations)
        record.update(extras)
        return record

    def _from_window_rows(self, rows: List[Any]) -> Tuple[List[Any], Optional[int]]:
        if not rows:
            return [], None
        return [self._to_record(row) for row in rows], rows[0]._mapping[TOTAL_COUNT_LABEL]

    def _page_result(self, data: List[Any], total: int, limit: int, page: int) -> PageResult:
        return PageResult(
            data=data,
            current_page=page,
            per_page=limit,
            total=total,
            last_page=last_page_for(total, limit),
        )

    @staticmethod
    def _offset(limit: int, page: int) -> int:
        return (page - 1) * limit

    def paginate(self, limit: int, page: int) -> PageResult:
        offset = self._offset(limit, page)
        if self._should_use_window_function() and offset <= MAX_OFFSET:
            rows = self.session.execute(self._window_statement(limit, page)).all()
            data, total = self._from_window_rows(rows)
            if total is None:
                # Past the last page the window has no row to report the total on
                total = self.session.execute(self._count_statement()).scalar_one()
            return self._page_result(data, total, limit, page)

        total = self.session.execute(self._count_statement()).scalar_one()
        if offset >= total:
            return self._page_result([], total, limit, page)
        rows = self.session.execute(self._page_statement(limit, page)).all()
        return self._page_result([self._to_record(row) for row in rows], total, limit, page)

    async def paginate_async(self, limit: int, page: int) -> PageResult:
        offset = self._offset(limit, page)
        if self._should_use_window_function() and offset <= MAX_OFFSET:
            result = await self.session.execute(self._window_statement(limit, page))
            data, total = self._from_window_rows(result.all())
            if total is None:
                result = await self.session.execute(self._count_statement())
                total = result.scalar_one()
            return self._page_result(data, total, limit, page)

        result = await self.session.execute(self._count_statement())
        total = result.scalar_one()
        if offset >= total:
            return self._page_result([], total, limit, page)
        result = await self.session.execute(self._page_statement(limit, page))
        return self._page_result(
            [self._to_record(row) for row in result.all()], total, limit, page
        )
