"""QueryPlanBuilder: compiles a ListQueryRequest into a query handle."""

from typing import Any, Callable, List, Mapping, Optional, Tuple

from fastapi_listquery.diagnostics import ListLogger, LoggingListLogger
from fastapi_listquery.models import (
    FilterOperator,
    ListQueryRequest,
    NullsPosition,
    SortingOrder,
)
from fastapi_listquery.policy import FieldPolicy
from fastapi_listquery.query import QueryHandle

# (query, column_search, base table name when a join is active) -> query
FilterHook = Callable[[QueryHandle, Mapping[str, str], Optional[str]], Optional[QueryHandle]]

_LIST_OPERATORS = (FilterOperator.EQ, FilterOperator.IN)


class QueryPlanBuilder:
    """
    Applies joins, aggregates, eager loads, searches, filters and ordering to a
    query handle, always in the same order.

    Bad input never raises here: unknown column-search keys and filters are
    dropped and an unknown sort key falls back to the first sortable field.
    Errors raised by the ORM propagate unchanged.
    """

    def __init__(
        self,
        logger: Optional[ListLogger] = None,
        filter_hook: Optional[FilterHook] = None,
    ):
        """
        Initialize QueryPlanBuilder.

        Args:
            logger: Receives the invalid sort key diagnostic
            filter_hook: Resource-specific predicates applied after the generic ones
        """
        self.logger = logger if logger is not None else LoggingListLogger()
        self.filter_hook = filter_hook

    def build(self, query: QueryHandle, req: ListQueryRequest, policy: FieldPolicy) -> QueryHandle:
        """
        Compile the request into the query.

        Args:
            query: Fresh query handle, owned by this request
            req: Parsed list request
            policy: Field policy of the resource

        Returns:
            QueryHandle: The same handle, mutated
        """
        sort_alias, sort_column = self.resolve_sort(req, policy)
        joined = self.apply_relation_join(query, sort_alias, policy)
        self.apply_aggregates(query, policy)
        if req.relations:
            query.with_relations(req.relations)

        self.apply_search(query, req, policy, joined)
        self.apply_column_search(query, req, policy, joined)
        self.apply_filters(query, req, policy, joined)

        if self.filter_hook is not None:
            hooked = self.filter_hook(query, req.column_search, query.table_name if joined else None)
            if hooked is not None:
                query = hooked

        if sort_column is not None:
            self.apply_order(query, sort_column, req.sort_order, policy, joined)
        return query

    @staticmethod
    def apply_relation_join(
        query: QueryHandle, sort_alias: Optional[str], policy: FieldPolicy
    ) -> bool:
        """Join the related table when the resolved sort key is one of its columns."""
        join = policy.relation_joins.get(sort_alias) if sort_alias else None
        if join is None:
            return False
        query.left_join(join.table, join.foreign_key, join.related_key)
        query.select_base()
        return True

    @staticmethod
    def apply_aggregates(query: QueryHandle, policy: FieldPolicy) -> None:
        for kind, entries in policy.aggregates.items():
            for relation, column in entries:
                query.with_aggregate(kind, relation, column)

    @staticmethod
    def apply_search(
        query: QueryHandle, req: ListQueryRequest, policy: FieldPolicy, qualified: bool
    ) -> None:
        """One OR group matching the search term against every search field."""
        if not req.search or not policy.search_fields:
            return
        conditions = [
            query.contains(
                query.column(field, qualified),
                req.search,
                cast_to_text=policy.is_numeric(field),
            )
            for field in policy.search_fields
        ]
        query.where_any(conditions)

    @staticmethod
    def apply_column_search(
        query: QueryHandle, req: ListQueryRequest, policy: FieldPolicy, qualified: bool
    ) -> None:
        for alias, value in req.column_search.items():
            column_name = policy.column_fields.get(alias)
            if not value or column_name is None:
                continue
            query.where(
                query.contains(
                    query.column(column_name, qualified),
                    value,
                    cast_to_text=policy.is_numeric(alias, column_name),
                )
            )

    def apply_filters(
        self, query: QueryHandle, req: ListQueryRequest, policy: FieldPolicy, qualified: bool
    ) -> None:
        """Whitelisted generic filters: scalar equality, list IN or an operator map."""
        conditions = []
        for alias, value in req.filters.items():
            column_name = policy.filterable_fields.get(alias)
            if column_name is None:
                continue
            column = query.column(column_name, qualified)
            for operator, operand in self._filter_terms(value):
                condition = query.compare(column, operator, operand)
                if condition is not None:
                    conditions.append(condition)
        if conditions:
            query.where(*conditions)

    @staticmethod
    def _filter_terms(value: Any) -> List[Tuple[str, Any]]:
        if isinstance(value, Mapping):
            terms = []
            for operator, operand in value.items():
                if isinstance(operand, (list, tuple)) and operator not in _LIST_OPERATORS:
                    operand = operand[-1] if operand else None
                if operand is None or operand == "":
                    continue
                terms.append((operator, operand))
            return terms
        if isinstance(value, (list, tuple)):
            return [(FilterOperator.IN, list(value))] if value else []
        return [(FilterOperator.EQ, value)]

    def resolve_sort(
        self, req: ListQueryRequest, policy: FieldPolicy
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Map the requested sort key onto a whitelisted alias and column.

        Returns:
            Tuple[Optional[str], Optional[str]]: The alias and its column, the first
                whitelisted entry as fallback, or (None, None) when the policy
                whitelists nothing
        """
        if not policy.sortable_fields:
            return None, None
        column_name = policy.sortable_fields.get(req.sort_by)
        if column_name is not None:
            return req.sort_by, column_name

        fallback_alias, fallback = policy.default_sort
        if req.sort_by:
            self.logger.log(
                "Invalid sortBy parameter",
                {
                    "provided": req.sort_by,
                    "using": fallback,
                    "allowed": list(policy.sortable_fields.keys()),
                },
            )
        return fallback_alias, fallback

    @staticmethod
    def apply_order(
        query: QueryHandle,
        column_name: str,
        order: SortingOrder,
        policy: FieldPolicy,
        qualified: bool,
    ) -> None:
        """ORDER BY the column; nullable columns get NULLS LAST (desc) / NULLS FIRST (asc)."""
        column = query.column(column_name, qualified)
        if column_name in policy.nullable_columns:
            nulls = NullsPosition.LAST if order == SortingOrder.DESC else NullsPosition.FIRST
            query.order_by_nulls(column, order, nulls)
        else:
            query.order_by(column, order)
