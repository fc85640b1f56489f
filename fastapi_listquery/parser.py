"""Parsing of raw query-string parameters into a ListQueryRequest."""

import re
from typing import Any, Dict, List, Mapping, Optional

from fastapi import Request

from fastapi_listquery.config import ListQueryConfig
from fastapi_listquery.models import FilterOperator, ListQueryRequest, SortingOrder

COLUMN_SEARCH_PATTERN = re.compile(r"^columnSearch\[(.+)\]$")
FILTER_OPERATOR_PATTERN = re.compile(r"^(.+)\[([a-z_]+)\]$")
OPERATORS = frozenset(operator.value for operator in FilterOperator)

EXCLUDED_KEYS = frozenset(
    {
        "page",
        "limit",
        "search",
        "sortBy",
        "sort_by",
        "sortOrder",
        "sort_order",
        "with",
        "columnSearch",
    }
)


def _to_int(raw: Any, default: int) -> int:
    """Integer value of ``raw``; float-like strings are truncated, garbage gives ``default``."""
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        try:
            return int(float(str(raw).strip()))
        except (ValueError, OverflowError):
            return default


def _last(raw: Any) -> Any:
    """Single value of a parameter that may have been repeated."""
    if isinstance(raw, (list, tuple)):
        return raw[-1] if raw else None
    return raw


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict, str)):
        return len(value) == 0
    return False


def _as_term(value: Any) -> str:
    return "" if value is None else str(value)


class QueryOptionsParser:
    """
    Turns a raw key/value map into a normalized ListQueryRequest.

    Parsing never raises: unknown or malformed values fall back to defaults
    and anything that is not a reserved parameter becomes a filter candidate.
    Column names are not checked here; the QueryPlanBuilder only ever uses
    names found in its FieldPolicy.

    Example:
        parser = QueryOptionsParser(ListQueryConfig(default_per_page=15))
        req = parser.parse({"page": "2", "columnSearch[name]": "jo", "with": "team"})
    """

    def __init__(self, config: Optional[ListQueryConfig] = None):
        self.config = config or ListQueryConfig()

    def parse(self, raw_params: Mapping[str, Any]) -> ListQueryRequest:
        """
        Parse raw query parameters.

        Args:
            raw_params: Query parameters; repeated keys may map to lists

        Returns:
            ListQueryRequest: Normalized request
        """
        config = self.config
        page = config.validate_page(_to_int(_last(raw_params.get("page")), config.default_page))
        limit = config.validate_per_page(
            _to_int(_last(raw_params.get("limit")), config.default_per_page)
        )

        search = _last(raw_params.get("search"))
        sort_by = _last(raw_params.get("sortBy", raw_params.get("sort_by")))

        return ListQueryRequest(
            page=page,
            limit=limit,
            search=str(search) if search is not None else "",
            column_search=self.parse_column_search(raw_params),
            sort_by=str(sort_by) if sort_by is not None else "",
            sort_order=self.parse_sort_order(
                _last(raw_params.get("sortOrder", raw_params.get("sort_order")))
            ),
            filters=self.parse_filters(raw_params),
            relations=self.parse_relations(_last(raw_params.get("with"))),
        )

    def parse_sort_order(self, raw: Any) -> SortingOrder:
        """Lower-cased sort order, or the configured default when unrecognized."""
        if raw is None:
            return self.config.default_sort_order
        try:
            return SortingOrder(str(raw).strip().lower())
        except ValueError:
            return self.config.default_sort_order

    @staticmethod
    def parse_column_search(raw_params: Mapping[str, Any]) -> Dict[str, str]:
        """
        Collect per-column search terms.

        Supports a pre-nested ``columnSearch`` mapping and flat
        ``columnSearch[field]=value`` keys. Later duplicates overwrite earlier ones.
        """
        nested = raw_params.get("columnSearch")
        if isinstance(nested, Mapping):
            return {str(key): _as_term(_last(value)) for key, value in nested.items()}

        column_search = {}
        for key, value in raw_params.items():
            match = COLUMN_SEARCH_PATTERN.match(key)
            if match:
                column_search[match.group(1)] = _as_term(_last(value))
        return column_search

    @staticmethod
    def parse_relations(raw: Any) -> List[str]:
        """Comma-separated relation names, in order, blanks dropped."""
        if not raw:
            return []
        return [name.strip() for name in str(raw).split(",") if name.strip()]

    @staticmethod
    def parse_filters(raw_params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Collect generic filter candidates from the non-reserved parameters.

        ``field=value`` gives a scalar, a repeated ``field`` gives a list and
        ``field[op]=value`` with a known operator gives an operator map.
        A field given both ways ends up in the operator map, the plain value
        under ``eq``. Empty values are dropped.
        """
        filters: Dict[str, Any] = {}
        for key, value in raw_params.items():
            if key in EXCLUDED_KEYS or COLUMN_SEARCH_PATTERN.match(key):
                continue
            if _is_empty(value):
                continue

            match = FILTER_OPERATOR_PATTERN.match(key)
            if match and match.group(2) in OPERATORS:
                field, operator = match.groups()
                operators = filters.get(field)
                if not isinstance(operators, dict):
                    operators = {} if operators is None else {FilterOperator.EQ.value: operators}
                    filters[field] = operators
                operators[operator] = value
                continue

            if isinstance(value, (list, tuple)):
                values = [item for item in value if not _is_empty(item)]
                if not values:
                    continue
                value = values if len(values) > 1 else values[0]
            if isinstance(filters.get(key), dict):
                filters[key][FilterOperator.EQ.value] = value
            else:
                filters[key] = value
        return filters


def query_params_to_dict(request: Request) -> Dict[str, Any]:
    """
    Flatten a request's query parameters, keeping repeated keys as lists.

    Args:
        request: FastAPI Request object containing query parameters

    Returns:
        Dict[str, Any]: Parameter name -> value or list of values
    """
    params: Dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key in params:
            existing = params[key]
            params[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            params[key] = value
    return params


def parse_list_query(request: Request) -> ListQueryRequest:
    """
    FastAPI dependency parsing a ListQueryRequest with the default configuration.

    Example:
        @app.get("/heroes/")
        def read_heroes(req: ListQueryRequest = Depends(parse_list_query)):
            ...
    """
    return QueryOptionsParser().parse(query_params_to_dict(request))
