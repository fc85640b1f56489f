"""fastapi-listquery: server-side list/query engine for FastAPI + SQLModel."""

from . import models as models  # noqa: F401
from .builder import QueryPlanBuilder  # noqa: F401
from .config import ListQueryConfig, ListQueryPresets  # noqa: F401
from .diagnostics import ListLogger, LoggingListLogger  # noqa: F401
from .engine import ListQueryEngine  # noqa: F401
from .filters import FILTER_STRATEGIES, register_strategy  # noqa: F401
from .models import (  # noqa: F401
    AggregateKind,
    EnvelopeShape,
    FilterOperator,
    Links,
    ListEnvelope,
    ListQueryRequest,
    Meta,
    NullsPosition,
    PageResult,
    PaginatedResponse,
    Pagination,
    SortingOrder,
)
from .pagination import PaginationEnvelopeFormatter  # noqa: F401
from .parser import QueryOptionsParser, parse_list_query  # noqa: F401
from .policy import FieldPolicy, RelationJoin  # noqa: F401
from .query import QueryHandle, SQLAlchemyQuery  # noqa: F401

__all__ = [
    # Main class
    "ListQueryEngine",
    # Pipeline stages
    "QueryOptionsParser",
    "QueryPlanBuilder",
    "PaginationEnvelopeFormatter",
    "parse_list_query",
    # Query handles
    "QueryHandle",
    "SQLAlchemyQuery",
    # Strategy registry
    "FILTER_STRATEGIES",
    "register_strategy",
    # Policy and configuration
    "FieldPolicy",
    "RelationJoin",
    "ListQueryConfig",
    "ListQueryPresets",
    # Logging
    "ListLogger",
    "LoggingListLogger",
    # Models
    "AggregateKind",
    "EnvelopeShape",
    "FilterOperator",
    "NullsPosition",
    "SortingOrder",
    "ListQueryRequest",
    "PageResult",
    "Pagination",
    "Meta",
    "Links",
    "ListEnvelope",
    "PaginatedResponse",
    # Module
    "models",
]
