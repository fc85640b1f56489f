"""List query request and pagination envelope models"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FilterOperator(StrEnum):
    """Operators accepted in ``field[op]=value`` filter parameters"""

    EQ = "eq"  # equals (=)
    NE = "ne"  # not equals (!=)
    GT = "gt"  # greater than (>)
    GTE = "gte"  # greater than or equal (>=)
    LT = "lt"  # less than (<)
    LTE = "lte"  # less than or equal (<=)
    LIKE = "like"  # LIKE %value%
    IN = "in"  # IN (...)


class SortingOrder(StrEnum):
    """Sorting orders"""

    ASC = "asc"  # ascending order
    DESC = "desc"  # descending order


class NullsPosition(StrEnum):
    """Placement of NULLs in an ORDER BY clause"""

    FIRST = "first"
    LAST = "last"


class AggregateKind(StrEnum):
    """Relationship aggregates that can be attached to a list query"""

    AVG = "avg"
    COUNT = "count"
    SUM = "sum"
    MIN = "min"
    MAX = "max"


class EnvelopeShape(StrEnum):
    """Response envelope presets"""

    PAGINATION = "pagination"  # {data, pagination}
    META = "meta"  # {data, meta, links}


T = TypeVar("T")


class ListQueryRequest(BaseModel):
    """Normalized list query parameters for a single request.

    Produced once by the parser and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    search: str = ""
    column_search: Dict[str, str] = Field(default_factory=dict)
    sort_by: str = ""
    sort_order: SortingOrder = SortingOrder.DESC
    filters: Dict[str, Any] = Field(default_factory=dict)
    relations: List[str] = Field(default_factory=list)


@dataclass
class PageResult:
    """Native result of a query handle's paginate call."""

    data: List[Any]
    current_page: int
    per_page: int
    total: int
    last_page: int


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Pagination(_CamelModel):
    """Pagination block of the simple envelope"""

    page: int
    limit: int
    total: int
    total_pages: int


class Meta(_CamelModel):
    """Meta block of the rich envelope"""

    total: int
    per_page: int
    current_page: int
    last_page: int
    from_: int = Field(alias="from")
    to: int


class Links(_CamelModel):
    """Links block of the rich envelope.

    Page numbers by default, absolute URLs when built from a request.
    """

    first: Union[int, str]
    last: Union[int, str]
    prev: Optional[Union[int, str]] = None
    next: Optional[Union[int, str]] = None


class PaginatedResponse(_CamelModel, Generic[T]):
    """Paginated response with meta and links"""

    data: List[T]
    meta: Meta
    links: Links


class ListEnvelope(_CamelModel, Generic[T]):
    """Paginated response with a flat pagination block"""

    data: List[T]
    pagination: Pagination
