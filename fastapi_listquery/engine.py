"""ListQueryEngine: single entry point for list endpoints."""

from typing import Any, Mapping, Optional, Tuple, Type, Union

from fastapi import Request

from fastapi_listquery.builder import FilterHook, QueryPlanBuilder
from fastapi_listquery.config import ListQueryConfig
from fastapi_listquery.diagnostics import ListLogger
from fastapi_listquery.models import ListEnvelope, ListQueryRequest, PaginatedResponse
from fastapi_listquery.pagination import PaginationEnvelopeFormatter
from fastapi_listquery.parser import QueryOptionsParser, query_params_to_dict
from fastapi_listquery.policy import FieldPolicy
from fastapi_listquery.query import QueryHandle, SQLAlchemyQuery

Envelope = Union[ListEnvelope[Any], PaginatedResponse[Any]]


class ListQueryEngine:
    """
    Parse, compile, execute and format a list request.

    Composes QueryOptionsParser, QueryPlanBuilder and PaginationEnvelopeFormatter.
    An engine holds only immutable configuration, so one instance per resource
    can serve concurrent requests; query handles are created per call.

    Example:
        heroes = ListQueryEngine(
            FieldPolicy(
                search_fields=["name", "age"],
                numeric_fields=["age"],
                sortable_fields={"name": "name", "age": "age"},
            )
        )

        @app.get("/heroes/")
        def read_heroes(request: Request, session: Session = Depends(get_session)):
            return heroes.from_model(Hero, session, request)
    """

    def __init__(
        self,
        policy: FieldPolicy,
        config: Optional[ListQueryConfig] = None,
        logger: Optional[ListLogger] = None,
        filter_hook: Optional[FilterHook] = None,
    ):
        """
        Initialize ListQueryEngine.

        Args:
            policy: Field policy of the resource
            config: Pagination/sorting/envelope settings
            logger: Receives the invalid sort key diagnostic
            filter_hook: Resource-specific predicates, called as
                ``hook(query, column_search, base_table_or_None)``
        """
        self.policy = policy
        self.config = config or ListQueryConfig()
        self._parser = QueryOptionsParser(self.config)
        self._builder = QueryPlanBuilder(logger=logger, filter_hook=filter_hook)

    def parse(self, params: Union[Request, Mapping[str, Any]]) -> ListQueryRequest:
        """
        Parse query parameters from a request or a plain mapping.

        Args:
            params: FastAPI Request or raw parameter mapping

        Returns:
            ListQueryRequest: Normalized request
        """
        if isinstance(params, Request):
            params = query_params_to_dict(params)
        return self._parser.parse(params)

    def build(self, query: QueryHandle, req: ListQueryRequest) -> QueryHandle:
        """Compile the request into the query handle."""
        return self._builder.build(query, req, self.policy)

    def _bounds(self, req: ListQueryRequest) -> Tuple[int, int]:
        return self.config.validate_page(req.page), self.config.validate_per_page(req.limit)

    def get_list(
        self,
        query: QueryHandle,
        req: ListQueryRequest,
        request: Optional[Request] = None,
    ) -> Envelope:
        """
        Compile, execute and format one page.

        Args:
            query: Fresh query handle
            req: Parsed list request
            request: Used to build absolute links in the meta envelope

        Returns:
            Envelope in the configured shape
        """
        query = self.build(query, req)
        page, limit = self._bounds(req)
        formatter = PaginationEnvelopeFormatter(request)
        response = formatter.format(query, page, limit)
        return formatter.to_envelope(response, self.config.envelope)

    async def get_list_async(
        self,
        query: QueryHandle,
        req: ListQueryRequest,
        request: Optional[Request] = None,
    ) -> Envelope:
        """Async version of get_list."""
        query = self.build(query, req)
        page, limit = self._bounds(req)
        formatter = PaginationEnvelopeFormatter(request)
        response = await formatter.format_async(query, page, limit)
        return formatter.to_envelope(response, self.config.envelope)

    def query_for(self, model: Type[Any], session: Any) -> SQLAlchemyQuery:
        """Fresh SQLAlchemy query handle over ``model``."""
        return SQLAlchemyQuery(
            model, session, use_window_function=self.config.use_window_function
        )

    def from_model(
        self,
        model: Type[Any],
        session: Any,
        params: Union[Request, Mapping[str, Any]],
    ) -> Envelope:
        """
        Convenience method to list a model directly.

        Args:
            model: SQLModel class to query
            session: Database session
            params: FastAPI Request or raw parameter mapping

        Returns:
            Envelope in the configured shape

        Example:
            @app.get("/heroes/")
            def read_heroes(request: Request, session: Session = Depends(get_session)):
                return engine.from_model(Hero, session, request)
        """
        request = params if isinstance(params, Request) else None
        return self.get_list(self.query_for(model, session), self.parse(params), request)

    async def from_model_async(
        self,
        model: Type[Any],
        session: Any,
        params: Union[Request, Mapping[str, Any]],
    ) -> Envelope:
        """Async version of from_model."""
        request = params if isinstance(params, Request) else None
        return await self.get_list_async(
            self.query_for(model, session), self.parse(params), request
        )
