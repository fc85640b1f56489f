"""Pagination envelope formatting."""

from typing import Any, Optional, Union

from fastapi import Request

from fastapi_listquery.models import (
    EnvelopeShape,
    ListEnvelope,
    Links,
    Meta,
    PageResult,
    PaginatedResponse,
    Pagination,
)
from fastapi_listquery.query import QueryHandle


class PaginationEnvelopeFormatter:
    """
    Executes a compiled query for one page and wraps the rows in an envelope.

    The rich ``{data, meta, links}`` shape is always built first; the simple
    ``{data, pagination}`` shape is derived from it.
    """

    def __init__(self, request: Optional[Request] = None):
        """
        Initialize PaginationEnvelopeFormatter.

        Args:
            request: When given, links are absolute URLs on the request's URL
                instead of bare page numbers
        """
        self.request = request

    def format(self, query: QueryHandle, page: int, limit: int) -> PaginatedResponse[Any]:
        """
        Paginate the query and build the rich envelope.

        Args:
            query: Compiled query handle
            page: Page number (>= 1)
            limit: Items per page (>= 1)

        Returns:
            PaginatedResponse: Rows with meta and links
        """
        return self.build_response(query.paginate(limit, page))

    async def format_async(
        self, query: QueryHandle, page: int, limit: int
    ) -> PaginatedResponse[Any]:
        """Async version of format."""
        return self.build_response(await query.paginate_async(limit, page))

    def _link(self, page: int, per_page: int) -> Union[int, str]:
        if self.request is None:
            return page
        return str(self.request.url.include_query_params(page=page, limit=per_page))

    def build_response(self, result: PageResult) -> PaginatedResponse[Any]:
        """
        Map a native page result onto the meta/links envelope.

        Args:
            result: Result of the query handle's paginate call

        Returns:
            PaginatedResponse: Final response object
        """
        per_page = result.per_page
        current_page = result.current_page
        total = result.total
        last_page = result.last_page

        return PaginatedResponse(
            data=result.data,
            meta=Meta(
                total=total,
                per_page=per_page,
                current_page=current_page,
                last_page=last_page,
                from_=(current_page - 1) * per_page + 1,
                to=min(current_page * per_page, total),
            ),
            links=Links(
                first=self._link(1, per_page),
                last=self._link(last_page, per_page),
                prev=self._link(current_page - 1, per_page) if current_page > 1 else None,
                next=(
                    self._link(current_page + 1, per_page) if current_page < last_page else None
                ),
            ),
        )

    @staticmethod
    def to_envelope(
        response: PaginatedResponse[Any], shape: EnvelopeShape = EnvelopeShape.PAGINATION
    ) -> Union[ListEnvelope[Any], PaginatedResponse[Any]]:
        """
        Return the response in the requested shape.

        Args:
            response: Rich envelope
            shape: Target shape

        Returns:
            ListEnvelope or PaginatedResponse
        """
        if EnvelopeShape(shape) is EnvelopeShape.META:
            return response
        meta = response.meta
        return ListEnvelope(
            data=response.data,
            pagination=Pagination(
                page=meta.current_page,
                limit=meta.per_page,
                total=meta.total,
                total_pages=meta.last_page,
            ),
        )
