"""Sequential pagination over remote collections.

Three styles are supported:

- ``page``: ``page``/``pageSize`` query parameters (Xero)
- ``offset``: ``start``/``limit`` with
  ``additional_data.pagination.more_items_in_collection`` (Pipedrive v1)
- ``cursor``: ``cursor``/``limit`` with ``next_cursor`` (Pipedrive v2)

Pages are fetched one at a time. Iteration stops on a short page, an explicit
"no more" marker, a missing cursor, the ``max_pages`` ceiling, or cancellation.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from structlog import get_logger

from xerolink.sync.models import PaginationStyle


logger = get_logger(__name__)

PageFetcher = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _offset_pagination(body: dict[str, Any]) -> dict[str, Any]:
    additional = body.get("additional_data") or {}
    return additional.get("pagination") or {}


def _next_cursor(body: dict[str, Any]) -> str | None:
    additional = body.get("additional_data") or {}
    return additional.get("next_cursor") or body.get("next_cursor")


class Paginator:
    """Yields the item list of each page of a collection."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        style: PaginationStyle,
        *,
        page_size: int = 100,
        max_pages: int = 50,
        items_field: str = "items",
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self._style = PaginationStyle(style)
        self._page_size = page_size
        self._max_pages = max_pages
        self._items_field = items_field
        self._cancel_event = cancel_event
        self.pages_fetched = 0
        self.cancelled = False
        self.hit_page_ceiling = False

    def _first_params(self) -> dict[str, Any]:
        if self._style is PaginationStyle.PAGE:
            return {"page": 1, "pageSize": self._page_size}
        if self._style is PaginationStyle.OFFSET:
            return {"start": 0, "limit": self._page_size}
        return {"limit": self._page_size}

    def _next_params(
        self, params: dict[str, Any], body: dict[str, Any], items: list[Any]
    ) -> dict[str, Any] | None:
        """Parameters for the following page, or None when the collection is done."""
        if self._style is PaginationStyle.PAGE:
            if len(items) < self._page_size:
                return None
            page_count = (body.get("pagination") or {}).get("pageCount")
            if page_count is not None and params["page"] >= page_count:
                return None
            return {**params, "page": params["page"] + 1}

        if self._style is PaginationStyle.OFFSET:
            pagination = _offset_pagination(body)
            if not pagination.get("more_items_in_collection"):
                return None
            next_start = pagination.get("next_start", params["start"] + len(items))
            return {**params, "start": next_start}

        cursor = _next_cursor(body)
        if not cursor or not items:
            return None
        return {**params, "cursor": cursor}

    async def pages(self) -> AsyncIterator[list[dict[str, Any]]]:
        params: dict[str, Any] | None = self._first_params()
        while params is not None:
            if self._cancel_event is not None and self._cancel_event.is_set():
                self.cancelled = True
                logger.info("pagination_cancelled", pages_fetched=self.pages_fetched)
                return
            if self.pages_fetched >= self._max_pages:
                self.hit_page_ceiling = True
                logger.warning("pagination_ceiling_reached", max_pages=self._max_pages)
                return

            body = await self._fetch_page(params)
            self.pages_fetched += 1
            items = list(body.get(self._items_field) or [])
            logger.debug(
                "page_fetched",
                page=self.pages_fetched,
                items=len(items),
                style=str(self._style),
            )
            yield items
            params = self._next_params(params, body, items)

    async def collect(self) -> list[dict[str, Any]]:
        """Fetch every page and return all items in page order."""
        collected: list[dict[str, Any]] = []
        async for items in self.pages():
            collected.extend(items)
        return collected
