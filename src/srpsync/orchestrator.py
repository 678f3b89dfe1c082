"""Filtering orchestrator.

Keeps filter state, the address and the fetched result set in sync:

    apply_filters -> address written -> optimistic publish -> cache check
        hit:  adopt cached rows/facets
        miss: fetch rows + facets concurrently
              success    -> cache write, publish
              superseded -> discarded silently
              failure    -> revert to last good state, publish error

Only one fetch is live at a time; a newer call cancels the older one.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlencode

import structlog

from srpsync.address_store import AddressStore, MemoryAddressStore
from srpsync.codec import build_address
from srpsync.errors import FetchError
from srpsync.result_cache import ResultCache
from srpsync.types import Address, FilterState, SortOrder

if TYPE_CHECKING:
    from srpsync.config import Settings

logger = structlog.get_logger(__name__)

DEFAULT_ITEMS_PER_PAGE = 24


class _Unset(enum.Enum):
    UNSET = "UNSET"


# Distinguishes "keep the current value" from an explicit None
UNSET = _Unset.UNSET


class SearchBackend(Protocol):
    """Source of catalog rows and facet data."""

    async def fetch_rows(
        self,
        filters: FilterState,
        *,
        page: int,
        items_per_page: int,
        sort_by: str | None = None,
        order: SortOrder | None = None,
    ) -> Any: ...

    async def fetch_facets(self, filters: FilterState) -> Any: ...


class CancellationToken:
    """Cooperative cancellation flag for one apply_filters call."""

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError


class ApplyOutcome(enum.Enum):
    CACHE_HIT = "cache_hit"
    FETCHED = "fetched"
    SUPERSEDED = "superseded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class FilteringState:
    """Snapshot published to subscribers."""

    filters: FilterState
    sort_by: str | None = None
    order: SortOrder | None = None
    search: str | None = None
    page: int = 1
    catalog_rows: Any = None
    facet_data: Any = None
    is_loading: bool = False
    error: str | None = None
    address: str = ""


Listener = Callable[[FilteringState], None]


def address_url(address: Address, page: int = 1) -> str:
    """``address.full_url`` with ``page`` appended when past the first page."""
    if page <= 1:
        return address.full_url
    query = urlencode({**address.query_params, "page": str(page)})
    return f"/{address.path}/?{query}"


class FilteringOrchestrator:
    """Applies filter changes against a search backend with a result cache.

    Example:
        orchestrator = FilteringOrchestrator(
            backend=srp_client,
            address_store=MemoryAddressStore("/new-vehicles/"),
            initial_filters={"condition": ["new"]},
            initial_rows=rows,
            initial_facets=facets,
        )
        unsubscribe = orchestrator.subscribe(render)
        await orchestrator.apply_filters({"condition": ["new"], "make": ["toyota"]})
    """

    def __init__(
        self,
        *,
        backend: SearchBackend,
        cache: ResultCache | None = None,
        address_store: AddressStore | None = None,
        initial_filters: Mapping[str, Any] | None = None,
        initial_sort_by: str | None = None,
        initial_order: SortOrder | None = None,
        initial_search: str | None = None,
        initial_rows: Any = None,
        initial_facets: Any = None,
        items_per_page: int = DEFAULT_ITEMS_PER_PAGE,
    ) -> None:
        self._backend = backend
        self._cache = cache if cache is not None else ResultCache()
        self._address_store = address_store if address_store is not None else MemoryAddressStore()
        self._items_per_page = items_per_page
        self._listeners: list[Listener] = []
        self._token: CancellationToken | None = None
        self._task: asyncio.Future[tuple[Any, Any]] | None = None

        address = build_address(
            {**(initial_filters or {}), "search": initial_search}
            if initial_search
            else dict(initial_filters or {}),
            initial_sort_by,
            initial_order,
        )
        filters: FilterState = dict(address.normalized_filters)  # type: ignore[assignment]
        filters.pop("search", None)
        self._state = FilteringState(
            filters=filters,
            sort_by=initial_sort_by,
            order=initial_order,
            search=initial_search,
            catalog_rows=initial_rows,
            facet_data=initial_facets,
            address=self._address_store.read() or address.full_url,
        )
        self._last_good = self._state

        # Seed with the server-rendered first page
        if initial_rows is not None and initial_facets is not None:
            self._cache.set(
                filters,
                initial_rows,
                initial_facets,
                initial_sort_by,
                initial_order,
                initial_search,
                1,
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backend: SearchBackend,
        **kwargs: Any,
    ) -> FilteringOrchestrator:
        """Orchestrator with cache capacity and page size from settings."""
        return cls(
            backend=backend,
            cache=ResultCache(max_size=settings.result_cache_size),
            items_per_page=settings.items_per_page,
            **kwargs,
        )

    @property
    def state(self) -> FilteringState:
        return self._state

    @property
    def filters(self) -> FilterState:
        return self._state.filters

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def cache(self) -> ResultCache:
        return self._cache

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every published state. Returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def apply_filters(
        self,
        new_filters: Mapping[str, Any],
        *,
        reset_page: bool = True,
        sort_by: str | None | _Unset = UNSET,
        order: SortOrder | None | _Unset = UNSET,
        search: str | None | _Unset = UNSET,
    ) -> ApplyOutcome:
        """Apply a filter change.

        Sort, order and search keep their current values unless given; an
        explicit ``None`` clears them. A ``search`` key inside ``new_filters``
        is treated as the search option.

        Args:
            new_filters: The complete new filter state
            reset_page: Go back to page 1 (default) or stay on the current page
            sort_by: Sort field
            order: Sort order
            search: Free-text search

        Returns:
            How the call ended; superseded calls publish nothing
        """
        filters = dict(new_filters)
        embedded_search = filters.pop("search", None)
        if search is UNSET and embedded_search is not None:
            search = embedded_search

        current = self._state
        final_sort_by = current.sort_by if sort_by is UNSET else (sort_by or None)
        final_order = current.order if order is UNSET else (order or None)
        final_search = current.search if search is UNSET else (search or None)
        page = 1 if reset_page else current.page

        return await self._apply(filters, final_sort_by, final_order, final_search, page)

    async def load_page(self, page: int) -> ApplyOutcome:
        """Fetch another page for the current filters, sort and search."""
        if page < 1:
            raise ValueError("page must be >= 1")
        current = self._state
        return await self._apply(
            dict(current.filters), current.sort_by, current.order, current.search, page
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _apply(
        self,
        filters: dict[str, Any],
        sort_by: str | None,
        order: SortOrder | None,
        search: str | None,
        page: int,
    ) -> ApplyOutcome:
        address = build_address(
            {**filters, "search": search} if search else filters, sort_by, order
        )
        url = address_url(address, page)
        normalized: FilterState = dict(address.normalized_filters)  # type: ignore[assignment]
        normalized.pop("search", None)

        # Everything up to the cache check happens before the first await
        self._address_store.write(url)
        self._publish(
            replace(
                self._state,
                filters=normalized,
                sort_by=sort_by,
                order=order,
                search=search,
                page=page,
                is_loading=True,
                error=None,
                address=url,
            )
        )

        token = CancellationToken()
        self._supersede()
        self._token = token

        entry = self._cache.get(normalized, sort_by, order, search, page)
        if entry is not None:
            logger.debug("Result cache hit", address=url)
            self._commit(entry.catalog_rows, entry.facet_data, url)
            return ApplyOutcome.CACHE_HIT

        request_filters: FilterState = (
            {**normalized, "search": search} if search else normalized  # type: ignore[typeddict-item]
        )
        task = asyncio.ensure_future(self._fetch(request_filters, sort_by, order, page, token))
        self._task = task

        try:
            rows, facets = await task
        except asyncio.CancelledError:
            if token.cancelled:
                logger.debug("Superseded fetch discarded", address=url)
                return ApplyOutcome.SUPERSEDED
            raise
        except Exception as exc:
            if token.cancelled:
                logger.debug("Superseded fetch discarded", address=url)
                return ApplyOutcome.SUPERSEDED
            self._fail(exc, url)
            return ApplyOutcome.FAILED
        finally:
            if self._token is token:
                self._token = None
                self._task = None

        if token.cancelled:
            logger.debug("Superseded fetch discarded", address=url)
            return ApplyOutcome.SUPERSEDED

        self._cache.set(normalized, rows, facets, sort_by, order, search, page)
        self._commit(rows, facets, url)
        return ApplyOutcome.FETCHED

    async def _fetch(
        self,
        filters: FilterState,
        sort_by: str | None,
        order: SortOrder | None,
        page: int,
        token: CancellationToken,
    ) -> tuple[Any, Any]:
        rows_task = asyncio.ensure_future(
            self._backend.fetch_rows(
                filters,
                page=page,
                items_per_page=self._items_per_page,
                sort_by=sort_by,
                order=order,
            )
        )
        facets_task = asyncio.ensure_future(self._backend.fetch_facets(filters))
        try:
            rows, facets = await asyncio.gather(rows_task, facets_task)
        except BaseException:
            # Both results are required; drop the sibling
            rows_task.cancel()
            facets_task.cancel()
            raise
        token.raise_if_cancelled()
        return rows, facets

    def _supersede(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._token = None
        self._task = None

    def _commit(self, rows: Any, facets: Any, url: str) -> None:
        state = replace(
            self._state,
            catalog_rows=rows,
            facet_data=facets,
            is_loading=False,
            error=None,
        )
        self._last_good = state
        self._publish(state)
        self._sync_address(url)

    def _fail(self, exc: Exception, url: str) -> None:
        message = str(exc) or "Failed to fetch data"
        logger.error(
            "Filter fetch failed",
            address=url,
            error=message,
            status=exc.status_code if isinstance(exc, FetchError) else None,
        )
        self._publish(replace(self._last_good, is_loading=False, error=message))
        self._sync_address(self._last_good.address)

    def _sync_address(self, url: str) -> None:
        if url and self._address_store.read() != url:
            self._address_store.write(url)

    def _publish(self, state: FilteringState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)


__all__ = [
    "UNSET",
    "ApplyOutcome",
    "CancellationToken",
    "FilteringOrchestrator",
    "FilteringState",
    "SearchBackend",
    "address_url",
]
