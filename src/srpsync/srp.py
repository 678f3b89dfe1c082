"""SRP upstream resources: catalog rows, facets, filter values, counts."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from srpsync.config import Settings
from srpsync.fetcher import FetchOptions, ResilientFetcher
from srpsync.types import FilterState, SortOrder

SRP_DOMAIN = "SRP"


def build_rows_request(
    filters: Mapping[str, Any],
    *,
    page: int = 1,
    items_per_page: int = 24,
    sort_by: str | None = None,
    order: SortOrder | None = None,
) -> dict[str, Any]:
    """Catalog-rows request body: the filters plus paging and optional sort."""
    body: dict[str, Any] = {**filters, "page": page, "items_per_page": items_per_page}
    if sort_by:
        body["sort_by"] = sort_by
    if order:
        body["order"] = order
    return body


class SRPClient:
    """Inventory API client for one tenant.

    Example:
        fetcher = ResilientFetcher.from_settings(settings, store=AsyncMemoryAdapter())
        srp = SRPClient(fetcher, settings)

        rows = await srp.fetch_srp_rows({"condition": ["new"], "page": 1, "items_per_page": 24})
        facets = await srp.fetch_filters({"condition": ["new"]})
    """

    def __init__(self, fetcher: ResilientFetcher, settings: Settings) -> None:
        self._fetcher = fetcher
        self._hostname, _ = settings.require_tenant()
        self._base_url = f"{settings.api_base_url}/{self._hostname}/v2/inventory/vehicles"
        self._timeout = settings.request_timeout
        self._retries = settings.request_retries

    @property
    def hostname(self) -> str:
        return self._hostname

    def _options(self, category: str, **overrides: Any) -> FetchOptions:
        return FetchOptions(
            category=category,  # type: ignore[arg-type]
            domain=SRP_DOMAIN,
            retries=self._retries,
            timeout=self._timeout,
            **overrides,
        )

    async def fetch_srp_rows(self, params: Mapping[str, Any]) -> Any:
        """Fetch one page of vehicles.

        Args:
            params: Request body with filters, ``page`` and ``items_per_page``

        Returns:
            Rows response (page, counts, has_next, vehicles)
        """
        return await self._fetcher.fetch_with_policy(
            f"{self._base_url}/srp/rows", dict(params), self._options("vehicles")
        )

    async def fetch_filters(self, params: Mapping[str, Any]) -> Any:
        """Fetch available and selected filters for the current filter state."""
        return await self._fetcher.fetch_with_policy(
            f"{self._base_url}/srp/filters", dict(params), self._options("filters")
        )

    async def fetch_filter_values(self, name: str, params: Mapping[str, Any]) -> Any:
        """Fetch the values of a single filter."""
        return await self._fetcher.fetch_with_policy(
            f"{self._base_url}/srp/filters/{name}", dict(params), self._options("filters")
        )

    async def fetch_vehicle_counts(self) -> Any:
        """Fetch new/used/certified/total vehicle counts."""
        return await self._fetcher.fetch_with_policy(
            f"{self._base_url}/count", {}, self._options("vehicles", method="GET")
        )

    # Search backend used by the filtering orchestrator

    async def fetch_rows(
        self,
        filters: FilterState,
        *,
        page: int,
        items_per_page: int,
        sort_by: str | None = None,
        order: SortOrder | None = None,
    ) -> Any:
        body = build_rows_request(
            filters, page=page, items_per_page=items_per_page, sort_by=sort_by, order=order
        )
        return await self.fetch_srp_rows(body)

    async def fetch_facets(self, filters: FilterState) -> Any:
        return await self.fetch_filters(filters)
