"""Thin HTTP surface: SRP proxy endpoints and the revalidation webhook.

Tenant identity always comes from ``Settings``; request bodies only carry
filter state.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from srpsync.adapters.base import AsyncStorageAdapter
from srpsync.adapters.memory import AsyncMemoryAdapter
from srpsync.config import Settings, get_settings
from srpsync.fetcher import ResilientFetcher
from srpsync.log import configure_logging
from srpsync.srp import SRPClient, build_rows_request
from srpsync.tags import invalidation_tags_from_body, serialize_tag
from srpsync.types import SortOrder

logger = structlog.get_logger(__name__)

CONFIGURATION_ERROR = {"error": "Server configuration error"}


class VehiclesRequest(BaseModel):
    """Body of ``POST /api/srp/vehicles/``."""

    model_config = ConfigDict(populate_by_name=True)

    filters: dict[str, Any] = Field(default_factory=dict)
    page: int = Field(default=1, ge=1)
    items_per_page: int | None = Field(default=None, ge=1, alias="itemsPerPage")
    sort_by: str | None = Field(default=None, alias="sortBy")
    order: SortOrder | None = None


class FiltersRequest(BaseModel):
    """Body of ``POST /api/srp/filters/``."""

    filters: dict[str, Any] = Field(default_factory=dict)


class RevalidateRequest(BaseModel):
    """Body of ``POST /api/revalidate/``."""

    tags: list[str] | None = None


def _default_store(settings: Settings) -> AsyncStorageAdapter:
    if settings.redis_url:
        from srpsync.adapters.redis import AsyncRedisAdapter

        return AsyncRedisAdapter.from_url(settings.redis_url)
    return AsyncMemoryAdapter()


def _error_response(error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": error, "message": str(exc)})


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    store: AsyncStorageAdapter | None = None,
    setup_logging: bool = False,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Defaults to ``get_settings()``
        http_client: Upstream client; created (and closed) by the app if omitted
        store: Upstream response store; Redis when ``redis_url`` is set,
            otherwise in-memory
        setup_logging: Configure structlog from settings
    """
    settings = settings or get_settings()
    if setup_logging:
        configure_logging(settings.log_level, json=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client = http_client or httpx.AsyncClient(timeout=settings.request_timeout)
        response_store = store if store is not None else _default_store(settings)

        fetcher: ResilientFetcher | None = None
        srp: SRPClient | None = None
        if settings.hostname and settings.dealer_id:
            fetcher = ResilientFetcher.from_settings(settings, client=client, store=response_store)
            srp = SRPClient(fetcher, settings)
        else:
            logger.warning("Tenant not configured", hostname=settings.hostname)

        app.state.settings = settings
        app.state.fetcher = fetcher
        app.state.srp = srp
        try:
            yield
        finally:
            if http_client is None:
                await client.aclose()
            if store is None:
                await response_store.disconnect()

    app = FastAPI(title="srpsync", lifespan=lifespan)

    @app.post("/api/srp/vehicles/")
    async def fetch_vehicles(body: VehiclesRequest, request: Request) -> Any:
        """Fetch one page of vehicles for client-side filtering."""
        srp: SRPClient | None = request.app.state.srp
        if srp is None:
            logger.error("Missing tenant configuration", route="/api/srp/vehicles/")
            return JSONResponse(status_code=500, content=CONFIGURATION_ERROR)

        start = time.perf_counter()
        payload = build_rows_request(
            body.filters,
            page=body.page,
            items_per_page=body.items_per_page or settings.items_per_page,
            sort_by=body.sort_by,
            order=body.order,
        )
        try:
            data = await srp.fetch_srp_rows(payload)
        except Exception as exc:
            logger.error(
                "Error fetching vehicles",
                route="/api/srp/vehicles/",
                elapsed_ms=_elapsed_ms(start),
                error=str(exc),
            )
            return _error_response("Failed to fetch vehicles", exc)
        return data

    @app.post("/api/srp/filters/")
    async def fetch_filters(body: FiltersRequest, request: Request) -> Any:
        """Fetch available and selected filters for the given filter state."""
        srp: SRPClient | None = request.app.state.srp
        if srp is None:
            logger.error("Missing tenant configuration", route="/api/srp/filters/")
            return JSONResponse(status_code=500, content=CONFIGURATION_ERROR)

        start = time.perf_counter()
        try:
            data = await srp.fetch_filters(body.filters)
        except Exception as exc:
            logger.error(
                "Error fetching filters",
                route="/api/srp/filters/",
                elapsed_ms=_elapsed_ms(start),
                error=str(exc),
            )
            return _error_response("Failed to fetch filters", exc)
        logger.info("Filters fetched", route="/api/srp/filters/", elapsed_ms=_elapsed_ms(start))
        return data

    @app.post("/api/revalidate/")
    async def revalidate(
        request: Request,
        body: RevalidateRequest | None = None,
        x_revalidation_secret: str | None = Header(default=None),
    ) -> Any:
        """Invalidate every cached upstream response of the configured dealer.

        Extra ``tags`` in the body are invalidated as well; a dealer id in the
        body is ignored.
        """
        start = time.perf_counter()
        expected = settings.revalidation_secret
        if not expected or x_revalidation_secret != expected:
            logger.warning("Invalid revalidation secret", elapsed_ms=_elapsed_ms(start))
            return JSONResponse(status_code=401, content={"error": "Invalid secret"})

        fetcher: ResilientFetcher | None = request.app.state.fetcher
        if fetcher is None or not settings.dealer_id:
            logger.error("Missing tenant configuration", route="/api/revalidate/")
            return JSONResponse(status_code=500, content=CONFIGURATION_ERROR)

        tags = invalidation_tags_from_body(settings.dealer_id, body.tags if body else None)
        invalidated = [serialize_tag(tag) for tag in await fetcher.invalidate(tags)]

        logger.info(
            "Cache revalidated",
            invalidated=invalidated,
            elapsed_ms=_elapsed_ms(start),
        )
        return {
            "success": True,
            "invalidated": invalidated,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
