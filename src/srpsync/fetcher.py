"""Resilient upstream fetcher.

One logical upstream fetch with bounded retry, timeout, exponential backoff
and tag-addressable response storage:

- 2xx: decode and return
- 404 with ``throw_on_404``: raise NotFound immediately
- 5xx / transport errors: retry after 500ms, 1000ms, 2000ms, ...
- other 4xx: raise ClientFailure immediately
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, Literal

import httpx
import structlog

from srpsync.adapters.base import AsyncStorageAdapter
from srpsync.duration import parse_duration
from srpsync.errors import (
    ClientFailure,
    FetchError,
    NetworkFailure,
    NotFound,
    ResponseDecodeError,
    ServerFailure,
)
from srpsync.tags import ResourceCategory, deserialize_tag, resolve_tags
from srpsync.types import Duration, StoredResponse, Tag

if TYPE_CHECKING:
    from srpsync.config import Settings

logger = structlog.get_logger(__name__)

RETRY_BASE_DELAY = 0.5  # seconds
DEFAULT_RETRIES = 3
DEFAULT_TIMEOUT = 10.0  # seconds

# Transport errors worth another attempt: resets, timeouts, DNS failures
RETRYABLE_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass(frozen=True, slots=True)
class FetchOptions:
    """Per-call fetch policy.

    ``revalidate`` is the freshness interval of the stored response: ``None``
    uses the fetcher default, ``False`` caches until a tag is invalidated and
    ``0`` bypasses the store entirely.
    """

    category: ResourceCategory
    method: Literal["GET", "POST"] = "POST"
    cache_tags: tuple[str, ...] = ()
    revalidate: Duration | Literal[False] | None = None
    retries: int = DEFAULT_RETRIES
    domain: str | None = None
    throw_on_404: bool = False
    return_empty_on_error: bool = False
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    @property
    def log_domain(self) -> str:
        return self.domain or self.category.upper()


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry ``attempt`` (1-based)."""
    return RETRY_BASE_DELAY * 2 ** (attempt - 1)


def empty_like(body: Any) -> list[Any] | dict[str, Any]:
    """Empty value with the same shape as the request body."""
    return [] if isinstance(body, list) else {}


class ResilientFetcher:
    """Fetches upstream resources with retry, backoff and tagged storage."""

    def __init__(
        self,
        *,
        dealer_id: str,
        client: httpx.AsyncClient | None = None,
        store: AsyncStorageAdapter | None = None,
        base_url: str = "",
        default_ttl: Duration = "6h",
        prefix: str = "srpsync",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._dealer_id = dealer_id
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()
        self._store = store
        self._base_url = base_url.rstrip("/")
        self._default_ttl = parse_duration(default_ttl)
        self._prefix = prefix
        self._sleep = sleep
        self._in_flight: dict[str, asyncio.Task[Any]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        store: AsyncStorageAdapter | None = None,
    ) -> ResilientFetcher:
        _, dealer_id = settings.require_tenant()
        return cls(
            dealer_id=dealer_id,
            client=client,
            store=store,
            base_url=settings.api_base_url,
            default_ttl=settings.cache_ttl_ms,
        )

    @property
    def store(self) -> AsyncStorageAdapter | None:
        return self._store

    async def fetch_with_policy(
        self,
        url: str,
        body: Any,
        options: FetchOptions,
    ) -> Any:
        """Fetch ``url`` under ``options``.

        Args:
            url: Full upstream URL
            body: JSON request body (ignored for GET)
            options: Retry, timeout, tagging and storage policy

        Returns:
            Decoded JSON payload, or an empty list/dict when the fetch failed
            and ``return_empty_on_error`` is set

        Raises:
            NotFound: 404 with ``throw_on_404`` set (never swallowed)
            FetchError: Any other terminal or exhausted failure
        """
        ttl = self._ttl_for(options.revalidate)

        try:
            if self._store is None or ttl == 0:
                return await self._request_with_retry(url, body, options)

            tags = resolve_tags(options.category, self._dealer_id, options.cache_tags)
            key = self._make_cache_key(options.method, url, body)

            async def fetch() -> Any:
                return await self._fetch_stored(key, tags, ttl, url, body, options)

            return await self._coalesce(key, fetch)
        except NotFound:
            raise
        except FetchError:
            if options.return_empty_on_error:
                return empty_like(body)
            raise

    async def invalidate(self, tags: Iterable[Tag | str]) -> list[Tag]:
        """Mark every stored response carrying ``tags`` (or a child tag) stale."""
        resolved = [deserialize_tag(t) if isinstance(t, str) else Tag(tuple(t)) for t in tags]
        if self._store is None:
            logger.debug("No response store; nothing to invalidate", tags=len(resolved))
            return []

        now = int(time.time() * 1000)
        for tag in resolved:
            await self._store.set_tag_invalidation_time(tag, now)
        return resolved

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _ttl_for(self, revalidate: Duration | Literal[False] | None) -> int | None:
        """Milliseconds to keep a response; None means until invalidated."""
        if revalidate is False:
            return None
        if revalidate is None:
            return self._default_ttl
        return parse_duration(revalidate)

    def _make_cache_key(self, method: str, url: str, body: Any) -> str:
        """Generate a storage key from method, URL and body."""
        payload = body if method == "POST" else None
        body_hash = hashlib.sha256(
            json.dumps(payload, sort_keys=True, default=str).encode()
        ).hexdigest()[:16]
        return f"{self._prefix}:{method}:{url}:{body_hash}"

    def _request_path(self, url: str) -> str:
        if self._base_url and url.startswith(self._base_url):
            return url[len(self._base_url) :] or "/"
        return url

    async def _fetch_stored(
        self,
        key: str,
        tags: list[Tag],
        ttl: int | None,
        url: str,
        body: Any,
        options: FetchOptions,
    ) -> Any:
        assert self._store is not None
        entry = await self._store.get(key)
        if entry is not None and not self._is_expired(entry) and not await self._is_stale(entry):
            logger.debug(
                "Upstream store hit",
                domain=options.log_domain,
                path=self._request_path(url),
            )
            return entry.value

        value = await self._request_with_retry(url, body, options)
        now = int(time.time() * 1000)
        await self._store.set(
            key,
            StoredResponse(
                value=value,
                tags=tags,
                created_at=now,
                expires_at=now + ttl if ttl is not None else None,
            ),
        )
        return value

    async def _is_stale(self, entry: StoredResponse[Any]) -> bool:
        """Check if any tag (or a parent tag) was invalidated after storing."""
        assert self._store is not None
        for tag in entry.tags:
            for i in range(len(tag), 0, -1):
                inv_time = await self._store.get_tag_invalidation_time(Tag(tag[:i]))
                if inv_time is not None and inv_time >= entry.created_at:
                    return True
        return False

    def _is_expired(self, entry: StoredResponse[Any]) -> bool:
        """Check if entry has exceeded its freshness interval."""
        if entry.expires_at is None:
            return False
        return time.time() * 1000 > entry.expires_at

    async def _coalesce(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Share one upstream call between concurrent identical requests.

        The shared call is shielded, so cancelling one waiter never cancels
        the request for the others.
        """
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            self._in_flight[key] = task
            task.add_done_callback(partial(self._forget, key))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled():
            task.exception()  # Mark retrieved; waiters re-raise it themselves

    async def _request_with_retry(
        self,
        url: str,
        body: Any,
        options: FetchOptions,
    ) -> Any:
        path = self._request_path(url)
        domain = options.log_domain
        start = time.perf_counter()
        last_error: FetchError | None = None
        attempt = 0

        for attempt in range(options.retries + 1):
            if attempt > 0:
                logger.info(
                    "Retrying upstream request",
                    domain=domain,
                    path=path,
                    attempt=attempt,
                    retries=options.retries,
                )
                await self._sleep(backoff_delay(attempt))

            try:
                return await self._attempt(url, body, options, path, attempt, start)
            except NotFound:
                raise
            except FetchError as exc:
                last_error = exc
                if not exc.retryable:
                    break

        assert last_error is not None
        logger.error(
            "Upstream request failed",
            domain=domain,
            path=path,
            attempts=attempt + 1,
            elapsed_ms=_elapsed_ms(start),
            error=str(last_error),
        )
        raise last_error

    async def _attempt(
        self,
        url: str,
        body: Any,
        options: FetchOptions,
        path: str,
        attempt: int,
        start: float,
    ) -> Any:
        """One upstream call; failures are raised as classified ``FetchError``s."""
        domain = options.log_domain
        try:
            response = await self._client.request(
                options.method,
                url,
                json=body if options.method == "POST" else None,
                timeout=options.timeout,
            )
        except RETRYABLE_TRANSPORT_ERRORS as exc:
            error = NetworkFailure(f"{type(exc).__name__}: {exc}", url=url)
            logger.warning(
                "Upstream transport error",
                domain=domain,
                path=path,
                attempt=attempt,
                error=str(error),
                elapsed_ms=_elapsed_ms(start),
            )
            raise error from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}", url=url) from exc

        status = response.status_code
        elapsed_ms = _elapsed_ms(start)

        if response.is_success:
            logger.info(
                "Upstream request succeeded",
                domain=domain,
                path=path,
                status=status,
                elapsed_ms=elapsed_ms,
            )
            try:
                return response.json()
            except ValueError as exc:
                raise ResponseDecodeError(
                    f"Invalid JSON from upstream: {exc}", url=url, status_code=status
                ) from exc

        if status >= 500:
            logger.error(
                "Upstream server error",
                domain=domain,
                path=path,
                status=status,
                elapsed_ms=elapsed_ms,
            )
            raise ServerFailure(
                f"Server error: {status} {response.reason_phrase}",
                url=url,
                status_code=status,
            )

        logger.info(
            "Upstream client error",
            domain=domain,
            path=path,
            status=status,
            elapsed_ms=elapsed_ms,
        )
        if status == 404 and options.throw_on_404:
            raise NotFound(f"Not found: {path}", url=url)

        raise ClientFailure(
            f"API error: {status} {response.reason_phrase}",
            url=url,
            status_code=status,
        )


def _elapsed_ms(start: float) -> int:
    return round((time.perf_counter() - start) * 1000)


__all__ = [
    "FetchOptions",
    "ResilientFetcher",
    "backoff_delay",
    "empty_like",
]
