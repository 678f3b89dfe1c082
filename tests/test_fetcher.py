"""Tests for the resilient fetcher using mocked HTTP responses."""

import asyncio
import json

import httpx
import pytest
import respx

from srpsync import (
    AsyncMemoryAdapter,
    ClientFailure,
    FetchError,
    FetchOptions,
    NetworkFailure,
    NotFound,
    ResilientFetcher,
    ResponseDecodeError,
    ServerFailure,
)
from srpsync.fetcher import backoff_delay, empty_like

API_BASE = "https://api.test.dev/public"
DEALER_ID = "dealer-1"
ROWS_URL = f"{API_BASE}/www.example-motors.com/v2/inventory/vehicles/srp/rows"
ROWS = {"page": 1, "total": 1, "has_next": False, "vehicles": [{"vin": "V1"}]}


def _options(**overrides) -> FetchOptions:
    return FetchOptions(category="vehicles", **overrides)


class TestBackoff:
    """Tests for the backoff schedule."""

    def test_schedule(self) -> None:
        assert [backoff_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_empty_like(self) -> None:
        assert empty_like([1]) == []
        assert empty_like({"a": 1}) == {}
        assert empty_like(None) == {}


class TestFetchOptions:
    """Tests for option validation."""

    def test_defaults(self) -> None:
        options = FetchOptions(category="filters")
        assert options.retries == 3
        assert options.timeout == 10.0
        assert options.method == "POST"
        assert options.log_domain == "FILTERS"

    def test_negative_retries(self) -> None:
        with pytest.raises(ValueError):
            FetchOptions(category="filters", retries=-1)


class TestRetry:
    """Tests for the retry loop."""

    @respx.mock
    async def test_success_first_attempt(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        result = await fetcher.fetch_with_policy(ROWS_URL, {"page": 1}, _options())

        assert result == ROWS
        assert route.call_count == 1
        assert sleeps == []
        assert json.loads(route.calls[0].request.content) == {"page": 1}

    @respx.mock
    async def test_retry_timing(self, fetcher, sleeps) -> None:
        """500, 500, 200 waits 0.5s then 1.0s and never after the success."""
        route = respx.post(ROWS_URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.Response(500),
                httpx.Response(200, json=ROWS),
            ]
        )

        result = await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert result == ROWS
        assert route.call_count == 3
        assert sleeps == [0.5, 1.0]

    @respx.mock
    async def test_server_failure_after_budget(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(ServerFailure) as exc_info:
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable
        assert route.call_count == 4
        assert sleeps == [0.5, 1.0, 2.0]

    @respx.mock
    async def test_client_error_not_retried(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(400))

        with pytest.raises(ClientFailure) as exc_info:
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert exc_info.value.status_code == 400
        assert route.call_count == 1
        assert sleeps == []

    @respx.mock
    async def test_404_without_flag_is_client_failure(self, fetcher) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(404))

        with pytest.raises(ClientFailure):
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

    @respx.mock
    async def test_404_with_flag_raises_not_found(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(404))

        with pytest.raises(NotFound) as exc_info:
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options(throw_on_404=True))

        assert not isinstance(exc_info.value, ClientFailure)
        assert exc_info.value.status_code == 404
        assert route.call_count == 1
        assert sleeps == []

    @respx.mock
    async def test_not_found_ignores_return_empty(self, fetcher) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(404))

        with pytest.raises(NotFound):
            await fetcher.fetch_with_policy(
                ROWS_URL, {}, _options(throw_on_404=True, return_empty_on_error=True)
            )

    @respx.mock
    async def test_transport_errors_retried(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(
            side_effect=[
                httpx.ConnectError("Connection reset by peer"),
                httpx.ReadTimeout("timed out"),
                httpx.Response(200, json=ROWS),
            ]
        )

        result = await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert result == ROWS
        assert route.call_count == 3
        assert sleeps == [0.5, 1.0]

    @respx.mock
    async def test_transport_failure_after_budget(self, fetcher) -> None:
        respx.post(ROWS_URL).mock(side_effect=httpx.ConnectError("getaddrinfo failed"))

        with pytest.raises(NetworkFailure, match="ConnectError"):
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options(retries=1))

    @respx.mock
    async def test_other_transport_error_stops(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(side_effect=httpx.UnsupportedProtocol("ftp"))

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert not exc_info.value.retryable
        assert route.call_count == 1
        assert sleeps == []

    @respx.mock
    async def test_undecodable_body(self, fetcher, sleeps) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, content=b"<html>"))

        with pytest.raises(ResponseDecodeError):
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert route.call_count == 1
        assert sleeps == []

    @respx.mock
    async def test_retry_follows_error_retryable_flag(self, fetcher, sleeps, monkeypatch) -> None:
        monkeypatch.setattr(ResponseDecodeError, "retryable", True)
        route = respx.post(ROWS_URL).mock(
            side_effect=[
                httpx.Response(200, content=b"<html>"),
                httpx.Response(200, json=ROWS),
            ]
        )

        assert await fetcher.fetch_with_policy(ROWS_URL, {}, _options()) == ROWS
        assert route.call_count == 2
        assert sleeps == [0.5]

    @respx.mock
    async def test_return_empty_on_error_dict(self, fetcher) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(500))

        result = await fetcher.fetch_with_policy(
            ROWS_URL, {"page": 1}, _options(retries=0, return_empty_on_error=True)
        )
        assert result == {}

    @respx.mock
    async def test_return_empty_on_error_list(self, fetcher) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(400))

        result = await fetcher.fetch_with_policy(
            ROWS_URL, ["a"], _options(return_empty_on_error=True)
        )
        assert result == []

    @respx.mock
    async def test_get_sends_no_body(self, fetcher) -> None:
        url = f"{API_BASE}/www.example-motors.com/v2/inventory/vehicles/count"
        route = respx.get(url).mock(return_value=httpx.Response(200, json={"new": 3}))

        result = await fetcher.fetch_with_policy(url, {}, _options(method="GET"))

        assert result == {"new": 3}
        assert route.calls[0].request.content == b""


class TestStore:
    """Tests for tagged response storage."""

    @respx.mock
    async def test_second_call_served_from_store(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {"page": 1}, _options())
        result = await fetcher.fetch_with_policy(ROWS_URL, {"page": 1}, _options())

        assert result == ROWS
        assert route.call_count == 1

    @respx.mock
    async def test_different_body_is_different_entry(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {"page": 1}, _options())
        await fetcher.fetch_with_policy(ROWS_URL, {"page": 2}, _options())

        assert route.call_count == 2

    @respx.mock
    async def test_failures_not_stored(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(
            side_effect=[httpx.Response(400), httpx.Response(200, json=ROWS)]
        )

        with pytest.raises(ClientFailure):
            await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        assert await fetcher.fetch_with_policy(ROWS_URL, {}, _options()) == ROWS
        assert route.call_count == 2

    @respx.mock
    async def test_entries_are_tagged(self, fetcher, async_adapter) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(cache_tags=("promo:summer",)))

        key = fetcher._make_cache_key("POST", ROWS_URL, {})
        entry = await async_adapter.get(key)
        assert entry is not None
        assert entry.tags == [(DEALER_ID, "srp-rows"), ("promo", "summer")]
        assert entry.expires_at is not None

    @respx.mock
    async def test_invalidate_tag_forces_refetch(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        invalidated = await fetcher.invalidate([f"{DEALER_ID}:srp-rows"])
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert invalidated == [(DEALER_ID, "srp-rows")]
        assert route.call_count == 2

    @respx.mock
    async def test_invalidate_parent_tag(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        await fetcher.invalidate([(DEALER_ID,)])
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert route.call_count == 2

    @respx.mock
    async def test_invalidate_unrelated_tag_keeps_entry(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        await fetcher.invalidate([f"{DEALER_ID}:srp-filters"])
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())

        assert route.call_count == 1

    @respx.mock
    async def test_expired_entry_refetched(self, fetcher) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(revalidate="1ms"))
        await asyncio.sleep(0.01)
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(revalidate="1ms"))

        assert route.call_count == 2

    @respx.mock
    async def test_cache_indefinitely(self, fetcher, async_adapter) -> None:
        respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(revalidate=False))

        entry = await async_adapter.get(fetcher._make_cache_key("POST", ROWS_URL, {}))
        assert entry is not None
        assert entry.expires_at is None

    @respx.mock
    async def test_revalidate_zero_bypasses_store(self, fetcher, async_adapter) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(revalidate=0))
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options(revalidate=0))

        assert route.call_count == 2
        assert len(async_adapter) == 0

    @respx.mock
    async def test_concurrent_identical_requests_coalesce(self, fetcher) -> None:
        release = asyncio.Event()
        calls = 0

        async def slow_response(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await release.wait()
            return httpx.Response(200, json=ROWS)

        respx.post(ROWS_URL).mock(side_effect=slow_response)

        tasks = [
            asyncio.create_task(fetcher.fetch_with_policy(ROWS_URL, {}, _options()))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert all(r == ROWS for r in results)
        assert calls == 1

    @respx.mock
    async def test_cancelling_one_waiter_keeps_shared_request(self, fetcher) -> None:
        release = asyncio.Event()

        async def slow_response(request: httpx.Request) -> httpx.Response:
            await release.wait()
            return httpx.Response(200, json=ROWS)

        respx.post(ROWS_URL).mock(side_effect=slow_response)

        first = asyncio.create_task(fetcher.fetch_with_policy(ROWS_URL, {}, _options()))
        second = asyncio.create_task(fetcher.fetch_with_policy(ROWS_URL, {}, _options()))
        await asyncio.sleep(0)
        first.cancel()
        release.set()

        assert await second == ROWS
        with pytest.raises(asyncio.CancelledError):
            await first


class TestWithoutStore:
    """A fetcher without a store never caches."""

    @respx.mock
    async def test_every_call_hits_upstream(self) -> None:
        route = respx.post(ROWS_URL).mock(return_value=httpx.Response(200, json=ROWS))
        fetcher = ResilientFetcher(dealer_id=DEALER_ID)

        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        await fetcher.fetch_with_policy(ROWS_URL, {}, _options())
        assert await fetcher.invalidate(["d:srp-rows"]) == []
        await fetcher.aclose()

        assert route.call_count == 2

    async def test_from_settings(self, settings) -> None:
        fetcher = ResilientFetcher.from_settings(settings, store=AsyncMemoryAdapter())
        assert fetcher.store is not None
        await fetcher.aclose()
