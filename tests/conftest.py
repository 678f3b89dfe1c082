"""Shared pytest fixtures."""

import pytest

from srpsync import AsyncMemoryAdapter, ResilientFetcher, Settings

API_BASE = "https://api.test.dev/public"
HOSTNAME = "www.example-motors.com"
DEALER_ID = "dealer-1"


@pytest.fixture
def async_adapter() -> AsyncMemoryAdapter:
    """Create a fresh AsyncMemoryAdapter for each test."""
    return AsyncMemoryAdapter()


@pytest.fixture
def settings() -> Settings:
    """Settings for a configured tenant, independent of the environment."""
    return Settings(
        _env_file=None,
        api_base_url=API_BASE,
        hostname=HOSTNAME,
        dealer_id=DEALER_ID,
        revalidation_secret="s3cret",
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays recorded by the fake sleep."""
    return []


@pytest.fixture
def fetcher(async_adapter, sleeps):
    """A fetcher that records backoff delays instead of sleeping."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ResilientFetcher(
        dealer_id=DEALER_ID,
        store=async_adapter,
        base_url=API_BASE,
        sleep=fake_sleep,
    )
