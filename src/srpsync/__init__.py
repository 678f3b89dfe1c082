"""srpsync - Filter state, address and result set sync for vehicle search pages."""

from contextlib import suppress

# Adapters (async only)
from srpsync.adapters import (
    AsyncMemoryAdapter,
    AsyncStorageAdapter,
)

# Address store
from srpsync.address_store import AddressStore, MemoryAddressStore

# Filter codec
from srpsync.codec import (
    build_address,
    build_path,
    normalize_filters,
    parse_address,
    parse_full_address,
    parse_query,
)
from srpsync.config import Settings, get_settings

# Duration parsing
from srpsync.duration import parse_duration

# Errors
from srpsync.errors import (
    ClientFailure,
    ConfigurationError,
    FetchError,
    InvalidAddress,
    NetworkFailure,
    NotFound,
    ResponseDecodeError,
    ServerFailure,
    SRPError,
)

# Fetching
from srpsync.fetcher import FetchOptions, ResilientFetcher

# Orchestration
from srpsync.orchestrator import (
    UNSET,
    ApplyOutcome,
    CancellationToken,
    FilteringOrchestrator,
    FilteringState,
)
from srpsync.result_cache import ResultCache, make_cache_key
from srpsync.slug import normalize_for_url
from srpsync.srp import SRPClient

# Core types
from srpsync.types import (
    Address,
    AddressState,
    CacheEntry,
    Duration,
    FilterState,
    ParsedAddress,
    StoredResponse,
    Tag,
)

# Optional adapter imports - only available when dependencies are installed
with suppress(ImportError):
    from srpsync.adapters import AsyncRedisAdapter

__version__ = "0.1.0"

__all__ = [
    "UNSET",
    "Address",
    "AddressState",
    "AddressStore",
    "ApplyOutcome",
    "AsyncMemoryAdapter",
    "AsyncRedisAdapter",
    "AsyncStorageAdapter",
    "CacheEntry",
    "CancellationToken",
    "ClientFailure",
    "ConfigurationError",
    "Duration",
    "FetchError",
    "FetchOptions",
    "FilterState",
    "FilteringOrchestrator",
    "FilteringState",
    "InvalidAddress",
    "MemoryAddressStore",
    "NetworkFailure",
    "NotFound",
    "ParsedAddress",
    "ResilientFetcher",
    "ResponseDecodeError",
    "ResultCache",
    "SRPClient",
    "SRPError",
    "ServerFailure",
    "Settings",
    "StoredResponse",
    "Tag",
    "build_address",
    "build_path",
    "get_settings",
    "make_cache_key",
    "normalize_filters",
    "normalize_for_url",
    "parse_address",
    "parse_duration",
    "parse_full_address",
    "parse_query",
]
