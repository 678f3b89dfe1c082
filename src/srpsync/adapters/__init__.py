"""Upstream response stores (async only)."""

from contextlib import suppress

from srpsync.adapters.base import AsyncStorageAdapter
from srpsync.adapters.memory import AsyncMemoryAdapter

# Optional adapters - only available when dependencies are installed
with suppress(ImportError):
    from srpsync.adapters.redis import AsyncRedisAdapter

__all__ = [
    "AsyncMemoryAdapter",
    "AsyncRedisAdapter",
    "AsyncStorageAdapter",
]
