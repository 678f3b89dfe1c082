"""In-memory upstream response store (async only)."""

import asyncio
from collections import OrderedDict

from srpsync.tags import serialize_tag
from srpsync.types import StoredResponse, Tag


class AsyncMemoryAdapter:
    """Async in-memory store with optional LRU eviction.

    Holds upstream responses for one process. This is unrelated to the
    per-session FIFO ResultCache.
    """

    def __init__(self, max_items: int | None = None) -> None:
        self._entries: OrderedDict[str, StoredResponse[object]] = OrderedDict()
        self._invalidations: dict[str, int] = {}
        self._max_items = max_items
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> StoredResponse[object] | None:
        """Get a stored response by key."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry:
                self._entries.move_to_end(key)  # LRU touch
            return entry

    async def set(self, key: str, entry: StoredResponse[object]) -> None:
        """Store a response."""
        async with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self._max_items and len(self._entries) > self._max_items:
                self._entries.popitem(last=False)

    async def delete(self, key: str) -> None:
        """Delete a stored response."""
        async with self._lock:
            self._entries.pop(key, None)

    async def get_tag_invalidation_time(self, tag: Tag) -> int | None:
        """Get the invalidation timestamp for a tag."""
        async with self._lock:
            return self._invalidations.get(serialize_tag(tag))

    async def set_tag_invalidation_time(self, tag: Tag, timestamp: int) -> None:
        """Set the invalidation timestamp for a tag."""
        async with self._lock:
            self._invalidations[serialize_tag(tag)] = timestamp

    async def clear(self) -> None:
        """Clear all stored responses and invalidation times."""
        async with self._lock:
            self._entries.clear()
            self._invalidations.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass
