"""Redis upstream response store."""

from __future__ import annotations

import json
from typing import Any

from srpsync.tags import serialize_tag
from srpsync.types import StoredResponse, Tag


def _serialize_entry(entry: StoredResponse[object]) -> str:
    """Serialize a stored response to JSON."""
    return json.dumps(
        {
            "value": entry.value,
            "tags": [list(tag) for tag in entry.tags],
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
        }
    )


def _deserialize_entry(data: bytes | str) -> StoredResponse[object]:
    """Deserialize JSON to a stored response."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    obj = json.loads(data)
    return StoredResponse(
        value=obj["value"],
        tags=[Tag(tuple(tag)) for tag in obj["tags"]],
        created_at=obj["created_at"],
        expires_at=obj["expires_at"],
    )


class AsyncRedisAdapter:
    """Async Redis store shared by every worker serving one tenant."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "srpsync",
    ) -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "srpsync") -> AsyncRedisAdapter:
        """Create an adapter with its own ``redis.asyncio`` client."""
        import redis.asyncio

        return cls(redis.asyncio.from_url(url), prefix=prefix)

    def _cache_key(self, key: str) -> str:
        """Generate full Redis key for stored responses."""
        return f"{self._prefix}:cache:{key}"

    def _tag_key(self, tag: Tag) -> str:
        """Generate full Redis key for tag invalidation times."""
        return f"{self._prefix}:tag:{serialize_tag(tag)}"

    async def get(self, key: str) -> StoredResponse[object] | None:
        """Get a stored response by key."""
        data = await self._client.get(self._cache_key(key))
        if data is None:
            return None
        return _deserialize_entry(data)

    async def set(self, key: str, entry: StoredResponse[object]) -> None:
        """Store a response, expiring with it when it has a TTL."""
        if entry.expires_at is None:
            await self._client.set(self._cache_key(key), _serialize_entry(entry))
            return
        await self._client.set(
            self._cache_key(key),
            _serialize_entry(entry),
            pxat=entry.expires_at,
        )

    async def delete(self, key: str) -> None:
        """Delete a stored response."""
        await self._client.delete(self._cache_key(key))

    async def get_tag_invalidation_time(self, tag: Tag) -> int | None:
        """Get the invalidation timestamp for a tag."""
        data = await self._client.get(self._tag_key(tag))
        if data is None:
            return None
        return int(data)

    async def set_tag_invalidation_time(self, tag: Tag, timestamp: int) -> None:
        """Set the invalidation timestamp for a tag."""
        # Tag invalidation times don't expire - they're used for comparison
        await self._client.set(self._tag_key(tag), str(timestamp))

    async def clear(self) -> None:
        """Clear all stored responses (but not tag invalidation times)."""
        cursor: int = 0
        pattern = f"{self._prefix}:cache:*"
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()
