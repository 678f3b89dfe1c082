"""Base adapter protocol for upstream response stores."""

from typing import Protocol, runtime_checkable

from srpsync.types import StoredResponse, Tag


@runtime_checkable
class AsyncStorageAdapter(Protocol):
    """Async storage adapter interface."""

    async def get(self, key: str) -> StoredResponse[object] | None:
        """Get a stored response by key."""
        ...

    async def set(self, key: str, entry: StoredResponse[object]) -> None:
        """Store a response."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a stored response."""
        ...

    async def get_tag_invalidation_time(self, tag: Tag) -> int | None:
        """Get the invalidation timestamp for a tag."""
        ...

    async def set_tag_invalidation_time(self, tag: Tag, timestamp: int) -> None:
        """Set the invalidation timestamp for a tag."""
        ...

    async def clear(self) -> None:
        """Clear all stored responses."""
        ...

    async def disconnect(self) -> None:
        """Disconnect from the storage backend."""
        ...
