"""Where the current address lives (browser location, test double, ...)."""

from typing import Protocol


class AddressStore(Protocol):
    """Reads and replaces the current address (``/path/?query``)."""

    def read(self) -> str: ...

    def write(self, url: str) -> None: ...


class MemoryAddressStore:
    """In-memory address store that records every write."""

    def __init__(self, initial: str = "") -> None:
        self._current = initial
        self.history: list[str] = []

    def read(self) -> str:
        return self._current

    def write(self, url: str) -> None:
        self._current = url
        self.history.append(url)
