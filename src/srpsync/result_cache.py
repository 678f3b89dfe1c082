"""Bounded FIFO cache of (catalog rows, facet data) per filter combination."""

from __future__ import annotations

import json
from collections import OrderedDict
from collections.abc import Mapping
from typing import Any

from srpsync.codec import normalize_filters
from srpsync.types import CacheEntry, SortOrder

DEFAULT_MAX_SIZE = 10


def _canonical_value(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return sorted(value, key=str) or None
    if isinstance(value, Mapping):
        bounds = {k: v for k, v in value.items() if v is not None}
        return bounds or None
    return value if value not in ("", None) else None


def make_cache_key(
    filters: Mapping[str, Any],
    sort_by: str | None = None,
    order: SortOrder | None = None,
    search: str | None = None,
    page: int = 1,
) -> str:
    """Deterministic key for a filter combination.

    Filters are normalized first and every multi-valued field is sorted, so
    selection order never produces a different key.
    """
    canonical: dict[str, Any] = {}
    for name, value in normalize_filters(filters).items():
        value = _canonical_value(value)
        if value is not None:
            canonical[name] = value

    return json.dumps(
        {
            "filters": canonical,
            "sort_by": sort_by or None,
            "order": order or None,
            "search": search or None,
            "page": page or 1,
        },
        sort_keys=True,
        default=str,
    )


class ResultCache:
    """Strict FIFO cache: eviction follows insertion order, never recency.

    There is no wall-clock expiry; an entry lives until it is pushed out.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._ordinal = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    def get(
        self,
        filters: Mapping[str, Any],
        sort_by: str | None = None,
        order: SortOrder | None = None,
        search: str | None = None,
        page: int = 1,
    ) -> CacheEntry | None:
        # No move_to_end here: reads never refresh an entry
        return self._entries.get(make_cache_key(filters, sort_by, order, search, page))

    def set(
        self,
        filters: Mapping[str, Any],
        catalog_rows: Any,
        facet_data: Any,
        sort_by: str | None = None,
        order: SortOrder | None = None,
        search: str | None = None,
        page: int = 1,
    ) -> CacheEntry:
        """Store a result, evicting the oldest insertion when full.

        Re-setting an existing key replaces it and makes it the newest.
        """
        key = make_cache_key(filters, sort_by, order, search, page)
        self._entries.pop(key, None)

        while len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)

        self._ordinal += 1
        entry = CacheEntry(
            key=key,
            catalog_rows=catalog_rows,
            facet_data=facet_data,
            inserted_at=self._ordinal,
        )
        self._entries[key] = entry
        return entry

    def has(
        self,
        filters: Mapping[str, Any],
        sort_by: str | None = None,
        order: SortOrder | None = None,
        search: str | None = None,
        page: int = 1,
    ) -> bool:
        return make_cache_key(filters, sort_by, order, search, page) in self._entries

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        keys = list(self._entries)
        return {
            "size": len(keys),
            "max_size": self._max_size,
            "keys": keys,
            "oldest_key": keys[0] if keys else None,
            "newest_key": keys[-1] if keys else None,
        }

    def __len__(self) -> int:
        return len(self._entries)
