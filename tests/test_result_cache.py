"""Tests for the FIFO result cache."""

import pytest

from srpsync import ResultCache, make_cache_key


class TestMakeCacheKey:
    """Tests for make_cache_key."""

    def test_value_order_independent(self) -> None:
        a = make_cache_key({"condition": ["new"], "make": ["toyota", "honda"]})
        b = make_cache_key({"make": ["honda", "toyota"], "condition": ["new"]})
        assert a == b

    def test_condition_normalized(self) -> None:
        assert make_cache_key({"condition": ["used"]}) == make_cache_key(
            {"condition": ["certified", "used"]}
        )
        assert make_cache_key({}) == make_cache_key({"condition": ["new", "used", "certified"]})

    def test_empty_values_ignored(self) -> None:
        assert make_cache_key({"condition": ["new"], "make": [], "price": {"min": None}}) == (
            make_cache_key({"condition": ["new"]})
        )

    def test_sort_order_search_page_distinguish(self) -> None:
        base = make_cache_key({"condition": ["new"]})
        assert make_cache_key({"condition": ["new"]}, sort_by="price") != base
        assert make_cache_key({"condition": ["new"]}, order="desc") != base
        assert make_cache_key({"condition": ["new"]}, search="awd") != base
        assert make_cache_key({"condition": ["new"]}, page=2) != base

    def test_blank_values_same_as_missing(self) -> None:
        assert make_cache_key({"condition": ["new"]}, sort_by="", search="") == (
            make_cache_key({"condition": ["new"]})
        )


class TestResultCache:
    """Tests for ResultCache."""

    def test_get_miss(self) -> None:
        assert ResultCache().get({"condition": ["new"]}) is None

    def test_set_and_get(self) -> None:
        cache = ResultCache()
        cache.set({"condition": ["new"]}, {"vehicles": [1]}, {"available": {}})
        entry = cache.get({"condition": ["new"]})
        assert entry is not None
        assert entry.catalog_rows == {"vehicles": [1]}
        assert entry.facet_data == {"available": {}}
        assert entry.inserted_at == 1

    def test_lookup_with_equivalent_filters(self) -> None:
        cache = ResultCache()
        cache.set({"condition": ["used"], "make": ["b", "a"]}, "rows", "facets", "price", "desc")
        assert cache.has({"make": ["a", "b"], "condition": ["used", "certified"]}, "price", "desc")
        assert not cache.has({"condition": ["used"], "make": ["a", "b"]}, "price", "asc")

    def test_fifo_eviction_ignores_reads(self) -> None:
        cache = ResultCache(max_size=2)
        cache.set({"make": ["a"]}, 1, 1)
        cache.set({"make": ["b"]}, 2, 2)
        cache.get({"make": ["a"]})  # a read does not refresh
        cache.set({"make": ["c"]}, 3, 3)

        assert not cache.has({"make": ["a"]})
        assert cache.has({"make": ["b"]})
        assert cache.has({"make": ["c"]})
        assert len(cache) == 2

    def test_reset_key_becomes_newest(self) -> None:
        cache = ResultCache(max_size=2)
        cache.set({"make": ["a"]}, 1, 1)
        cache.set({"make": ["b"]}, 2, 2)
        cache.set({"make": ["a"]}, 10, 10)
        cache.set({"make": ["c"]}, 3, 3)

        assert cache.has({"make": ["a"]})
        assert not cache.has({"make": ["b"]})
        entry = cache.get({"make": ["a"]})
        assert entry is not None
        assert entry.catalog_rows == 10

    def test_default_capacity(self) -> None:
        cache = ResultCache()
        for i in range(12):
            cache.set({"year": [str(2000 + i)]}, i, i)
        assert len(cache) == 10
        assert not cache.has({"year": ["2000"]})
        assert not cache.has({"year": ["2001"]})
        assert cache.has({"year": ["2002"]})

    def test_stats_and_clear(self) -> None:
        cache = ResultCache(max_size=3)
        first = cache.set({"make": ["a"]}, 1, 1)
        last = cache.set({"make": ["b"]}, 2, 2)

        stats = cache.stats()
        assert stats["size"] == 2
        assert stats["max_size"] == 3
        assert stats["oldest_key"] == first.key
        assert stats["newest_key"] == last.key

        cache.clear()
        assert len(cache) == 0
        assert cache.stats()["oldest_key"] is None

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            ResultCache(max_size=0)
