"""
Tests for the TTL response cache.
"""

from reqguard.core.cache import CachedResponse, ResponseCache, make_key


def payload(body: bytes = b'{"ok": true}') -> CachedResponse:
    return CachedResponse(body=body, headers=((b"content-type", b"application/json"),))


class TestFreshness:
    """TTL-based hit/miss decisions."""

    def test_put_then_get(self, clock) -> None:
        cache = ResponseCache(ttl_seconds=300, clock=clock)
        cache.put("GET:/vendors", payload())
        assert cache.get("GET:/vendors") == payload()

    def test_miss_for_unknown_key(self, clock) -> None:
        cache = ResponseCache(clock=clock)
        assert cache.get("GET:/nothing") is None

    def test_expired_entry_is_a_miss_but_retained(self, clock) -> None:
        """Expiry is lazy: the entry stays until overwritten or invalidated."""
        cache = ResponseCache(ttl_seconds=300, clock=clock)
        cache.put("GET:/vendors", payload())

        clock.advance(299)
        assert cache.get("GET:/vendors") is not None

        clock.advance(1)
        assert cache.get("GET:/vendors") is None
        assert "GET:/vendors" in cache
        assert len(cache) == 1

    def test_overwrite_refreshes_timestamp(self, clock) -> None:
        cache = ResponseCache(ttl_seconds=10, clock=clock)
        cache.put("GET:/vendors", payload(b"old"))
        clock.advance(8)
        cache.put("GET:/vendors", payload(b"new"))
        clock.advance(8)
        assert cache.get("GET:/vendors").body == b"new"


class TestInvalidation:
    """Pattern and wholesale invalidation."""

    def test_pattern_removes_matching_keys(self, clock) -> None:
        cache = ResponseCache(clock=clock)
        cache.put("GET:/vendors", payload())
        cache.put("GET:/vendors/7", payload())
        cache.put("GET:/listings", payload())

        removed = cache.invalidate("/vendors")
        assert removed == 2
        assert cache.keys() == ["GET:/listings"]

    def test_pattern_without_match(self, clock) -> None:
        cache = ResponseCache(clock=clock)
        cache.put("GET:/listings", payload())
        assert cache.invalidate("/bookings") == 0
        assert len(cache) == 1

    def test_clear_all_is_idempotent(self, clock) -> None:
        cache = ResponseCache(clock=clock)
        cache.put("GET:/a", payload())
        cache.put("GET:/b", payload())

        assert cache.invalidate() == 2
        assert len(cache) == 0
        assert cache.invalidate() == 0
        assert len(cache) == 0


class TestKeysAndCapacity:
    """Key construction and the optional size bound."""

    def test_make_key(self) -> None:
        assert make_key("get", "/vendors") == "GET:/vendors"
        assert make_key("GET", "/vendors", "page=2") == "GET:/vendors?page=2"

    def test_unbounded_by_default(self, clock) -> None:
        cache = ResponseCache(clock=clock)
        for i in range(1000):
            cache.put(f"GET:/items/{i}", payload())
        assert len(cache) == 1000

    def test_max_entries_evicts_oldest(self, clock) -> None:
        cache = ResponseCache(clock=clock, max_entries=2)
        cache.put("GET:/a", payload())
        cache.put("GET:/b", payload())
        cache.put("GET:/a", payload(b"again"))
        cache.put("GET:/c", payload())
        assert cache.keys() == ["GET:/a", "GET:/c"]
