"""
Unit Tests for TTL Cache

Tests use an injected clock; no sleeping.
"""

from firehose_indexer.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Expiry, deletion and stats."""

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = TTLCache(default_ttl=10, clock=self.clock)

    def test_get_set(self):
        self.cache.set("a", 1)

        assert self.cache.get("a") == 1
        assert "a" in self.cache
        assert len(self.cache) == 1

    def test_entry_expires(self):
        self.cache.set("a", 1)
        self.clock.now += 10

        assert self.cache.get("a") is None
        assert len(self.cache) == 0

    def test_custom_ttl(self):
        self.cache.set("a", 1, ttl=60)
        self.clock.now += 30

        assert self.cache.get("a") == 1

    def test_delete(self):
        self.cache.set("a", 1)

        assert self.cache.delete("a")
        assert not self.cache.delete("a")

    def test_delete_pattern(self):
        self.cache.set("community:1", 1)
        self.cache.set("community:2", 2)
        self.cache.set("post:1", 3)

        assert self.cache.delete_pattern("community:*") == 2
        assert self.cache.get("post:1") == 3

    def test_purge_expired(self):
        self.cache.set("short", 1, ttl=1)
        self.cache.set("long", 2, ttl=100)
        self.clock.now += 5

        assert self.cache.purge_expired() == 1
        assert len(self.cache) == 1

    def test_hit_miss_counters(self):
        self.cache.set("a", 1)
        self.cache.get("a")
        self.cache.get("b")

        assert self.cache.hits == 1
        assert self.cache.misses == 1

    def test_instances_are_independent(self):
        other = TTLCache()
        self.cache.set("a", 1)

        assert other.get("a") is None

    def test_clear(self):
        self.cache.set("a", 1)
        self.cache.clear()

        assert len(self.cache) == 0
