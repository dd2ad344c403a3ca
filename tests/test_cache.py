"""
Tests for the TTL cache.
"""
from socialise.cache import TTLCache


class FakeTimer:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestTTLCache:
    def test_value_expires_after_ttl(self):
        timer = FakeTimer()
        cache = TTLCache(5, clock=timer)
        cache.set("stats", {"waiting": 1})

        timer.now += 4.9
        assert cache.get("stats") == {"waiting": 1}

        timer.now += 0.2
        assert cache.get("stats") is None

    def test_get_or_set_calls_factory_once_while_fresh(self):
        timer = FakeTimer()
        cache = TTLCache(5, clock=timer)
        calls = []

        def factory():
            calls.append(1)
            return len(calls)

        assert cache.get_or_set("k", factory) == 1
        assert cache.get_or_set("k", factory) == 1
        timer.now += 10
        assert cache.get_or_set("k", factory) == 2

    def test_invalidate_and_clear(self):
        cache = TTLCache(60)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.get("b") == 2

        cache.clear()
        assert cache.get("b", "missing") == "missing"

    def test_per_entry_ttl(self):
        timer = FakeTimer()
        cache = TTLCache(5, clock=timer)
        cache.set("short", 1, ttl_seconds=1)
        timer.now += 2
        assert cache.get("short") is None
