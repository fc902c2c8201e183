"""Tests for the freshness cache."""

import threading

from coinproxy.cache import CacheEntry, CacheKey, FreshnessCache


def test_get_absent_key(cache):
    assert cache.get(CacheKey("prices", ("bitcoin",))) is None


def test_entry_fresh_until_ttl_elapses(cache, clock):
    key = CacheKey("chart", ("bitcoin",), "7")
    entry = cache.put(key, ("payload",), ttl=30)

    assert cache.get(key) is entry
    assert entry.is_fresh(clock())

    clock.advance(29)
    assert cache.get(key).is_fresh(clock())

    clock.advance(1)
    assert not cache.get(key).is_fresh(clock())
    # stale entries stay readable until replaced
    assert cache.get(key).payload == ("payload",)


def test_put_replaces_whole_entry(cache, clock):
    key = CacheKey("history", ("bitcoin",), "30")
    first = cache.put(key, ("a",), ttl=10)
    clock.advance(15)
    second = cache.put(key, ("b",), ttl=60)

    got = cache.get(key)
    assert got is second
    assert got.payload == ("b",)
    assert got.ttl == 60.0
    assert got.fetched_at > first.fetched_at
    assert len(cache) == 1


def test_keys_are_pure_functions_of_parameters():
    assert CacheKey("history", ("bitcoin",), "7") == CacheKey("history", ("bitcoin",), "7")
    assert CacheKey("history", ("bitcoin",), None) != CacheKey("history", ("bitcoin",), "7")
    assert hash(CacheKey("tokens", ("bitcoin", "ethereum"))) == hash(
        CacheKey("tokens", ("bitcoin", "ethereum"))
    )


def test_remaining_never_negative():
    entry = CacheEntry(payload=None, fetched_at=100.0, ttl=10.0)
    assert entry.remaining(105.0) == 5.0
    assert entry.remaining(500.0) == 0.0


def test_stats_counts_fresh_entries(cache, clock):
    cache.put(CacheKey("prices", ("bitcoin",)), (), ttl=5)
    cache.put(CacheKey("chart", ("bitcoin",), "7"), (), ttl=300)
    clock.advance(10)

    assert cache.stats() == {"entries": 2, "fresh": 1}
    assert CacheKey("prices", ("bitcoin",)) in cache


def test_parallel_writers_on_distinct_keys():
    cache = FreshnessCache()
    keys = [CacheKey("history", (f"asset-{i}",), "7") for i in range(20)]

    def writer(key):
        for n in range(200):
            cache.put(key, (key.assets[0], n), ttl=60)

    threads = [threading.Thread(target=writer, args=(k,)) for k in keys]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(cache) == 20
    for key in keys:
        # last write wins and is never mixed with another key's payload
        assert cache.get(key).payload == (key.assets[0], 199)
