import pytest

from rewriting_proxy.cache import (
    InMemoryAssetCache,
    NoopAssetCache,
    asset_cache,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_hit_within_ttl_and_miss_after(clock):
    cache = InMemoryAssetCache(ttl=300, clock=clock)
    assert cache.put("https://example.com/a.png", b"png", "image/png")

    clock.now = 299.9
    entry = cache.get("https://example.com/a.png")
    assert entry.payload == b"png"
    assert entry.content_type == "image/png"
    assert entry.size_bytes == 3

    clock.now = 300
    assert cache.get("https://example.com/a.png") is None
    assert len(cache) == 0


def test_entries_over_ceiling_rejected(clock):
    cache = InMemoryAssetCache(max_entry_bytes=4, clock=clock)
    assert not cache.put("big", b"12345", "image/png")
    assert cache.get("big") is None
    assert cache.put("small", b"1234", "image/png")


def test_evicts_oldest_fifth_when_full(clock):
    cache = InMemoryAssetCache(max_entries=10, clock=clock)
    for i in range(10):
        clock.now = float(i)
        cache.put(f"k{i}", b"x", "text/css")

    clock.now = 10.0
    cache.put("k10", b"x", "text/css")

    assert len(cache) == 9
    assert cache.get("k0") is None
    assert cache.get("k1") is None
    assert cache.get("k2") is not None
    assert cache.get("k10") is not None


def test_overwrite_does_not_evict(clock):
    cache = InMemoryAssetCache(max_entries=2, clock=clock)
    cache.put("a", b"1", "text/css")
    cache.put("b", b"2", "text/css")
    cache.put("a", b"3", "text/css")
    assert len(cache) == 2
    assert cache.get("a").payload == b"3"


def test_noop_cache():
    cache = NoopAssetCache()
    assert cache.put("a", b"1", "text/css") is False
    assert cache.get("a") is None


def test_factory():
    assert isinstance(asset_cache("InMemoryAssetCache"), InMemoryAssetCache)
    assert isinstance(asset_cache("NoopAssetCache"), NoopAssetCache)
    with pytest.raises(ValueError):
        asset_cache("RedisAssetCache")
