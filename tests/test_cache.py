import pytest

from cache import (
    AllocationError,
    CacheSet,
    MAX_SETS,
    ConfigurationError,
    Geometry,
    Outcome,
    SetAssociativeCache,
)


def addr_for(tag, set_index, g, offset=0):
    return (tag << (g.s + g.b)) | (set_index << g.b) | offset


@pytest.mark.parametrize("kwargs", [
    dict(s=0, b=1, E=1),
    dict(s=1, b=0, E=1),
    dict(s=1, b=1, E=0),
    dict(s=-2, b=1, E=1),
    dict(s=40, b=30, E=1),
    dict(s="4", b=4, E=1),
])
def test_geometry_rejects_bad_values(kwargs):
    with pytest.raises(ConfigurationError):
        Geometry(**kwargs)


def test_geometry_derived_sizes():
    g = Geometry(s=3, b=5, E=2)
    assert g.num_sets == 8
    assert g.block_size == 32
    assert g.label() == "s=3 E=2 b=5"


def test_cache_starts_empty():
    g = Geometry(s=2, b=2, E=3)
    cache = SetAssociativeCache(g)
    assert len(cache.sets) == 4
    assert all(len(s) == 0 and s.capacity == 3 for s in cache.sets)
    assert cache.stats()["used_lines"] == 0


def test_decompose():
    g = Geometry(s=3, b=6, E=2)
    cache = SetAssociativeCache(g)
    assert cache.decompose(0b1111_101_101010) == (5, 0b1111)


def test_decompose_rejects_out_of_range_addresses():
    cache = SetAssociativeCache(Geometry(s=1, b=1, E=1))
    with pytest.raises(ValueError):
        cache.decompose(-1)
    with pytest.raises(ValueError):
        cache.decompose(1 << 64)
    assert cache.decompose((1 << 64) - 1) == (1, (1 << 62) - 1)


def test_miss_then_hit():
    cache = SetAssociativeCache(Geometry(s=2, b=4, E=1))
    assert cache.access(0x10) is Outcome.MISS
    assert cache.access(0x10) is Outcome.HIT
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1
    assert cache.stats()["evictions"] == 0


def test_offset_bits_do_not_matter():
    g = Geometry(s=2, b=4, E=1)
    cache = SetAssociativeCache(g)
    assert cache.access(addr_for(7, 2, g, offset=0)) is Outcome.MISS
    for offset in range(1, g.block_size):
        assert cache.access(addr_for(7, 2, g, offset=offset)) is Outcome.HIT


def test_direct_mapped_miss_on_occupied_set_is_eviction():
    g = Geometry(s=2, b=2, E=1)
    cache = SetAssociativeCache(g)
    # empty sets never evict
    for set_index in range(g.num_sets):
        assert cache.access(addr_for(1, set_index, g)) is Outcome.MISS
    for tag in (2, 3, 1, 5):
        assert cache.access(addr_for(tag, 0, g)) is Outcome.MISS_EVICTION
    assert cache.counters.evictions == 4
    assert cache.counters.misses == 8


def test_lru_evicts_oldest_of_e_plus_one_tags():
    g = Geometry(s=1, b=2, E=4)
    cache = SetAssociativeCache(g)
    tags = [10, 11, 12, 13, 14]
    outcomes = [cache.access(addr_for(t, 1, g)) for t in tags]
    assert outcomes == [Outcome.MISS] * 4 + [Outcome.MISS_EVICTION]
    assert not cache.resident(addr_for(10, 1, g))
    for t in tags[1:]:
        assert cache.access(addr_for(t, 1, g)) is Outcome.HIT
    assert cache.access(addr_for(10, 1, g)) is Outcome.MISS_EVICTION


def test_hit_promotes_line_to_most_recent():
    g = Geometry(s=1, b=1, E=3)
    cache = SetAssociativeCache(g)
    for t in (1, 2, 3):
        cache.access(addr_for(t, 0, g))
    assert cache.sets[0].tags() == [3, 2, 1]
    cache.access(addr_for(1, 0, g))
    assert cache.sets[0].tags() == [1, 3, 2]
    # 2 is now least recently used
    assert cache.access(addr_for(4, 0, g)) is Outcome.MISS_EVICTION
    assert cache.sets[0].tags() == [4, 1, 3]


def test_sets_are_independent():
    g = Geometry(s=1, b=1, E=1)
    cache = SetAssociativeCache(g)
    cache.access(addr_for(1, 0, g))
    cache.access(addr_for(1, 1, g))
    assert cache.access(addr_for(1, 0, g)) is Outcome.HIT
    assert cache.access(addr_for(1, 1, g)) is Outcome.HIT


def test_order_changes_eviction_count():
    g = Geometry(s=1, b=1, E=2)
    a, b, c = (addr_for(t, 0, g) for t in (0, 1, 2))

    first = SetAssociativeCache(g)
    for addr in (a, b, a, c, a):
        first.access(addr)
    second = SetAssociativeCache(g)
    for addr in (a, b, c, a, a):
        second.access(addr)

    assert first.counters.evictions == 1
    assert second.counters.evictions == 2


def test_tags_stay_distinct_and_bounded():
    g = Geometry(s=1, b=1, E=2)
    cache = SetAssociativeCache(g)
    for addr in (0x0, 0x4, 0x0, 0x8, 0x4, 0x0, 0x8, 0x8):
        cache.access(addr)
        for s in cache.sets:
            tags = s.tags()
            assert len(tags) <= g.E
            assert len(set(tags)) == len(tags)


def test_context_manager_releases_storage():
    with SetAssociativeCache(Geometry(s=1, b=1, E=1)) as cache:
        cache.access(0x10)
    assert cache.closed
    cache.close()
    with pytest.raises(RuntimeError):
        cache.access(0x10)


def test_storage_released_when_body_raises():
    with pytest.raises(KeyError):
        with SetAssociativeCache(Geometry(s=1, b=1, E=1)) as cache:
            raise KeyError("boom")
    assert cache.closed


def test_allocation_failure_is_reported(monkeypatch):
    def no_memory(self, capacity):
        raise MemoryError

    monkeypatch.setattr(CacheSet, "__init__", no_memory)
    with pytest.raises(AllocationError):
        SetAssociativeCache(Geometry(s=2, b=2, E=1))


def test_oversized_geometry_fails_fast():
    with pytest.raises(AllocationError):
        SetAssociativeCache(Geometry(s=40, b=4, E=1))
    with pytest.raises(AllocationError):
        SetAssociativeCache(Geometry(s=MAX_SETS.bit_length(), b=1, E=1))


def test_largest_supported_set_count_is_allowed():
    assert Geometry(s=24, b=1, E=1).num_sets == MAX_SETS


def test_insert_into_full_set_raises():
    s = CacheSet(1)
    s.insert(7)
    with pytest.raises(RuntimeError):
        s.insert(8)


def test_insert_duplicate_tag_raises():
    s = CacheSet(2)
    s.insert(3)
    with pytest.raises(RuntimeError):
        s.insert(3)
