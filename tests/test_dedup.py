# -*- coding: utf-8 -*-
"""
tests/test_dedup.py
去重缓存：双表命中、幂等、TTL 过期、90% 容量淘汰最旧 10%、回灌上限。
"""

from datetime import datetime, timezone

from ingest_hub.dedup import DedupCache, normalize_cache_url
from ingest_hub.models import NormalizedItem, SourceType


def item(n, url=None):
    return NormalizedItem(
        source=SourceType.GDELT,
        source_id=f"id-{n}",
        title=f"title {n}",
        url=url or f"https://example.com/{n}",
        published_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_filter_new_is_idempotent(clock):
    cache = DedupCache(clock=clock)
    batch = [item(1), item(2), item(3)]
    fresh, cached = cache.filter_new(batch)
    assert len(fresh) == 3 and cached == 0
    fresh, cached = cache.filter_new(batch)
    assert fresh == [] and cached == 3


def test_duplicate_inside_one_batch(clock):
    cache = DedupCache(clock=clock)
    fresh, cached = cache.filter_new([item(1), item(1)])
    assert len(fresh) == 1 and cached == 1


def test_url_match_ignores_tracking_and_host_case(clock):
    cache = DedupCache(clock=clock)
    cache.add(item(1, "https://Example.com/a?id=5"))
    other = item(99, "https://EXAMPLE.com/a?id=5&utm_source=x&utm_campaign=y")
    assert cache.has(other)


def test_normalize_cache_url():
    assert normalize_cache_url("https://WWW.Foo.com/x?utm_medium=m&b=1") == "https://www.foo.com/x?b=1"


def test_entries_expire_after_ttl(clock):
    cache = DedupCache(ttl_seconds=60, clock=clock)
    cache.add(item(1))
    clock.advance(59)
    assert cache.has(item(1))
    clock.advance(2)
    assert not cache.has(item(1))
    assert len(cache) == 0


def test_eviction_removes_oldest_tenth(clock):
    cache = DedupCache(max_size=10, clock=clock)
    for n in range(9):
        cache.add(item(n))
        clock.advance(1)
    # 第 10 条写入时已到 90%，先淘汰最早的 1 条
    cache.add(item(9))
    assert len(cache) == 9
    assert not cache.has(item(0))
    assert cache.has(item(1))
    assert cache.has(item(9))
    assert cache.stats()["url_size"] == 9


def test_add_many_stops_at_capacity(clock):
    cache = DedupCache(max_size=5, clock=clock)
    rows = [{"source_id": f"s{n}", "url": f"https://e.com/{n}", "published_at": None} for n in range(8)]
    assert cache.add_many(rows) == 5
    assert len(cache) == 5
    assert cache.has({"source_id": "s0", "url": ""})
    assert not cache.has({"source_id": "s7", "url": "https://e.com/7"})


def test_discard_and_clear(clock):
    cache = DedupCache(clock=clock)
    cache.filter_new([item(1), item(2)])
    cache.discard([item(1)])
    assert not cache.has(item(1))
    assert cache.has(item(2))
    cache.clear()
    assert cache.stats()["size"] == 0
