# -*- coding: utf-8 -*-
"""
两级去重的内存层：
- 按来源 ID 与按规范化 URL 各一张表
- TTL 过期（默认 24h）+ 容量上限（默认 10000）
- 达到 90% 容量时按首次见到时间淘汰最旧的 10%
这里只是性能层；真正的去重保证是存储层 url 唯一键上的 INSERT OR IGNORE。
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .models import CacheEntry, NormalizedItem

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_SIZE = 10_000

_CACHE_STRIP_PARAMS = {"utm_source", "utm_medium", "utm_campaign"}


def normalize_cache_url(url: str) -> str:
    """去掉 utm_source/utm_medium/utm_campaign，主机名小写"""
    try:
        u = urlparse(url)
        qs = [(k, v) for (k, v) in parse_qsl(u.query, keep_blank_values=True)
              if k not in _CACHE_STRIP_PARAMS]
        return urlunparse((u.scheme, u.netloc.lower(), u.path, u.params,
                           urlencode(qs, doseq=True), u.fragment))
    except ValueError:
        return url


def _key_fields(item: Any) -> Tuple[str, str, Any]:
    # 同时接受 NormalizedItem、CacheEntry 和存储层回灌的 dict
    if isinstance(item, dict):
        return item.get("source_id") or "", item.get("url") or "", item.get("published_at")
    return item.source_id, item.url, getattr(item, "published_at", None)


class DedupCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        *,
        clock: Callable[[], float] = time.time,
        name: str = "dedup",
    ) -> None:
        self.ttl_seconds = float(ttl_seconds)
        self.max_size = int(max_size)
        self._clock = clock
        self.name = name
        self._by_id: Dict[str, CacheEntry] = {}
        self._by_url: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    # ---------- 查询 ----------
    def has(self, item: Any) -> bool:
        self.clean_expired()
        source_id, url, _ = _key_fields(item)
        if source_id and source_id in self._by_id:
            return True
        return bool(url) and normalize_cache_url(url) in self._by_url

    # ---------- 写入 ----------
    def add(self, item: Any) -> None:
        if len(self._by_id) >= self.max_size * 0.9:
            self._evict_oldest()
        self._put(item, self._clock())

    def _put(self, item: Any, seen_at: float) -> None:
        source_id, url, published_at = _key_fields(item)
        entry = CacheEntry(source_id=source_id or url, url=url,
                           seen_at=seen_at, published_at=published_at)
        self._by_id[entry.source_id] = entry
        if url:
            self._by_url[normalize_cache_url(url)] = entry

    def add_many(self, items: Iterable[Any]) -> int:
        """启动回灌；到容量上限即停止，返回实际加入条数"""
        added = 0
        now = self._clock()
        for item in items:
            if len(self._by_id) >= self.max_size:
                break
            self._put(item, now)
            added += 1
        logger.info("[%s] 回灌 %d 条到去重缓存", self.name, added)
        return added

    def filter_new(self, items: List[NormalizedItem]) -> Tuple[List[NormalizedItem], int]:
        """返回 (新条目, 命中缓存数)；新条目会顺手加入缓存"""
        fresh: List[NormalizedItem] = []
        cached = 0
        for item in items:
            if self.has(item):
                cached += 1
                continue
            self.add(item)
            fresh.append(item)
        return fresh, cached

    def discard(self, items: Iterable[Any]) -> None:
        """写库失败时把这批条目移出缓存，下一轮还能再试"""
        for item in items:
            source_id, url, _ = _key_fields(item)
            entry = self._by_id.get(source_id or url)
            if entry is None and url:
                entry = self._by_url.get(normalize_cache_url(url))
            if entry is not None:
                self._drop(entry)

    # ---------- 淘汰 ----------
    def _drop(self, entry: CacheEntry) -> None:
        if self._by_id.get(entry.source_id) is entry:
            del self._by_id[entry.source_id]
        if entry.url:
            key = normalize_cache_url(entry.url)
            if self._by_url.get(key) is entry:
                del self._by_url[key]

    def _evict_oldest(self) -> None:
        count = math.ceil(self.max_size * 0.1)
        oldest = sorted(self._by_id.values(), key=lambda e: e.seen_at)[:count]
        for entry in oldest:
            self._drop(entry)
        logger.debug("[%s] 容量淘汰 %d 条", self.name, len(oldest))

    def clean_expired(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        expired = {id(e): e for e in self._by_id.values() if e.seen_at < cutoff}
        expired.update((id(e), e) for e in self._by_url.values() if e.seen_at < cutoff)
        for entry in expired.values():
            self._drop(entry)
        return len(expired)

    def clear(self) -> None:
        self._by_id.clear()
        self._by_url.clear()

    def stats(self) -> Dict[str, Optional[float]]:
        return {
            "size": len(self._by_id),
            "url_size": len(self._by_url),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
        }
