# -*- coding: utf-8 -*-
"""
Google News 搜索 RSS：每个 query 一个单元，默认关闭。
两次请求至少间隔 2 秒；RSS 不支持时间过滤，游标只做记录。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

import httpx

from ..cursor import query_key
from ..fetcher import RetryingFetcher, ensure_client
from ..models import CollectOptions, NormalizedItem, SourceType, UnitResult
from ..parsers.rss import (
    FeedEntry,
    build_google_news_url,
    detect_language,
    extract_source_info,
    parse_feed,
)
from ..ratelimit import TokenBucket
from ..utils import canonicalize_url, clean_title, truncate_summary, utcnow
from .base import BaseCollector

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; FinansTakip/1.0)"
DEFAULT_QUERIES = ["BIST", "TUPRS", "BTC", "SP500"]


class GoogleNewsCollector(BaseCollector):
    source_type = SourceType.GOOGLE_NEWS
    name = "google-news"
    ticker_confidence = 0.8

    def __init__(self, store, cfg: Optional[Dict] = None, *,
                 client: Optional[httpx.AsyncClient] = None,
                 sleep=asyncio.sleep, clock=time.monotonic, **kwargs):
        super().__init__(store, cfg, **kwargs)
        self.queries: List[str] = list(self.cfg.get("queries") or DEFAULT_QUERIES)
        self.hl = self.cfg.get("hl", "en-US")
        self.gl = self.cfg.get("gl", "US")
        self.ceid = self.cfg.get("ceid", "US:en")
        self.fetcher = RetryingFetcher(
            client or ensure_client(),
            TokenBucket.min_interval(float(self.cfg.get("min_interval_sec", 2.0)), sleep=sleep, clock=clock),
            max_retries=int(self.cfg.get("max_retries", 3)),
            base_delay=float(self.cfg.get("retry_base_delay", 1.0)),
            timeout=float(self.cfg.get("timeout", 30.0)),
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/rss+xml, application/xml, text/xml",
            },
            sleep=sleep,
            name=self.name,
        )

    def is_enabled(self) -> bool:
        return bool(self.cfg.get("enabled", False))

    def units(self) -> List[str]:
        return self.queries

    def normalize_entry(self, entry: FeedEntry, query: str) -> NormalizedItem:
        title = clean_title(entry.title)
        info = extract_source_info(entry.description)
        return NormalizedItem(
            source=SourceType.GOOGLE_NEWS,
            source_id=entry.guid or entry.link,
            title=title,
            url=canonicalize_url(entry.link),
            published_at=entry.published or utcnow(),
            language=detect_language(entry.link, title),
            summary=truncate_summary(entry.description),
            raw={"google_news": {
                "original_title": entry.title,
                "description": entry.description,
                "source_name": entry.source or info["name"],
                "original_url": info["original_url"],
                "query": query,
                "guid": entry.guid,
            }},
            discovered_at=utcnow(),
        )

    async def collect_unit(self, query: str, options: CollectOptions) -> UnitResult:
        url = build_google_news_url(query, self.hl, self.gl, self.ceid)
        text = await self.fetcher.fetch_text(url)
        items = [self.normalize_entry(e, query) for e in parse_feed(text, self.name)]
        return await self.run_pipeline(query, items, query_key(query), options)
