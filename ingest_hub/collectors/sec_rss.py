# -*- coding: utf-8 -*-
"""
SEC EDGAR RSS/Atom 采集：每个 feed 一个单元。
SEC 要求带可识别身份的 User-Agent；feed 没有时间过滤参数，游标只做记录。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional

import httpx

from ..cursor import feed_key
from ..fetcher import RetryingFetcher, ensure_client
from ..models import CollectOptions, NormalizedItem, SourceType, UnitResult
from ..parsers.rss import FeedEntry, extract_filing_type, filing_tags, parse_feed
from ..ratelimit import TokenBucket
from ..utils import canonicalize_url, truncate_summary, utcnow
from .base import BaseCollector

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "FinansTakip/1.0 (contact@example.com)"
DEFAULT_FEEDS = [
    "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=&company=&owner=include&count=100&output=atom",
    "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=8-K&company=&owner=include&count=100&output=atom",
]


class SecRssCollector(BaseCollector):
    source_type = SourceType.SEC_RSS
    name = "sec-rss"

    def __init__(self, store, cfg: Optional[Dict] = None, *,
                 client: Optional[httpx.AsyncClient] = None,
                 sleep=asyncio.sleep, clock=time.monotonic, **kwargs):
        super().__init__(store, cfg, **kwargs)
        self.feeds: List[str] = list(self.cfg.get("feeds") or DEFAULT_FEEDS)
        self.user_agent = self.cfg.get("user_agent") or DEFAULT_USER_AGENT
        self.fetcher = RetryingFetcher(
            client or ensure_client(),
            TokenBucket(10, 10, sleep=sleep, clock=clock),
            max_retries=int(self.cfg.get("max_retries", 3)),
            base_delay=float(self.cfg.get("retry_base_delay", 1.0)),
            timeout=float(self.cfg.get("timeout", 30.0)),
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/atom+xml, application/rss+xml, application/xml, text/xml",
                "Accept-Encoding": "gzip, deflate",
            },
            sleep=sleep,
            name=self.name,
        )

    def units(self) -> List[str]:
        return self.feeds

    def normalize_entry(self, entry: FeedEntry, feed_url: str) -> NormalizedItem:
        filing = extract_filing_type(entry.title)
        return NormalizedItem(
            source=SourceType.SEC_RSS,
            source_id=entry.guid or entry.link,
            title=entry.title,
            url=canonicalize_url(entry.link),
            published_at=entry.published or utcnow(),
            language="en",
            summary=truncate_summary(entry.description),
            raw={"sec": {
                "filing_type": filing.type,
                "company_name": filing.company_name,
                "cik": filing.cik,
                "ticker": filing.ticker,
                "description": entry.description,
                "category": entry.categories,
                "feed_url": feed_url,
            }},
            discovered_at=utcnow(),
        )

    def extra_tags(self, item: NormalizedItem) -> List[str]:
        return filing_tags(item.raw.get("sec", {}).get("filing_type", "OTHER"))

    def extra_tickers(self, item: NormalizedItem) -> List[str]:
        ticker = item.raw.get("sec", {}).get("ticker")
        return [ticker] if ticker else []

    async def collect_unit(self, feed_url: str, options: CollectOptions) -> UnitResult:
        text = await self.fetcher.fetch_text(feed_url)
        entries = parse_feed(text, self.name)
        items = [self.normalize_entry(e, feed_url) for e in entries]
        return await self.run_pipeline(feed_url, items, feed_key(feed_url), options)
