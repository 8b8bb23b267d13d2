# -*- coding: utf-8 -*-
"""
GDELT DOC 2.0 接口采集：每个 query 一个单元，按游标带 startdatetime 增量拉取。
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..cursor import query_key
from ..errors import ParseError
from ..fetcher import RetryingFetcher, ensure_client
from ..models import CollectOptions, NormalizedItem, SourceType, UnitResult
from ..ratelimit import TokenBucket
from ..utils import canonicalize_url, safe_date_parse, utcnow
from .base import BaseCollector

logger = logging.getLogger(__name__)

API_BASE = "https://api.gdeltproject.org/api/v2/doc/doc"
USER_AGENT = "FinansBackend/1.0 (news aggregator)"
DEFAULT_QUERIES = ["Tesla", "Fed", "BTC", "SP500"]


def to_gdelt_datetime(value) -> str:
    """ISO 时间 -> YYYYMMDDHHMMSS（UTC）"""
    return safe_date_parse(value).strftime("%Y%m%d%H%M%S")


class GdeltCollector(BaseCollector):
    source_type = SourceType.GDELT
    name = "gdelt"

    def __init__(self, store, cfg: Optional[Dict] = None, *,
                 client: Optional[httpx.AsyncClient] = None,
                 sleep=asyncio.sleep, clock=time.monotonic, **kwargs):
        super().__init__(store, cfg, **kwargs)
        self.queries: List[str] = list(self.cfg.get("queries") or DEFAULT_QUERIES)
        self.max_records = int(self.cfg.get("max_records", 100))
        self.source_language = self.cfg.get("source_language", "english")
        self.fetcher = RetryingFetcher(
            client or ensure_client(),
            TokenBucket(1, 1, sleep=sleep, clock=clock),
            max_retries=int(self.cfg.get("max_retries", 3)),
            base_delay=float(self.cfg.get("retry_base_delay", 1.0)),
            timeout=float(self.cfg.get("timeout", 30.0)),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            sleep=sleep,
            name=self.name,
        )

    def units(self) -> List[str]:
        return self.queries

    def build_params(self, query: str, since: Optional[str]) -> Dict[str, str]:
        params = {
            "query": query,
            "mode": "ArtList",
            "format": "json",
            "maxrecords": str(self.max_records),
            "sort": "DateDesc",
        }
        if self.source_language:
            params["sourcelang"] = self.source_language
        if since:
            params["startdatetime"] = to_gdelt_datetime(since)
        return params

    def normalize_article(self, article: Dict[str, Any], query: str) -> Optional[NormalizedItem]:
        url = article.get("url")
        if not url:
            return None
        return NormalizedItem(
            source=SourceType.GDELT,
            source_id=url,
            title=article.get("title") or "",
            url=canonicalize_url(url),
            published_at=safe_date_parse(article.get("seendate")),
            language=article.get("language") or "en",
            raw={"gdelt": {
                "domain": article.get("domain"),
                "sourcecountry": article.get("sourcecountry"),
                "socialimage": article.get("socialimage"),
                "seendate": article.get("seendate"),
                "query": query,
            }},
            discovered_at=utcnow(),
        )

    async def collect_unit(self, query: str, options: CollectOptions) -> UnitResult:
        key = query_key(query)
        since = await self.cursors.get(self.source_type, key)
        try:
            data = await self.fetcher.fetch_json(API_BASE, params=self.build_params(query, since))
        except ParseError as e:
            return self.parse_failed(query, e)

        articles = data.get("articles") if isinstance(data, dict) else None
        if not isinstance(articles, list):
            articles = []
        items = [it for it in (self.normalize_article(a, query) for a in articles if isinstance(a, dict)) if it]
        return await self.run_pipeline(query, items, key, options)
