# -*- coding: utf-8 -*-
"""
KAP（Kamuyu Aydınlatma Platformu）公告采集。
接口没有公开文档：地址、方法、请求头、请求体都由运维在配置里给出，
query_path 为空时采集器视为未启用。硬限流：两次请求至少间隔 5 秒。
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..cursor import LAST_PUBLISHED_KEY
from ..errors import ParseError
from ..fetcher import RetryingFetcher, ensure_client
from ..models import CollectOptions, NormalizedItem, SourceType, UnitResult
from ..parsers.kap import KapItem, is_valid_kap_item, parse_kap_response
from ..ratelimit import TokenBucket
from ..utils import canonicalize_url, truncate_summary, utcnow
from .base import BaseCollector

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.kap.org.tr"

CLIENT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "application/json, text/html, */*",
    "Accept-Language": "tr-TR,tr;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Origin": "https://www.kap.org.tr",
    "Referer": "https://www.kap.org.tr/tr/bildirim-sorgu",
}


def json_option(value: Any, default: Any, label: str) -> Any:
    """配置值可以直接是 dict，也可以是 JSON 字符串；解析失败记警告并用默认值"""
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        logger.warning("[kap] %s 不是合法 JSON，使用默认值", label)
        return default


class KapCollector(BaseCollector):
    source_type = SourceType.KAP
    name = "kap"

    def __init__(self, store, cfg: Optional[Dict] = None, *,
                 client: Optional[httpx.AsyncClient] = None,
                 sleep=asyncio.sleep, clock=time.monotonic, **kwargs):
        super().__init__(store, cfg, **kwargs)
        self.base_url = (self.cfg.get("base_url") or DEFAULT_BASE_URL).rstrip("/")
        self.query_path = self.cfg.get("query_path") or ""
        self.method = str(self.cfg.get("method") or "POST").upper()
        self.response_type = self.cfg.get("response_type") or "auto"
        extra_headers = json_option(self.cfg.get("headers"), {}, "headers")
        self.headers = {**DEFAULT_HEADERS, **(extra_headers if isinstance(extra_headers, dict) else {})}
        self.body = json_option(self.cfg.get("body"), {}, "body")
        self.query_params = json_option(self.cfg.get("query_params"), None, "query_params")
        self.fetcher = RetryingFetcher(
            client or ensure_client(),
            TokenBucket.min_interval(float(self.cfg.get("min_interval_sec", 5.0)), sleep=sleep, clock=clock),
            max_retries=int(self.cfg.get("max_retries", 3)),
            base_delay=float(self.cfg.get("retry_base_delay", 2.0)),
            timeout=float(self.cfg.get("timeout", 30.0)),
            headers={**CLIENT_HEADERS, **self.headers},
            sleep=sleep,
            name=self.name,
        )

    def is_enabled(self) -> bool:
        return bool(self.cfg.get("enabled", True)) and bool(self.query_path)

    def units(self) -> List[str]:
        return ["kap"]

    @property
    def endpoint(self) -> str:
        path = self.query_path if self.query_path.startswith("/") else "/" + self.query_path
        return self.base_url + path

    def request_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"method": self.method}
        if self.method == "GET" and self.query_params:
            kwargs["params"] = self.query_params
        if self.method == "POST" and self.body is not None:
            kwargs["content"] = self.body if isinstance(self.body, str) else json.dumps(self.body)
        return kwargs

    def normalize_item(self, item: KapItem) -> NormalizedItem:
        return NormalizedItem(
            source=SourceType.KAP,
            source_id=item.source_id,
            title=item.title,
            url=canonicalize_url(item.url),
            published_at=item.published_at,
            language="tr",
            summary=truncate_summary(item.summary),
            raw={"kap": {
                **item.raw,
                "stockCode": item.stock_code,
                "companyName": item.company_name,
                "disclosureType": item.disclosure_type,
            }},
            discovered_at=utcnow(),
        )

    def extra_tags(self, item: NormalizedItem) -> List[str]:
        return ["kap", "turkey"]

    def extra_tickers(self, item: NormalizedItem) -> List[str]:
        code = item.raw.get("kap", {}).get("stockCode")
        return [code] if code else []

    async def collect_unit(self, unit: str, options: CollectOptions) -> UnitResult:
        text = await self.fetcher.fetch_text(self.endpoint, **self.request_kwargs())
        try:
            parsed = parse_kap_response(text, self.base_url, self.response_type)
        except ParseError as e:
            return self.parse_failed(unit, e)
        items = [self.normalize_item(p) for p in parsed if is_valid_kap_item(p)]
        return await self.run_pipeline(unit, items, LAST_PUBLISHED_KEY, options)
