# -*- coding: utf-8 -*-
"""
带限流与指数退避的抓取器。
每次尝试：先拿令牌 -> 发请求（超时由 asyncio.wait_for 主动取消）-> 分类：
- 2xx          返回
- 429          总是重试；有 Retry-After 就按它等，否则 base * 2**attempt
- 其它 4xx     立即抛 ClientError（带原始状态码），不再重试
- 5xx / 网络 / 超时  退避后重试
重试用尽抛最后一次的错误，绝不返回半截数据。
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .errors import (
    ClientError,
    FetchError,
    ParseError,
    RateLimitedError,
    ServerError,
    TransportError,
)
from .ratelimit import TokenBucket

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ingest-hub/1.0 (news aggregator)"

_CLIENT: Optional[httpx.AsyncClient] = None


def ensure_client() -> httpx.AsyncClient:
    """全局复用一个 httpx AsyncClient，避免频繁建连。"""
    global _CLIENT
    if _CLIENT is None or _CLIENT.is_closed:
        # 超时只由 RetryingFetcher 的 wait_for 控制，客户端自身不设上限
        _CLIENT = httpx.AsyncClient(
            timeout=None,
            headers={"User-Agent": DEFAULT_USER_AGENT},
            follow_redirects=True,
        )
    return _CLIENT


async def close_client() -> None:
    global _CLIENT
    if _CLIENT is not None and not _CLIENT.is_closed:
        await _CLIENT.aclose()
    _CLIENT = None


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After 可以是秒数，也可以是 HTTP-date"""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class RetryingFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        limiter: TokenBucket,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "fetch",
    ) -> None:
        self.client = client
        self.limiter = limiter
        self.max_retries = max(1, int(max_retries))
        self.base_delay = float(base_delay)
        self.timeout = float(timeout)
        self.headers = dict(headers or {})
        self._sleep = sleep
        self.name = name

    def backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def _attempt(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]],
        content: Optional[str],
        headers: Dict[str, str],
    ) -> httpx.Response:
        try:
            resp = await asyncio.wait_for(
                self.client.request(method, url, params=params, content=content,
                                    headers=headers, timeout=None),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TransportError(f"Request timeout after {int(self.timeout * 1000)}ms") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        status = resp.status_code
        if status < 400:
            return resp
        reason = resp.reason_phrase or ""
        if status == 429:
            raise RateLimitedError(status, reason or "Too Many Requests",
                                   retry_after=parse_retry_after(resp.headers.get("Retry-After")))
        if 400 <= status < 500:
            raise ClientError(status, reason)
        raise ServerError(status, reason)

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        content: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        merged = {**self.headers, **(headers or {})}
        last_error: Optional[FetchError] = None

        for attempt in range(self.max_retries):
            await self.limiter.consume()
            try:
                return await self._attempt(method, url, params=params, content=content, headers=merged)
            except ClientError:
                # 4xx（非 429）不重试
                raise
            except RateLimitedError as e:
                last_error = e
                wait = e.retry_after if e.retry_after is not None else self.backoff(attempt)
                logger.warning("[%s] 被限流 429，等待 %.1fs 后重试", self.name, wait)
                if attempt + 1 < self.max_retries:
                    await self._sleep(wait)
            except FetchError as e:
                last_error = e
                delay = self.backoff(attempt)
                logger.warning("[%s] 第 %d 次请求失败: %s，%.1fs 后重试",
                               self.name, attempt + 1, e, delay)
                if attempt + 1 < self.max_retries:
                    await self._sleep(delay)

        raise last_error or TransportError("Max retries exceeded")

    async def fetch_text(self, url: str, **kwargs) -> str:
        resp = await self.fetch(url, **kwargs)
        return resp.text

    async def fetch_json(self, url: str, **kwargs) -> Any:
        text = await self.fetch_text(url, **kwargs)
        try:
            return json.loads(text)
        except ValueError as e:
            raise ParseError(f"Invalid JSON response from {self.name}") from e
