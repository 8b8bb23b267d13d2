# -*- coding: utf-8 -*-
"""
tests/conftest.py
公共夹具：可控时钟、记录型 sleep、内存 SQLite、httpx MockTransport 客户端、Redis 替身。
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx
import pytest

from ingest_hub.storage import NewsStore


class FakeClock:
    """可手动推进的单调时钟；sleep 会推进时钟并记录时长"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def store():
    s = await NewsStore.open(":memory:")
    yield s
    await s.close()


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeRedis:
    """队列后端用到的那部分 redis.asyncio 命令的内存实现（decode_responses=True 语义）"""

    def __init__(self):
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.lists: Dict[str, List[str]] = {}
        self.closed = False

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        z = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in z)
        z.update({m: float(s) for m, s in mapping.items()})
        return added

    async def zrem(self, key: str, *members: str) -> int:
        z = self.zsets.get(key, {})
        return sum(1 for m in members if z.pop(m, None) is not None)

    async def zrangebyscore(self, key: str, low, high) -> List[str]:
        lo = float("-inf") if low == "-inf" else float(low)
        hi = float("inf") if high == "+inf" else float(high)
        items = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1])
        return [m for m, s in items if lo <= s <= hi]

    async def zscore(self, key: str, member: str) -> Optional[float]:
        return self.zsets.get(key, {}).get(member)

    async def zcard(self, key: str) -> int:
        return len(self.zsets.get(key, {}))

    async def rpush(self, key: str, *values: str) -> int:
        lst = self.lists.setdefault(key, [])
        lst.extend(values)
        return len(lst)

    async def lpop(self, key: str) -> Optional[str]:
        lst = self.lists.get(key) or []
        return lst.pop(0) if lst else None

    async def lpos(self, key: str, value: str) -> Optional[int]:
        lst = self.lists.get(key) or []
        return lst.index(value) if value in lst else None

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key) or [])

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
async def make_client():
    """make_client(handler) -> AsyncClient；测试结束统一关闭"""
    clients: List[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        c = mock_client(handler)
        clients.append(c)
        return c

    yield _make
    for c in clients:
        await c.aclose()
