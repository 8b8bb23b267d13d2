# -*- coding: utf-8 -*-
"""
令牌桶限流。
- 容量 capacity = 突发额度，速率 refill_rate = 每秒补充的令牌数
- 每次访问按流逝时间惰性补充，没有后台线程；时钟与 sleep 可注入，便于模拟时钟测试
- 小数令牌在两次调用之间累积
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable


class TokenBucket:
    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def try_consume(self) -> bool:
        """非阻塞：有令牌就扣一个返回 True，否则 False"""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def consume(self) -> None:
        """等到有令牌再扣；每次只睡到下一个令牌可用为止"""
        while not self.try_consume():
            await self._sleep(self.get_wait_time())

    def get_wait_time(self) -> float:
        """距离下一个令牌可用的秒数，不消耗令牌"""
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) / self.refill_rate

    @property
    def tokens(self) -> float:
        self._refill()
        return self._tokens

    @classmethod
    def min_interval(cls, seconds: float, **kwargs) -> "TokenBucket":
        """“两次请求至少间隔 N 秒”的礼貌限流：容量 1，速率 1/N"""
        return cls(1, 1.0 / seconds, **kwargs)
