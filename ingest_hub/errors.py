# -*- coding: utf-8 -*-
"""
错误分类：
- TransportError   网络/超时，可重试
- ServerError      5xx，可重试
- RateLimitedError 429，总是重试（优先 Retry-After）
- ClientError      4xx（429 除外），不重试，只终止当前单元
- ParseError       负载格式错误，单元内吞掉，返回 0 条
- PersistenceError 存储失败，记进单元错误列表
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """所有采集相关错误的基类"""


class FetchError(IngestError):
    retryable = True


class TransportError(FetchError):
    retryable = True


class HttpStatusError(FetchError):
    def __init__(self, status: int, reason: str = ""):
        self.status = status
        self.reason = reason
        super().__init__(f"HTTP {status}: {reason}".rstrip(": ").rstrip())


class ServerError(HttpStatusError):
    retryable = True


class ClientError(HttpStatusError):
    retryable = False


class RateLimitedError(HttpStatusError):
    retryable = True

    def __init__(self, status: int = 429, reason: str = "Too Many Requests",
                 retry_after: Optional[float] = None):
        super().__init__(status, reason)
        self.retry_after = retry_after


class ParseError(IngestError):
    pass


class PersistenceError(IngestError):
    pass


class SchedulerNotActive(IngestError):
    """没有任何调度后端处于运行状态时手动触发任务"""
