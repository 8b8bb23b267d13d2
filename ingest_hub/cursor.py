# -*- coding: utf-8 -*-
"""
按 (source, key) 存取增量水位线。
存储层不做单调性校验：什么值算“更新”由调用方自己判断。
"""

from __future__ import annotations

import re
from typing import Optional

from .models import SourceType
from .storage import NewsStore

LAST_PUBLISHED_KEY = "lastPublishedAt"


def query_key(query: str) -> str:
    return f"query:{query}"


def feed_key(url: str) -> str:
    """feed 游标键：去掉协议后取末尾 32 个字符，非字母数字替换成 _"""
    bare = re.sub(r"^https?://", "", url, flags=re.IGNORECASE)
    return "feed:" + re.sub(r"[^A-Za-z0-9]", "_", bare[-32:])


class CursorStore:
    def __init__(self, store: NewsStore):
        self.store = store

    async def get(self, source: SourceType, key: str) -> Optional[str]:
        return await self.store.get_cursor(source, key)

    async def set(self, source: SourceType, key: str, value: str) -> None:
        await self.store.set_cursor(source, key, value)
