# -*- coding: utf-8 -*-
"""
所有数据源共用的采集骨架：
- IDLE/RUNNING 状态：运行中再次调用直接返回空结果（skipped），不排队也不抛错
- 逐个单元（query / feed）顺序执行，单元异常只记进该单元的 errors
- 单元流水线：限流重试抓取 -> 解析 -> 规范化 -> 缓存去重 -> 幂等写库 -> 打标签（尽力而为）-> 推进游标
"""

from __future__ import annotations

import enum
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from ..cursor import CursorStore
from ..dedup import DedupCache
from ..errors import ParseError, PersistenceError
from ..models import (
    CollectOptions,
    CollectorRunResult,
    NormalizedItem,
    SourceType,
    UnitResult,
)
from ..storage import NewsStore
from ..tagging import Tagger
from ..utils import to_iso, utcnow

logger = logging.getLogger(__name__)


class CollectorState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class BaseCollector:
    source_type: SourceType
    name: str = "collector"
    ticker_confidence: float = 1.0

    def __init__(
        self,
        store: NewsStore,
        cfg: Optional[Dict] = None,
        *,
        cursors: Optional[CursorStore] = None,
        cache: Optional[DedupCache] = None,
        tagger: Optional[Tagger] = None,
    ):
        self.store = store
        self.cfg = dict(cfg or {})
        self.cursors = cursors or CursorStore(store)
        self.cache = cache or DedupCache(name=self.name)
        self.tagger = tagger or Tagger()
        self.state = CollectorState.IDLE

    # ---------- 子类实现 ----------
    def is_enabled(self) -> bool:
        return bool(self.cfg.get("enabled", True))

    def units(self) -> List[str]:
        raise NotImplementedError

    async def collect_unit(self, unit: str, options: CollectOptions) -> UnitResult:
        raise NotImplementedError

    def extra_tags(self, item: NormalizedItem) -> List[str]:
        return []

    def extra_tickers(self, item: NormalizedItem) -> List[str]:
        return []

    # ---------- 主入口 ----------
    @property
    def is_running(self) -> bool:
        return self.state is CollectorState.RUNNING

    async def collect(self, options: Optional[CollectOptions] = None) -> CollectorRunResult:
        if not self.is_enabled():
            logger.debug("[%s] 未启用，跳过", self.name)
            return CollectorRunResult(skipped=True)
        # 检查与置位之间没有 await，同一事件循环里不会被插队
        if self.state is CollectorState.RUNNING:
            logger.warning("[%s] 上一轮仍在运行，本次跳过", self.name)
            return CollectorRunResult(skipped=True)
        self.state = CollectorState.RUNNING

        options = options or CollectOptions()
        result = CollectorRunResult()
        try:
            units = self.units()
            logger.info("[%s] 开始采集，共 %d 个单元", self.name, len(units))
            for unit in units:
                try:
                    unit_result = await self.collect_unit(unit, options)
                except Exception as e:
                    msg = str(e) or type(e).__name__
                    logger.error("[%s] 单元 %s 失败: %s", self.name, unit, msg)
                    unit_result = UnitResult(unit=unit, errors=[msg])
                else:
                    logger.info("[%s] 单元 %s: found=%d new=%d cached=%d",
                                self.name, unit, unit_result.items_found,
                                unit_result.items_new, unit_result.items_cached)
                result.add_unit(unit_result)
            logger.info("[%s] 采集完成: found=%d new=%d errors=%d",
                        self.name, result.items_found, result.items_new, len(result.errors))
        finally:
            self.state = CollectorState.IDLE
        return result

    # ---------- 流水线 ----------
    async def run_pipeline(
        self,
        unit: str,
        items: List[NormalizedItem],
        cursor_key: Optional[str],
        options: CollectOptions,
    ) -> UnitResult:
        """缓存去重 -> 写库 -> 打标签 -> 推进游标"""
        if options.max_items is not None:
            items = items[: options.max_items]
        res = UnitResult(unit=unit, items_found=len(items))
        if not items:
            return res

        fresh, res.items_cached = self.cache.filter_new(items)
        try:
            res.items_new = await self._persist(fresh)
        except PersistenceError as e:
            self.cache.discard(fresh)
            res.errors.append(str(e))
            return res

        if cursor_key:
            res.last_cursor = await self._advance_cursor(cursor_key, items)
        return res

    async def _persist(self, items: List[NormalizedItem]) -> int:
        if not items:
            return 0
        existing = await self.store.find_existing_by_canonical_urls(i.url for i in items)
        fresh = [i for i in items if i.url not in existing]
        if not fresh:
            return 0
        inserted = await self.store.insert_ignoring_duplicates(fresh)
        await self._tag_items(fresh)
        return inserted

    async def _tag_items(self, items: Iterable[NormalizedItem]) -> None:
        """打标签失败只记日志，不影响条目本身"""
        for item in items:
            try:
                item_id = await self.store.get_item_id_by_url(item.url)
                if item_id is None:
                    continue
                tickers = self.tagger.extract_tickers(item.title) + self.extra_tickers(item)
                for symbol in dict.fromkeys(tickers):
                    await self.store.link_if_ticker_exists(item_id, symbol, self.ticker_confidence)
                tags = self.tagger.extract_tags(item.title) + self.extra_tags(item)
                for tag in dict.fromkeys(tags):
                    tag_id = await self.store.find_or_create_tag(tag)
                    await self.store.link_tag(item_id, tag_id)
            except Exception as e:
                logger.warning("[%s] 打标签失败 %s: %s", self.name, item.url, e)

    async def _advance_cursor(self, key: str, items: List[NormalizedItem]) -> Optional[str]:
        """取本批最大发布时间作为新游标；不保证上游有序，也不做单调校验"""
        latest = max((i.published_at for i in items), default=None)
        if latest is None:
            return None
        value = to_iso(latest)
        await self.cursors.set(self.source_type, key, value)
        return value

    # ---------- 启动回灌 ----------
    async def hydrate_cache(self, limit: int = 5000, hours: float = 24) -> int:
        since = utcnow() - timedelta(hours=hours)
        try:
            rows = await self.store.recent_items(self.source_type, since=since, limit=limit)
        except PersistenceError as e:
            logger.warning("[%s] 从库里回灌缓存失败: %s", self.name, e)
            return 0
        return self.cache.add_many(rows)

    def parse_failed(self, unit: str, err: ParseError) -> UnitResult:
        logger.warning("[%s] 单元 %s 响应解析失败，按 0 条处理: %s", self.name, unit, err)
        return UnitResult(unit=unit)
