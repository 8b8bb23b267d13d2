# -*- coding: utf-8 -*-
"""
models.py
采集核心的数据模型：规范化条目、去重缓存条目、单次运行结果、任务状态。
时间一律用带时区的 UTC datetime。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceType(str, Enum):
    """已知数据源（封闭集合）"""
    GDELT = "GDELT"
    SEC_RSS = "SEC_RSS"
    GOOGLE_NEWS = "GOOGLE_NEWS"
    KAP = "KAP"


@dataclass
class NormalizedItem:
    # 来源与来源内 ID（来源内唯一）
    source: SourceType
    source_id: str

    # 标题、规范化链接（全局唯一，持久层去重键）
    title: str
    url: str

    # 发布时间（UTC）与语言
    published_at: datetime
    language: str = "en"

    summary: Optional[str] = None

    # 原始负载，留档审计用
    raw: Dict[str, Any] = field(default_factory=dict)

    discovered_at: Optional[datetime] = None


@dataclass
class CacheEntry:
    source_id: str
    url: str
    seen_at: float          # 首次见到的时间（秒，时钟由缓存注入）
    published_at: Optional[datetime] = None


@dataclass
class UnitResult:
    """单个逻辑单元（一个 query 或一个 feed）的结果"""
    unit: str
    items_found: int = 0
    items_new: int = 0
    items_cached: int = 0
    errors: List[str] = field(default_factory=list)
    last_cursor: Optional[str] = None


@dataclass
class CollectorRunResult:
    """一次 collect() 的汇总；部分失败也完整保留"""
    items_found: int = 0
    items_new: int = 0
    items_cached: int = 0
    errors: List[str] = field(default_factory=list)
    last_cursor: Optional[str] = None
    units: List[UnitResult] = field(default_factory=list)
    skipped: bool = False   # 重入或未启用时为 True

    def add_unit(self, unit: UnitResult) -> None:
        self.units.append(unit)
        self.items_found += unit.items_found
        self.items_new += unit.items_new
        self.items_cached += unit.items_cached
        self.errors.extend(unit.errors)
        if unit.last_cursor:
            self.last_cursor = unit.last_cursor


@dataclass
class CollectOptions:
    max_items: Optional[int] = None


class CollectorJob(str, Enum):
    GDELT = "collector:gdelt"
    SEC_RSS = "collector:sec-rss"
    KAP = "collector:kap"
    GOOGLE_NEWS = "collector:google-news"


JOB_SOURCES: Dict[CollectorJob, SourceType] = {
    CollectorJob.GDELT: SourceType.GDELT,
    CollectorJob.SEC_RSS: SourceType.SEC_RSS,
    CollectorJob.KAP: SourceType.KAP,
    CollectorJob.GOOGLE_NEWS: SourceType.GOOGLE_NEWS,
}

# 默认轮询间隔（秒），可被配置覆盖
COLLECTOR_INTERVALS: Dict[CollectorJob, int] = {
    CollectorJob.GDELT: 3 * 60,
    CollectorJob.KAP: 3 * 60,
    CollectorJob.GOOGLE_NEWS: 10 * 60,
    CollectorJob.SEC_RSS: 15 * 60,
}


@dataclass
class JobResult:
    success: bool
    items_found: int = 0
    items_new: int = 0
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class RunStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    items_collected: int = 0


@dataclass
class RunStatus:
    collector: CollectorJob
    last_run_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    is_running: bool = False
    next_run_at: Optional[datetime] = None
    stats: RunStats = field(default_factory=RunStats)
