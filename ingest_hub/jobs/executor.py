# -*- coding: utf-8 -*-
"""
任务 -> 采集器 的统一调度入口。
execute() 永不抛异常：调用方可能是队列 worker 也可能是定时器回调，都不能被异常带崩。
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List

from ..collectors.base import BaseCollector
from ..models import CollectorJob, JobResult
from .run_tracker import RunTracker

logger = logging.getLogger(__name__)


class CollectorExecutor:
    def __init__(self, collectors: Dict[CollectorJob, BaseCollector], tracker: RunTracker):
        self.collectors = dict(collectors)
        self.tracker = tracker

    def is_enabled(self, job: CollectorJob) -> bool:
        collector = self.collectors.get(job)
        return bool(collector and collector.is_enabled())

    def enabled_jobs(self) -> List[CollectorJob]:
        return [job for job in CollectorJob if self.is_enabled(job)]

    async def execute(self, job: CollectorJob) -> JobResult:
        start = time.monotonic()
        logger.info("[executor] 执行任务 %s", job.value)
        self.tracker.mark_started(job)
        try:
            collector = self.collectors.get(job)
            if collector is None:
                raise LookupError(f"Unknown collector job: {job.value}")
            outcome = await collector.collect()
            result = JobResult(
                success=True,
                items_found=outcome.items_found,
                items_new=outcome.items_new,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            logger.info("[executor] 任务 %s 完成: new=%d (%dms)", job.value, result.items_new, result.duration_ms)
        except Exception as e:
            msg = str(e) or type(e).__name__
            result = JobResult(success=False, error=msg, duration_ms=int((time.monotonic() - start) * 1000))
            logger.error("[executor] 任务 %s 失败: %s", job.value, msg)
        self.tracker.mark_completed(job, result)
        return result
