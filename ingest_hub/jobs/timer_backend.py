# -*- coding: utf-8 -*-
"""
进程内定时后端：APScheduler AsyncIOScheduler，每个启用的采集任务一个 IntervalTrigger。
每次触发后按 APScheduler 给出的下次时间更新台账。
"""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..models import COLLECTOR_INTERVALS, CollectorJob, JobResult
from .executor import CollectorExecutor
from .run_tracker import RunTracker

logger = logging.getLogger(__name__)


def _job_id(job: CollectorJob) -> str:
    return f"timer-{job.value}"


class TimerScheduler:
    backend_type = "timer"

    def __init__(
        self,
        executor: CollectorExecutor,
        tracker: RunTracker,
        intervals: Optional[Dict[CollectorJob, int]] = None,
    ):
        self.executor = executor
        self.tracker = tracker
        self.intervals = {**COLLECTOR_INTERVALS, **(intervals or {})}
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.active = False

    async def start(self) -> None:
        if self.active:
            return
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        jobs = self.executor.enabled_jobs()
        for job in jobs:
            self.scheduler.add_job(
                self._fire,
                IntervalTrigger(seconds=self.intervals[job], timezone=timezone.utc),
                args=[job],
                id=_job_id(job),
                name=job.value,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
        self.scheduler.start()
        self.active = True
        for job in jobs:
            self._refresh_next_run(job)
        logger.info("[timer] 定时调度已启动，共 %d 个任务: %s",
                    len(jobs), ", ".join(j.value for j in jobs))

    async def stop(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.active = False
        logger.info("[timer] 定时调度已停止")

    def _refresh_next_run(self, job: CollectorJob) -> None:
        if self.scheduler is None:
            return
        aps_job = self.scheduler.get_job(_job_id(job))
        next_run = getattr(aps_job, "next_run_time", None) if aps_job else None
        if next_run is not None:
            self.tracker.set_next_run_at(job, next_run)

    async def _fire(self, job: CollectorJob) -> None:
        await self.executor.execute(job)
        self._refresh_next_run(job)

    async def trigger_job(self, job: CollectorJob) -> JobResult:
        """手动触发：直接执行，不经过定时器"""
        logger.info("[timer] 手动触发 %s", job.value)
        result = await self.executor.execute(job)
        self._refresh_next_run(job)
        return result

    async def info(self) -> Dict[str, object]:
        jobs = self.scheduler.get_jobs() if self.scheduler is not None else []
        return {"registered_jobs": [j.name for j in jobs]}
