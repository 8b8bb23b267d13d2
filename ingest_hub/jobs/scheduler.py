# -*- coding: utf-8 -*-
"""
调度门面：进程启动时按 scheduler.use_redis_queue 选定一个后端，运行期不切换。
上层只依赖这里的接口，不关心是队列还是定时器。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from ..errors import SchedulerNotActive
from ..models import CollectorJob, JobResult, RunStatus
from .executor import CollectorExecutor
from .queue_backend import QueueScheduler
from .run_tracker import RunTracker
from .timer_backend import TimerScheduler

logger = logging.getLogger(__name__)

Backend = Union[QueueScheduler, TimerScheduler]


class JobScheduler:
    def __init__(self, backend: Backend, tracker: RunTracker, *, use_redis_queue: bool):
        self.backend = backend
        self.tracker = tracker
        self.use_redis_queue = use_redis_queue

    @classmethod
    def from_cfg(cls, cfg: Dict[str, Any], executor: CollectorExecutor, tracker: RunTracker) -> "JobScheduler":
        sched_cfg = cfg.get("scheduler") or {}
        use_redis = bool(sched_cfg.get("use_redis_queue", False))
        intervals = collector_intervals(cfg)
        if use_redis:
            backend: Backend = QueueScheduler.from_url(
                sched_cfg.get("redis_url", "redis://localhost:6379"),
                executor, tracker, intervals=intervals,
                prefix=sched_cfg.get("queue_prefix", "ingest:collectors"),
                poll_interval=float(sched_cfg.get("poll_interval_sec", 1.0)),
            )
        else:
            backend = TimerScheduler(executor, tracker, intervals)
        logger.info("[scheduler] 使用 %s 后端", backend.backend_type)
        return cls(backend, tracker, use_redis_queue=use_redis)

    async def start(self) -> None:
        await self.backend.start()

    async def stop(self) -> None:
        await self.backend.stop()

    def backend_type(self) -> str:
        if self.backend.active:
            return self.backend.backend_type
        return "none"

    def is_active(self) -> bool:
        return self.backend_type() != "none"

    async def trigger_job(self, job: CollectorJob) -> Optional[JobResult]:
        """队列后端返回 None（已入队）；定时后端直接执行并返回结果"""
        if not self.is_active():
            raise SchedulerNotActive("No active scheduler")
        return await self.backend.trigger_job(job)

    def collector_statuses(self) -> List[RunStatus]:
        return self.tracker.all_statuses()

    def health_summary(self) -> Dict[str, Any]:
        return self.tracker.health_summary()

    async def scheduler_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            "type": self.backend_type(),
            "active": self.is_active(),
            "use_redis_queue": self.use_redis_queue,
        }
        if self.is_active():
            info["backend"] = await self.backend.info()
        return info


_SOURCE_JOBS = {
    "gdelt": CollectorJob.GDELT,
    "sec_rss": CollectorJob.SEC_RSS,
    "google_news": CollectorJob.GOOGLE_NEWS,
    "kap": CollectorJob.KAP,
}


def collector_intervals(cfg: Dict[str, Any]) -> Dict[CollectorJob, int]:
    """sources.<name>.interval_sec -> {任务: 秒}"""
    out: Dict[CollectorJob, int] = {}
    for name, job in _SOURCE_JOBS.items():
        interval = ((cfg.get("sources") or {}).get(name) or {}).get("interval_sec")
        if interval:
            out[job] = int(interval)
    return out
