# -*- coding: utf-8 -*-
"""
内存里的运行台账：每个任务一条 RunStatus，启动时全部建好，只在开始/结束时变更。
健康判定：从没跑过算健康；跑过的话，30 分钟内必须有一次成功。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from ..models import CollectorJob, JobResult, RunStats, RunStatus
from ..utils import to_iso, utcnow

STALE_AFTER = timedelta(minutes=30)


class RunTracker:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._status: Dict[CollectorJob, RunStatus] = {job: RunStatus(collector=job) for job in CollectorJob}

    def get_status(self, job: CollectorJob) -> RunStatus:
        status = self._status.get(job)
        if status is None:
            status = self._status[job] = RunStatus(collector=job)
        return status

    def all_statuses(self) -> List[RunStatus]:
        return list(self._status.values())

    def mark_started(self, job: CollectorJob) -> None:
        status = self.get_status(job)
        status.is_running = True
        status.last_run_at = self._clock()

    def mark_completed(self, job: CollectorJob, result: JobResult) -> None:
        status = self.get_status(job)
        status.is_running = False
        status.stats.total_runs += 1
        if result.success:
            status.last_success_at = self._clock()
            status.last_error = None
            status.stats.successful_runs += 1
            status.stats.items_collected += result.items_new or 0
        else:
            status.last_error = result.error or "Unknown error"
            status.stats.failed_runs += 1

    def set_next_run_at(self, job: CollectorJob, when: datetime) -> None:
        self.get_status(job).next_run_at = when

    def is_healthy(self, job: CollectorJob) -> bool:
        status = self.get_status(job)
        if status.stats.total_runs == 0:
            return True
        return status.last_success_at is not None and status.last_success_at > self._clock() - STALE_AFTER

    def health_summary(self) -> Dict[str, Any]:
        collectors: Dict[str, Dict[str, Any]] = {}
        for job, status in self._status.items():
            collectors[job.value] = {
                "healthy": self.is_healthy(job),
                "last_success_at": to_iso(status.last_success_at) if status.last_success_at else None,
                "last_error": status.last_error,
            }
        return {
            "healthy": all(c["healthy"] for c in collectors.values()),
            "collectors": collectors,
        }

    def reset_stats(self, job: CollectorJob) -> None:
        self.get_status(job).stats = RunStats()

    def reset_all_stats(self) -> None:
        for job in CollectorJob:
            self.reset_stats(job)
