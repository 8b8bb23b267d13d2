# -*- coding: utf-8 -*-
"""
Redis 持久化队列后端（单 worker，并发 1）。
键布局（前缀默认 ingest:collectors）：
  {prefix}:repeat  ZSET  任务名 -> 下次到期的 epoch 秒
  {prefix}:wait    LIST  待执行的任务名
启动时先删掉已知任务的旧定义，再按当前配置重新登记，重启多少次结果都一样。
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..models import COLLECTOR_INTERVALS, CollectorJob
from .executor import CollectorExecutor
from .run_tracker import RunTracker

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "ingest:collectors"


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class QueueScheduler:
    backend_type = "queue"

    def __init__(
        self,
        redis: Redis,
        executor: CollectorExecutor,
        tracker: RunTracker,
        intervals: Optional[Dict[CollectorJob, int]] = None,
        *,
        prefix: str = DEFAULT_PREFIX,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.time,
        owns_connection: bool = False,
    ):
        self.redis = redis
        self.executor = executor
        self.tracker = tracker
        self.intervals = {**COLLECTOR_INTERVALS, **(intervals or {})}
        self.repeat_key = f"{prefix}:repeat"
        self.wait_key = f"{prefix}:wait"
        self.poll_interval = poll_interval
        self._clock = clock
        self._owns_connection = owns_connection
        self._worker: Optional[asyncio.Task] = None
        self.active = False

    @classmethod
    def from_url(cls, url: str, executor: CollectorExecutor, tracker: RunTracker, **kwargs) -> "QueueScheduler":
        return cls(Redis.from_url(url, decode_responses=True), executor, tracker,
                   owns_connection=True, **kwargs)

    def _set_next_run(self, job: CollectorJob, score: float) -> None:
        self.tracker.set_next_run_at(job, datetime.fromtimestamp(score, tz=timezone.utc))

    # ---------- 生命周期 ----------
    async def start(self) -> None:
        if self.active:
            return
        try:
            await self.register_jobs()
        except (RedisError, OSError) as e:
            logger.error("[queue] 初始化 Redis 队列失败: %s", e)
            return
        self._worker = asyncio.create_task(self._worker_loop())
        self.active = True

    async def register_jobs(self) -> None:
        await self.redis.zrem(self.repeat_key, *[job.value for job in CollectorJob])
        now = self._clock()
        jobs = self.executor.enabled_jobs()
        for job in jobs:
            due = now + self.intervals[job]
            await self.redis.zadd(self.repeat_key, {job.value: due})
            self._set_next_run(job, due)
        logger.info("[queue] 队列调度已就绪，共 %d 个任务: %s",
                    len(jobs), ", ".join(j.value for j in jobs))

    async def stop(self) -> None:
        self.active = False
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        if self._owns_connection:
            await self.redis.aclose()
        logger.info("[queue] 队列调度已停止")

    # ---------- worker ----------
    async def _worker_loop(self) -> None:
        try:
            while True:
                try:
                    worked = await self.tick()
                except (RedisError, OSError) as e:
                    logger.error("[queue] 轮询出错: %s", e)
                    worked = False
                except Exception:
                    logger.exception("[queue] worker 本轮异常，继续轮询")
                    worked = False
                if not worked:
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.info("[queue] worker cancelled")
            raise

    async def promote_due(self) -> int:
        """把到期的重复任务挪进等待队列，并把下次到期时间往后推一个周期"""
        now = self._clock()
        due = await self.redis.zrangebyscore(self.repeat_key, "-inf", now)
        promoted = 0
        for member in due:
            name = _text(member)
            try:
                job = CollectorJob(name)
            except ValueError:
                # 旧部署留下的任务定义
                logger.warning("[queue] 删除未知的重复任务 %r", name)
                await self.redis.zrem(self.repeat_key, name)
                continue
            await self.redis.zadd(self.repeat_key, {name: now + self.intervals[job]})
            if await self.redis.lpos(self.wait_key, name) is None:
                await self.redis.rpush(self.wait_key, name)
            promoted += 1
        return promoted

    async def tick(self) -> bool:
        """推进一次：提升到期任务，再取一个执行；有执行返回 True"""
        await self.promote_due()
        raw = await self.redis.lpop(self.wait_key)
        if raw is None:
            return False
        try:
            job = CollectorJob(_text(raw))
        except ValueError:
            logger.warning("[queue] 忽略未知任务 %r", raw)
            return True
        result = await self.executor.execute(job)
        if not result.success:
            logger.error("[queue] 任务 %s 失败: %s", job.value, result.error)
        score = await self.redis.zscore(self.repeat_key, job.value)
        if score is not None:
            self._set_next_run(job, float(score))
        return True

    async def trigger_job(self, job: CollectorJob) -> None:
        """手动触发：只入队，由 worker 串行执行"""
        await self.redis.rpush(self.wait_key, job.value)
        logger.info("[queue] 已手动入队 %s", job.value)

    async def info(self) -> Dict[str, int]:
        return {
            "waiting": int(await self.redis.llen(self.wait_key)),
            "repeatable": int(await self.redis.zcard(self.repeat_key)),
        }
