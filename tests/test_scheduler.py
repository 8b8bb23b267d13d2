# -*- coding: utf-8 -*-
"""
tests/test_scheduler.py
调度：定时后端（APScheduler）、Redis 队列后端（内存替身 + 可控时钟）、门面的后端选择与手动触发。
"""

import asyncio
from datetime import datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ingest_hub.errors import SchedulerNotActive
from ingest_hub.jobs.executor import CollectorExecutor
from ingest_hub.jobs.queue_backend import QueueScheduler
from ingest_hub.jobs.run_tracker import RunTracker
from ingest_hub.jobs.scheduler import JobScheduler, collector_intervals
from ingest_hub.jobs.timer_backend import TimerScheduler
from ingest_hub.models import CollectorJob, CollectorRunResult

GDELT = CollectorJob.GDELT.value


class CountingCollector:
    def __init__(self, enabled=True):
        self.enabled = enabled
        self.calls = 0

    def is_enabled(self):
        return self.enabled

    async def collect(self, options=None):
        self.calls += 1
        return CollectorRunResult(items_found=1, items_new=1)


@pytest.fixture
def gdelt_only():
    collector = CountingCollector()
    tracker = RunTracker()
    executor = CollectorExecutor({
        CollectorJob.GDELT: collector,
        CollectorJob.KAP: CountingCollector(enabled=False),
    }, tracker)
    return collector, executor, tracker


# -------------------- 定时后端 --------------------

async def test_timer_registers_enabled_jobs(gdelt_only):
    collector, executor, tracker = gdelt_only
    timer = TimerScheduler(executor, tracker, {CollectorJob.GDELT: 3600})
    await timer.start()
    try:
        assert timer.active
        assert await timer.info() == {"registered_jobs": [GDELT]}
        next_run = tracker.get_status(CollectorJob.GDELT).next_run_at
        assert next_run is not None and next_run > datetime.now(timezone.utc)
        assert tracker.get_status(CollectorJob.KAP).next_run_at is None
    finally:
        await timer.stop()
    assert not timer.active


async def test_timer_trigger_runs_immediately(gdelt_only):
    collector, executor, tracker = gdelt_only
    timer = TimerScheduler(executor, tracker, {CollectorJob.GDELT: 3600})
    await timer.start()
    try:
        result = await timer.trigger_job(CollectorJob.GDELT)
        assert result.success and result.items_new == 1
        await timer._fire(CollectorJob.GDELT)
    finally:
        await timer.stop()
    assert collector.calls == 2
    assert tracker.get_status(CollectorJob.GDELT).stats.total_runs == 2


# -------------------- 队列后端 --------------------

def queue(fake_redis, executor, tracker, clock, **kwargs):
    return QueueScheduler(fake_redis, executor, tracker, {CollectorJob.GDELT: 60},
                          clock=clock, poll_interval=0.01, **kwargs)


async def test_queue_register_is_idempotent(fake_redis, gdelt_only, clock):
    _, executor, tracker = gdelt_only
    await fake_redis.zadd("ingest:collectors:repeat", {CollectorJob.KAP.value: 1.0})
    q = queue(fake_redis, executor, tracker, clock)
    await q.register_jobs()
    await q.register_jobs()
    # 旧定义被清掉，只剩当前启用的任务
    assert fake_redis.zsets["ingest:collectors:repeat"] == {GDELT: 1060.0}
    assert tracker.get_status(CollectorJob.GDELT).next_run_at == datetime.fromtimestamp(1060, tz=timezone.utc)


async def test_queue_tick_runs_due_jobs(fake_redis, gdelt_only, clock):
    collector, executor, tracker = gdelt_only
    q = queue(fake_redis, executor, tracker, clock)
    await q.register_jobs()

    assert await q.tick() is False
    assert collector.calls == 0

    clock.advance(60)
    assert await q.tick() is True
    assert collector.calls == 1
    assert await fake_redis.zscore("ingest:collectors:repeat", GDELT) == 1120.0
    assert tracker.get_status(CollectorJob.GDELT).next_run_at == datetime.fromtimestamp(1120, tz=timezone.utc)
    assert await q.info() == {"waiting": 0, "repeatable": 1}


async def test_queue_does_not_enqueue_twice(fake_redis, gdelt_only, clock):
    _, executor, tracker = gdelt_only
    q = queue(fake_redis, executor, tracker, clock)
    await q.register_jobs()
    await fake_redis.rpush("ingest:collectors:wait", GDELT)
    clock.advance(61)
    assert await q.promote_due() == 1
    assert await fake_redis.llen("ingest:collectors:wait") == 1


async def test_queue_manual_trigger_is_queued(fake_redis, gdelt_only, clock):
    collector, executor, tracker = gdelt_only
    q = queue(fake_redis, executor, tracker, clock)
    await q.register_jobs()
    assert await q.trigger_job(CollectorJob.GDELT) is None
    assert collector.calls == 0
    assert await q.info() == {"waiting": 1, "repeatable": 1}
    assert await q.tick() is True
    assert collector.calls == 1


async def test_queue_ignores_unknown_entries(fake_redis, gdelt_only, clock):
    collector, executor, tracker = gdelt_only
    q = queue(fake_redis, executor, tracker, clock)
    await fake_redis.rpush("ingest:collectors:wait", "collector:nope")
    assert await q.tick() is True
    assert collector.calls == 0


async def test_queue_start_and_stop(fake_redis, gdelt_only, clock):
    _, executor, tracker = gdelt_only
    q = queue(fake_redis, executor, tracker, clock, owns_connection=True)
    await q.start()
    assert q.active
    await asyncio.sleep(0.03)
    await q.stop()
    assert not q.active
    assert fake_redis.closed


async def test_queue_drops_stale_repeat_members(fake_redis, gdelt_only, clock):
    collector, executor, tracker = gdelt_only
    await fake_redis.zadd("ingest:collectors:repeat", {"collector:legacy": 0.0})
    q = queue(fake_redis, executor, tracker, clock)
    await q.register_jobs()
    assert await q.promote_due() == 0
    assert "collector:legacy" not in fake_redis.zsets["ingest:collectors:repeat"]

    await q.trigger_job(CollectorJob.GDELT)
    assert await q.tick() is True
    assert collector.calls == 1
    assert await q.info() == {"waiting": 0, "repeatable": 1}


async def test_queue_worker_keeps_running_with_stale_members(fake_redis, gdelt_only, clock):
    collector, executor, tracker = gdelt_only
    await fake_redis.zadd("ingest:collectors:repeat", {"collector:legacy": 0.0})
    q = queue(fake_redis, executor, tracker, clock)
    await q.start()
    try:
        await q.trigger_job(CollectorJob.GDELT)
        for _ in range(100):
            if collector.calls:
                break
            await asyncio.sleep(0.01)
        assert collector.calls == 1
        assert not q._worker.done()
    finally:
        await q.stop()


async def test_queue_worker_survives_unexpected_errors(fake_redis, gdelt_only, clock, monkeypatch):
    _, executor, tracker = gdelt_only
    polls = []
    original = fake_redis.zrangebyscore

    async def flaky(key, low, high):
        polls.append(key)
        if len(polls) == 1:
            raise RuntimeError("unexpected reply")
        return await original(key, low, high)

    monkeypatch.setattr(fake_redis, "zrangebyscore", flaky)
    q = queue(fake_redis, executor, tracker, clock)
    await q.start()
    try:
        for _ in range(100):
            if len(polls) >= 2:
                break
            await asyncio.sleep(0.01)
        assert len(polls) >= 2
        assert q.active
        assert not q._worker.done()
    finally:
        await q.stop()


class UnreachableRedis:
    async def zrem(self, *args):
        raise RedisConnectionError("Connection refused")


async def test_queue_start_failure_leaves_backend_inactive(gdelt_only, clock):
    _, executor, tracker = gdelt_only
    q = QueueScheduler(UnreachableRedis(), executor, tracker, clock=clock)
    await q.start()
    assert not q.active

    facade = JobScheduler(q, tracker, use_redis_queue=True)
    assert facade.backend_type() == "none"
    assert not facade.is_active()
    with pytest.raises(SchedulerNotActive, match="No active scheduler"):
        await facade.trigger_job(CollectorJob.GDELT)
    assert await facade.scheduler_info() == {"type": "none", "active": False, "use_redis_queue": True}


# -------------------- 门面 --------------------

async def test_facade_with_timer_backend(gdelt_only):
    collector, executor, tracker = gdelt_only
    facade = JobScheduler.from_cfg({"scheduler": {"use_redis_queue": False}}, executor, tracker)
    assert isinstance(facade.backend, TimerScheduler)
    assert facade.backend_type() == "none"

    await facade.start()
    try:
        assert facade.backend_type() == "timer"
        result = await facade.trigger_job(CollectorJob.GDELT)
        assert result.success
        info = await facade.scheduler_info()
        assert info["type"] == "timer"
        assert info["backend"] == {"registered_jobs": [GDELT]}
        assert facade.health_summary()["healthy"] is True
        assert len(facade.collector_statuses()) == len(CollectorJob)
    finally:
        await facade.stop()
    assert facade.backend_type() == "none"


async def test_facade_selects_queue_backend(gdelt_only):
    _, executor, tracker = gdelt_only
    cfg = {
        "scheduler": {"use_redis_queue": True, "redis_url": "redis://localhost:6379/0", "queue_prefix": "test:q"},
        "sources": {"gdelt": {"interval_sec": 90}},
    }
    facade = JobScheduler.from_cfg(cfg, executor, tracker)
    try:
        assert isinstance(facade.backend, QueueScheduler)
        assert facade.backend.repeat_key == "test:q:repeat"
        assert facade.backend.intervals[CollectorJob.GDELT] == 90
    finally:
        await facade.backend.redis.aclose()


def test_collector_intervals():
    cfg = {"sources": {"gdelt": {"interval_sec": 120}, "kap": {}, "sec_rss": None}}
    assert collector_intervals(cfg) == {CollectorJob.GDELT: 120}
    assert collector_intervals({}) == {}
