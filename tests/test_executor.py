# -*- coding: utf-8 -*-
"""
tests/test_executor.py
执行器：永不抛异常，把采集结果/异常统一转成 JobResult 并记入台账。
"""

from ingest_hub.jobs.executor import CollectorExecutor
from ingest_hub.jobs.run_tracker import RunTracker
from ingest_hub.models import CollectorJob, CollectorRunResult


class StubCollector:
    def __init__(self, result=None, exc=None, enabled=True):
        self.result = result or CollectorRunResult()
        self.exc = exc
        self.enabled = enabled
        self.calls = 0

    def is_enabled(self):
        return self.enabled

    async def collect(self, options=None):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.result


async def test_success_is_recorded():
    tracker = RunTracker()
    stub = StubCollector(CollectorRunResult(items_found=4, items_new=2))
    executor = CollectorExecutor({CollectorJob.GDELT: stub}, tracker)

    result = await executor.execute(CollectorJob.GDELT)
    assert result.success
    assert (result.items_found, result.items_new) == (4, 2)
    assert result.duration_ms >= 0
    status = tracker.get_status(CollectorJob.GDELT)
    assert status.stats.successful_runs == 1
    assert status.stats.items_collected == 2
    assert not status.is_running


async def test_partial_unit_errors_still_count_as_success():
    tracker = RunTracker()
    stub = StubCollector(CollectorRunResult(items_new=1, errors=["HTTP 404: Not Found"]))
    executor = CollectorExecutor({CollectorJob.SEC_RSS: stub}, tracker)
    assert (await executor.execute(CollectorJob.SEC_RSS)).success


async def test_collector_exception_becomes_failed_result():
    tracker = RunTracker()
    executor = CollectorExecutor({CollectorJob.KAP: StubCollector(exc=RuntimeError("boom"))}, tracker)
    result = await executor.execute(CollectorJob.KAP)
    assert not result.success
    assert result.error == "boom"
    status = tracker.get_status(CollectorJob.KAP)
    assert status.last_error == "boom"
    assert status.stats.failed_runs == 1
    assert not status.is_running


async def test_unknown_job_is_reported_not_raised():
    tracker = RunTracker()
    executor = CollectorExecutor({}, tracker)
    result = await executor.execute(CollectorJob.GOOGLE_NEWS)
    assert not result.success
    assert result.error == "Unknown collector job: collector:google-news"


def test_enabled_jobs():
    executor = CollectorExecutor({
        CollectorJob.GDELT: StubCollector(),
        CollectorJob.KAP: StubCollector(enabled=False),
    }, RunTracker())
    assert executor.enabled_jobs() == [CollectorJob.GDELT]
    assert not executor.is_enabled(CollectorJob.SEC_RSS)
