# -*- coding: utf-8 -*-
"""
ingest_hub/main.py
串起：存储 -> 各采集器 -> 执行器 + 运行台账 -> 调度后端
python -m ingest_hub.main [--run-seconds N] [--config PATH] [--trigger JOB]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from .collectors.base import BaseCollector
from .collectors.gdelt import GdeltCollector
from .collectors.google_news import GoogleNewsCollector
from .collectors.kap import KapCollector
from .collectors.sec_rss import SecRssCollector
from .config import ROOT, load_cfg
from .fetcher import close_client
from .jobs.executor import CollectorExecutor
from .jobs.run_tracker import RunTracker
from .jobs.scheduler import JobScheduler
from .models import CollectorJob
from .storage import NewsStore
from .tagging import Tagger

logger = logging.getLogger("ingest_hub")


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def build_collectors(store: NewsStore, cfg: dict) -> Dict[CollectorJob, BaseCollector]:
    """启动时一次性建好 任务 -> 采集器 的注册表"""
    sources = cfg.get("sources") or {}
    tagger = Tagger.from_cfg(cfg.get("tagging") or {})
    return {
        CollectorJob.GDELT: GdeltCollector(store, sources.get("gdelt"), tagger=tagger),
        CollectorJob.SEC_RSS: SecRssCollector(store, sources.get("sec_rss"), tagger=tagger),
        CollectorJob.GOOGLE_NEWS: GoogleNewsCollector(store, sources.get("google_news"), tagger=tagger),
        CollectorJob.KAP: KapCollector(store, sources.get("kap"), tagger=tagger),
    }


async def hydrate_caches(collectors: Dict[CollectorJob, BaseCollector], cfg: dict) -> None:
    limit = int(cfg["storage"].get("hydrate_limit", 5000))
    hours = float(cfg["storage"].get("hydrate_hours", 24))
    for collector in collectors.values():
        if collector.is_enabled():
            await collector.hydrate_cache(limit=limit, hours=hours)


def _db_path(cfg: dict) -> Path:
    p = Path(cfg["storage"]["db_path"])
    return p if p.is_absolute() else ROOT / p


async def main(run_seconds: int = 0, config_path: Optional[str] = None, trigger: Optional[str] = None):
    cfg = load_cfg(config_path)
    setup_logging(cfg.get("logging", {}).get("level", "INFO"))

    store = await NewsStore.open(_db_path(cfg))
    collectors = build_collectors(store, cfg)
    tracker = RunTracker()
    executor = CollectorExecutor(collectors, tracker)
    scheduler = JobScheduler.from_cfg(cfg, executor, tracker)

    logger.info("[main] 启用的采集器: %s", ", ".join(j.value for j in executor.enabled_jobs()) or "(无)")
    await hydrate_caches(collectors, cfg)

    try:
        await scheduler.start()
        if not scheduler.is_active():
            logger.error("[main] 调度后端未能启动")

        if trigger and scheduler.is_active():
            result = await scheduler.trigger_job(CollectorJob(trigger))
            logger.info("[main] 手动触发 %s -> %s", trigger, result)

        logger.info("[main] running for %ss …", run_seconds or "∞")
        if run_seconds and run_seconds > 0:
            await asyncio.sleep(run_seconds)
        else:
            # 0 或负数 => 永久运行
            await asyncio.Event().wait()
    except asyncio.CancelledError:
        logger.info("[main] cancelled")
        raise
    finally:
        await scheduler.stop()
        await close_client()
        await store.close()
        logger.info("[main] finished, health=%s", scheduler.health_summary()["healthy"])


def cli() -> None:
    parser = argparse.ArgumentParser(description="multi-source news collector")
    parser.add_argument("--run-seconds", type=int, default=0)
    parser.add_argument("--config", default=None, help="YAML 配置路径，默认 ops/config.yml")
    parser.add_argument("--trigger", default=None, choices=[j.value for j in CollectorJob],
                        help="启动后立即手动触发一个任务")
    args = parser.parse_args()
    asyncio.run(main(run_seconds=args.run_seconds, config_path=args.config, trigger=args.trigger))


if __name__ == "__main__":
    cli()
