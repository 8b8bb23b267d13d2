# -*- coding: utf-8 -*-
"""
配置加载：ops/config.yml 可选，不存在或读取失败就用 DEFAULT_CFG。
合并规则：最外层按段浅合并，sources 下按源再浅合并一次；最后叠加环境变量。
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CFG_PATH = ROOT / "ops" / "config.yml"

DEFAULT_CFG: Dict[str, Any] = {
    "storage": {
        "db_path": str(ROOT / "ingest.db"),
        "hydrate_hours": 24,
        "hydrate_limit": 5000,
    },
    "scheduler": {
        "use_redis_queue": False,
        "redis_url": "redis://localhost:6379",
        "queue_prefix": "ingest:collectors",
        "poll_interval_sec": 1.0,
    },
    "sources": {
        "gdelt": {
            "enabled": True,
            "queries": ["Tesla", "Fed", "BTC", "SP500"],
            "interval_sec": 180,
            "max_records": 100,
            "source_language": "english",
            "max_retries": 3,
            "retry_base_delay": 1.0,
            "timeout": 30.0,
        },
        "sec_rss": {
            "enabled": True,
            "feeds": [],          # 空 = 用内置的两个 EDGAR getcurrent feed
            "interval_sec": 900,
            "user_agent": "FinansTakip/1.0 (contact@example.com)",
            "max_retries": 3,
            "retry_base_delay": 1.0,
            "timeout": 30.0,
        },
        "google_news": {
            "enabled": False,
            "queries": ["BIST", "TUPRS", "BTC", "SP500"],
            "interval_sec": 600,
            "hl": "en-US",
            "gl": "US",
            "ceid": "US:en",
            "min_interval_sec": 2.0,
            "max_retries": 3,
            "retry_base_delay": 1.0,
            "timeout": 30.0,
        },
        "kap": {
            "enabled": True,
            "base_url": "https://www.kap.org.tr",
            "query_path": "",     # 空 = 未配置，采集器不启用
            "method": "POST",
            "headers": {},
            "body": {},
            "query_params": None,
            "response_type": "auto",
            "interval_sec": 180,
            "min_interval_sec": 5.0,
            "max_retries": 3,
            "retry_base_delay": 2.0,
            "timeout": 30.0,
        },
    },
    "tagging": {
        "aliases": {},
        "keywords": {},
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: Dict[str, Any], data: Mapping[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for section, value in (data or {}).items():
        if section == "sources" and isinstance(value, dict):
            for name, src in value.items():
                out["sources"][name] = {**out["sources"].get(name, {}), **(src or {})}
        elif isinstance(value, dict) and isinstance(out.get(section), dict):
            out[section] = {**out[section], **value}
        else:
            out[section] = value
    return out


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_list(value: str):
    return [v.strip() for v in value.split(",") if v.strip()]


# 环境变量 -> (段, 源或 None, 键, 转换)
ENV_OVERRIDES = {
    "DB_PATH": ("storage", None, "db_path", str),
    "USE_REDIS_QUEUE": ("scheduler", None, "use_redis_queue", _as_bool),
    "REDIS_URL": ("scheduler", None, "redis_url", str),
    "GDELT_ENABLED": ("sources", "gdelt", "enabled", _as_bool),
    "GDELT_QUERIES": ("sources", "gdelt", "queries", _as_list),
    "SEC_RSS_ENABLED": ("sources", "sec_rss", "enabled", _as_bool),
    "SEC_RSS_FEEDS": ("sources", "sec_rss", "feeds", _as_list),
    "APP_UA": ("sources", "sec_rss", "user_agent", str),
    "ENABLE_GOOGLE_NEWS_RSS": ("sources", "google_news", "enabled", _as_bool),
    "GOOGLE_NEWS_QUERIES": ("sources", "google_news", "queries", _as_list),
    "GOOGLE_NEWS_HL": ("sources", "google_news", "hl", str),
    "GOOGLE_NEWS_GL": ("sources", "google_news", "gl", str),
    "GOOGLE_NEWS_CEID": ("sources", "google_news", "ceid", str),
    "KAP_ENABLED": ("sources", "kap", "enabled", _as_bool),
    "KAP_BASE_URL": ("sources", "kap", "base_url", str),
    "KAP_QUERY_PATH": ("sources", "kap", "query_path", str),
    "KAP_METHOD": ("sources", "kap", "method", str),
    # 这三个保持 JSON 字符串，由采集器解析，失败时回退默认值
    "KAP_HEADERS": ("sources", "kap", "headers", str),
    "KAP_BODY": ("sources", "kap", "body", str),
    "KAP_QUERY_PARAMS": ("sources", "kap", "query_params", str),
    "KAP_RESPONSE_TYPE": ("sources", "kap", "response_type", str),
}


def apply_env(cfg: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    for var, (section, source, key, conv) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        target = cfg[section][source] if source else cfg[section]
        target[key] = conv(raw)
    return cfg


def load_cfg(
    path: Union[str, Path, None] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """ops/config.yml 可选；不存在就用默认。"""
    cfg_path = Path(path) if path else DEFAULT_CFG_PATH
    cfg = copy.deepcopy(DEFAULT_CFG)
    if cfg_path.exists():
        try:
            data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                raise ValueError("top level must be a mapping")
            cfg = _merge(DEFAULT_CFG, data)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("[config] 读取 %s 失败，使用默认。err=%s", cfg_path, e)
    return apply_env(cfg, environ)
