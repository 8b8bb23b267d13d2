# -*- coding: utf-8 -*-
"""
RSS 2.0 / Atom 解析（feedparser），以及 SEC 与 Google News 两个源的标题/描述辅助函数。
解析失败不抛异常：记一条警告，返回空列表。
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import feedparser

logger = logging.getLogger(__name__)


@dataclass
class FeedEntry:
    title: str
    link: str
    description: str = ""
    published: Optional[datetime.datetime] = None
    guid: str = ""
    categories: Optional[List[str]] = None
    source: str = ""


def _entry_time(entry: Any) -> Optional[datetime.datetime]:
    """published_parsed 优先，其次 updated_parsed；feedparser 给的都是 UTC"""
    for attr in ("published_parsed", "updated_parsed"):
        parsed = entry.get(attr)
        if parsed:
            try:
                return datetime.datetime(*parsed[:6], tzinfo=datetime.timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


def parse_feed(text: str, source_name: str = "rss") -> List[FeedEntry]:
    """
    解析 RSS/Atom 文本，返回 FeedEntry 列表（可能为空）。
    标题或链接缺失的条目直接丢弃。
    """
    feed = feedparser.parse(text)
    entries = feed.get("entries", [])
    if feed.get("bozo") and not entries:
        logger.warning("[%s] feed 解析失败: %s", source_name, feed.get("bozo_exception"))
        return []

    out: List[FeedEntry] = []
    for entry in entries:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or "").strip()
        if not title or not link:
            continue
        src = entry.get("source") or {}
        out.append(FeedEntry(
            title=title,
            link=link,
            description=entry.get("summary") or entry.get("description") or "",
            published=_entry_time(entry),
            guid=entry.get("id") or "",
            categories=[t.get("term") for t in entry.get("tags", []) if t.get("term")] or None,
            source=src.get("title", "") if isinstance(src, dict) else str(src),
        ))
    return out


# -------------------- SEC 申报标题 --------------------

_FILING_PATTERNS = [
    (re.compile(r"\b8-K\b", re.I), "8-K"),
    (re.compile(r"\b10-K\b", re.I), "10-K"),
    (re.compile(r"\b10-Q\b", re.I), "10-Q"),
    (re.compile(r"\bForm 4\b|\b4\s*-\s*", re.I), "4"),
    (re.compile(r"\bS-1\b", re.I), "S-1"),
    (re.compile(r"\bS-3\b", re.I), "S-3"),
    (re.compile(r"\b13F\b", re.I), "13F"),
    (re.compile(r"\b13D\b", re.I), "13D"),
    (re.compile(r"\b13G\b", re.I), "13G"),
    (re.compile(r"\bDEF 14A\b", re.I), "DEF 14A"),
    (re.compile(r"\b6-K\b", re.I), "6-K"),
    (re.compile(r"\b20-F\b", re.I), "20-F"),
]
# "8-K - COMPANY NAME (0000123456)"
_COMPANY_RE = re.compile(r"^[\w\-/]+\s*-\s*(.+?)(?:\s*\((\d+)\))?$")
_TICKER_RE = re.compile(r"\(([A-Z]{1,5})\)")


@dataclass
class FilingInfo:
    type: str = "OTHER"
    company_name: Optional[str] = None
    cik: Optional[str] = None
    ticker: Optional[str] = None


def extract_filing_type(title: str) -> FilingInfo:
    info = FilingInfo()
    if not title:
        return info
    for pattern, ftype in _FILING_PATTERNS:
        if pattern.search(title):
            info.type = ftype
            break
    m = _COMPANY_RE.match(title)
    if m:
        info.company_name = m.group(1).strip()
        info.cik = m.group(2)
    m = _TICKER_RE.search(title)
    if m:
        info.ticker = m.group(1)
    return info


def filing_tags(filing_type: str) -> List[str]:
    tags = ["sec-filing"]
    if filing_type in ("8-K", "10-K", "10-Q"):
        tags.append("earnings")
    if filing_type in ("4", "13D", "13G", "13F"):
        tags.append("insider")
    if filing_type in ("S-1", "S-3"):
        tags.append("ipo")
    return tags


# -------------------- Google News --------------------

GOOGLE_NEWS_BASE = "https://news.google.com/rss/search"
_ANCHOR_TEXT_RE = re.compile(r"<a[^>]*>([^<]+)</a>", re.I)
_HREF_RE = re.compile(r"""href=["']([^"']+)["']""", re.I)
_TURKISH_CHARS_RE = re.compile(r"[ğüşıöçĞÜŞİÖÇ]")


def build_google_news_url(query: str, hl: str = "en-US", gl: str = "US", ceid: str = "US:en") -> str:
    return f"{GOOGLE_NEWS_BASE}?q={quote(query, safe='')}&hl={hl}&gl={gl}&ceid={ceid}"


def extract_source_info(description: str) -> Dict[str, Optional[str]]:
    """描述里通常是 <a href="原文">媒体名</a>"""
    info: Dict[str, Optional[str]] = {"name": "", "original_url": None}
    if not description:
        return info
    m = _ANCHOR_TEXT_RE.search(description)
    if m:
        info["name"] = m.group(1).strip()
    m = _HREF_RE.search(description)
    if m:
        info["original_url"] = m.group(1)
    return info


def detect_language(url: str, title: str) -> str:
    if "hl=tr" in url or "ceid=TR" in url:
        return "tr"
    if "hl=en" in url or "ceid=US" in url:
        return "en"
    if _TURKISH_CHARS_RE.search(title or ""):
        return "tr"
    return "en"
