# -*- coding: utf-8 -*-
"""
通用辅助函数：时间、URL 规范化、日期解析、标题清洗、英文词形匹配。
"""

from __future__ import annotations

import html
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """统一输出 ISO-8601（UTC，毫秒精度，Z 结尾）"""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def compile_english_stem(stem: str) -> re.Pattern:
    """
    为英文词根编译正则，支持词形变化匹配：\\b词根(s|es|ed|ing)?\\b
    """
    pattern = rf"\b{re.escape(stem)}(s|es|ed|ing)?\b"
    return re.compile(pattern, re.IGNORECASE)


# -------------------- URL 规范化 --------------------

TRACKING_PARAMS = {
    # UTM
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "utm_id", "utm_cid",
    # 社交/广告点击
    "fbclid", "gclid", "gclsrc", "dclid", "msclkid", "twclid", "li_fat_id",
    # 统计
    "mc_cid", "mc_eid", "_ga", "_gl",
    "ref", "source", "referrer", "origin", "tracking_id", "campaign_id",
    "mkt_tok", "trk", "trkCampaign",
    "ncid", "ocid", "icid", "s_kwcid", "ef_id",
}


def canonicalize_url(url: Optional[str]) -> Optional[str]:
    """
    规范化链接，作为持久层的唯一去重键：
    - 统一 https、主机名小写、去掉 www.
    - 去掉默认端口、路径末尾的 /
    - 去掉统计参数，其余参数排序
    - 去掉 fragment
    解析失败时原样返回。
    """
    if not url or not isinstance(url, str):
        return url
    clean = url.strip()
    if not re.match(r"^https?://", clean, re.IGNORECASE):
        clean = "https://" + clean
    try:
        u = urlparse(clean)
        host = (u.hostname or "").lower()
        if not host:
            return url
        if host.startswith("www."):
            host = host[4:]
        port = u.port
        netloc = host if port in (None, 80, 443) else f"{host}:{port}"
        if u.username:
            auth = u.username + (f":{u.password}" if u.password else "")
            netloc = f"{auth}@{netloc}"

        path = u.path or "/"
        if len(path) > 1 and path.endswith("/"):
            path = path[:-1]

        qs = [
            (k, v)
            for (k, v) in parse_qsl(u.query, keep_blank_values=True)
            if k not in TRACKING_PARAMS
        ]
        qs.sort()
        return urlunparse(("https", netloc, path, u.params, urlencode(qs, doseq=True), ""))
    except ValueError:
        return url


# -------------------- 日期解析 --------------------

_GDELT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T?(\d{2})(\d{2})(\d{2})Z?$")
_DMY_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?")
_YMD_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$")


def _from_epoch(num: float) -> datetime:
    # 小于 1e12 视为秒，否则毫秒
    seconds = num if num < 1e12 else num / 1000.0
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def safe_date_parse(
    value: Union[str, int, float, datetime, None],
    fallback: Optional[datetime] = None,
) -> datetime:
    """
    多格式日期解析，失败返回 fallback（默认当前时间）。
    支持：GDELT 紧凑格式、DD.MM.YYYY[ HH:MM[:SS]]、YYYY-MM-DD[ HH:MM[:SS]]、
    unix 秒/毫秒、ISO-8601、RFC-2822。无时区的一律按 UTC。
    """
    fb = fallback or utcnow()
    if value is None:
        return fb
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, (int, float)):
        try:
            return _from_epoch(float(value))
        except (OverflowError, OSError, ValueError):
            return fb

    s = str(value).strip()
    if not s:
        return fb

    m = _GDELT_RE.match(s)
    if m:
        try:
            return datetime(*map(int, m.groups()), tzinfo=timezone.utc)
        except ValueError:
            pass

    if s.isdigit():
        try:
            return _from_epoch(float(s))
        except (OverflowError, OSError, ValueError):
            return fb

    try:
        return _as_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
    except ValueError:
        pass

    m = _DMY_RE.search(s)
    if m:
        day, month, year, hh, mm, ss = m.groups()
        try:
            return datetime(int(year), int(month), int(day),
                            int(hh or 0), int(mm or 0), int(ss or 0), tzinfo=timezone.utc)
        except ValueError:
            pass

    m = _YMD_RE.match(s)
    if m:
        year, month, day, hh, mm, ss = m.groups()
        try:
            return datetime(int(year), int(month), int(day),
                            int(hh or 0), int(mm or 0), int(ss or 0), tzinfo=timezone.utc)
        except ValueError:
            pass

    try:
        return _as_utc(parsedate_to_datetime(s))
    except (TypeError, ValueError, IndexError):
        pass

    return fb


# -------------------- 文本清洗 --------------------

_TAG_RE = re.compile(r"<[^>]+>")


def clean_title(text: Optional[str]) -> str:
    """去 HTML 标签、解码实体、合并空白"""
    if not text:
        return ""
    s = html.unescape(str(text))
    s = _TAG_RE.sub("", s)
    s = s.replace("\xa0", " ")
    return re.sub(r"\s+", " ", s).strip()


def truncate_summary(text: Optional[str], max_length: int = 2000) -> Optional[str]:
    """按词边界截断摘要"""
    if not text:
        return None
    cleaned = clean_title(text)
    if len(cleaned) <= max_length:
        return cleaned
    cut = cleaned[:max_length]
    last_space = cut.rfind(" ")
    if last_space > max_length * 0.8:
        return cut[:last_space] + "..."
    return cut + "..."
