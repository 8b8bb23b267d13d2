# -*- coding: utf-8 -*-
"""
KAP 公告响应解析：接口形状没有公开文档，只能按已知字段名逐个尝试。
取数组的顺序：裸数组 -> data / bildirimler / disclosures / items
-> 第一个“非空且首元素是对象”的数组 -> HTML 表格正则兜底。
这个顺序不能随意调整，否则嵌套响应可能选错数组。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

from ..errors import ParseError
from ..utils import safe_date_parse

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Disclosure"

ARRAY_KEYS = ("data", "bildirimler", "disclosures", "items")

ID_KEYS = ("disclosureId", "id", "bildirrimId", "url", "link")
TITLE_KEYS = ("title", "baslik", "disclosureTitle", "summary", "ozet")
URL_KEYS = ("url", "link", "pdfUrl")
DATE_KEYS = ("publishDate", "yayinTarihi", "disclosureDate")


@dataclass
class KapItem:
    source_id: str
    title: str
    url: str
    published_at: datetime
    stock_code: Optional[str] = None
    company_name: Optional[str] = None
    disclosure_type: Optional[str] = None
    summary: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _first(d: Dict[str, Any], keys) -> Any:
    for k in keys:
        v = d.get(k)
        if v:
            return v
    return None


def _absolute(url: str, base_url: str) -> str:
    if url and not url.startswith("http"):
        return urljoin(base_url.rstrip("/") + "/", url)
    return url


# -------------------- JSON --------------------

def extract_disclosures_array(obj: Dict[str, Any]) -> List[Any]:
    for key in ARRAY_KEYS:
        value = obj.get(key)
        if isinstance(value, list):
            return value
    # 未知键：取第一个非空且首元素是对象的数组
    for value in obj.values():
        if isinstance(value, list) and value and isinstance(value[0], dict):
            return value
    return []


def parse_disclosure(d: Any, base_url: str) -> Optional[KapItem]:
    if not isinstance(d, dict) or not d:
        return None
    raw_id = _first(d, ID_KEYS)
    source_id = str(raw_id) if raw_id else ""
    if not source_id:
        return None

    title = str(_first(d, TITLE_KEYS) or UNTITLED).strip()

    url = _absolute(str(_first(d, URL_KEYS) or ""), base_url)
    if not url:
        url = f"{base_url.rstrip('/')}/bildirim/{source_id}"

    return KapItem(
        source_id=source_id,
        title=title,
        url=url,
        published_at=safe_date_parse(_first(d, DATE_KEYS)),
        stock_code=d.get("stockCode") or d.get("hisseKodu"),
        company_name=d.get("companyName") or d.get("sirketAdi"),
        disclosure_type=d.get("disclosureType") or d.get("bildirimTipi"),
        summary=d.get("summary") or d.get("ozet") or d.get("content"),
        raw=dict(d),
    )


def parse_json_response(obj: Union[Dict[str, Any], List[Any]], base_url: str) -> List[KapItem]:
    rows = obj if isinstance(obj, list) else extract_disclosures_array(obj) if isinstance(obj, dict) else []
    items = []
    for d in rows:
        parsed = parse_disclosure(d, base_url)
        if parsed:
            items.append(parsed)
    return items


# -------------------- HTML 兜底 --------------------

_ROW_RE = re.compile(r"<tr[^>]*>([\s\S]*?)</tr>", re.I)
_CELL_RE = re.compile(r"<td[^>]*>([\s\S]*?)</td>", re.I)
_LINK_RE = re.compile(r"""<a[^>]*href=["']([^"']+)["'][^>]*>([\s\S]*?)</a>""", re.I)
_DATE_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})(?:\s+(\d{1,2}):(\d{2}))?")
_TAG_RE = re.compile(r"<[^>]+>")


def parse_html_response(html: str, base_url: str) -> List[KapItem]:
    """只做表格行的正则抽取，不做 DOM 解析"""
    items: List[KapItem] = []
    index = 0
    for row in _ROW_RE.finditer(html):
        content = row.group(1)
        cells = [re.sub(r"\s+", " ", _TAG_RE.sub(" ", c)).strip() for c in _CELL_RE.findall(content)]
        # 表头或空行
        if len(cells) < 2:
            continue

        url, title = "", ""
        m = _LINK_RE.search(content)
        if m:
            url = _absolute(m.group(1), base_url)
            title = _TAG_RE.sub("", m.group(2)).strip()

        published_at = None
        for cell in cells:
            if _DATE_RE.search(cell):
                published_at = safe_date_parse(cell)
                break

        if not title and cells[0]:
            title = cells[0]

        if title or url:
            items.append(KapItem(
                source_id=url or f"html-row-{index}",
                title=title or "Untitled",
                url=url or f"{base_url}#row-{index}",
                published_at=published_at or safe_date_parse(None),
                raw={"cells": cells, "row_html": content},
            ))
        index += 1
    return items


# -------------------- 入口 --------------------

def parse_kap_response(
    payload: Union[str, Dict[str, Any], List[Any]],
    base_url: str,
    response_type: str = "auto",
) -> List[KapItem]:
    """
    response_type:
      json  必须是 JSON，不合法抛 ParseError
      html  直接走表格兜底
      auto  以 { 或 [ 开头试 JSON；含 <html 或 <table 走 HTML；否则空
    """
    if isinstance(payload, (dict, list)):
        return parse_json_response(payload, base_url)

    text = str(payload or "").strip()
    if response_type == "json":
        try:
            return parse_json_response(json.loads(text), base_url)
        except ValueError as e:
            raise ParseError("Invalid JSON response from KAP") from e
    if response_type == "html":
        return parse_html_response(text, base_url)

    if text.startswith("{") or text.startswith("["):
        try:
            return parse_json_response(json.loads(text), base_url)
        except ValueError:
            pass
    if "<html" in text or "<table" in text:
        return parse_html_response(text, base_url)
    logger.warning("[kap] 无法识别的响应格式，长度=%d", len(text))
    return []


def is_valid_kap_item(item: KapItem) -> bool:
    return bool(item.source_id and item.title and item.title != UNTITLED and item.url)
