# -*- coding: utf-8 -*-
"""
标题 -> 股票代码 / 主题标签 的轻量关键词匹配。
真正的抽取规则在外部维护，这里只按配置里的别名表与关键词表做匹配。
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from .utils import compile_english_stem

_CASHTAG_RE = re.compile(r"\$([A-Z]{1,5})\b")


class Tagger:
    def __init__(
        self,
        aliases: Optional[Dict[str, str]] = None,
        keywords: Optional[Dict[str, List[str]]] = None,
    ):
        # aliases: {"tesla": "TSLA", "bitcoin": "BTC"}
        # keywords: {"crypto": ["bitcoin", "crypto"], "rates": ["rate hike", "fed"]}
        self.alias_patterns = [
            (re.compile(rf"\b{re.escape(alias)}\b", re.IGNORECASE), symbol.upper())
            for alias, symbol in (aliases or {}).items()
        ]
        self.keyword_patterns = {
            tag: [compile_english_stem(w) for w in words]
            for tag, words in (keywords or {}).items()
        }

    @classmethod
    def from_cfg(cls, cfg: Dict) -> "Tagger":
        return cls(aliases=cfg.get("aliases") or {}, keywords=cfg.get("keywords") or {})

    def extract_tickers(self, text: str) -> List[str]:
        if not text:
            return []
        found = list(_CASHTAG_RE.findall(text))
        for pattern, symbol in self.alias_patterns:
            if pattern.search(text):
                found.append(symbol)
        return list(dict.fromkeys(found))

    def extract_tags(self, text: str) -> List[str]:
        if not text:
            return []
        return [
            tag for tag, patterns in self.keyword_patterns.items()
            if any(p.search(text) for p in patterns)
        ]
