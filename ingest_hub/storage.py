# -*- coding: utf-8 -*-
"""
ingest_hub/storage.py
SQLite（aiosqlite）持久化边界：
- 初始化/建表
- 按规范化 URL 查已存在
- 幂等写入（INSERT OR IGNORE，url 唯一键是最终去重兜底）
- 游标读写（upsert）
- 标签/股票代码关联
- 启动时给去重缓存回灌近期条目
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import aiosqlite

from .errors import PersistenceError
from .models import NormalizedItem, SourceType
from .utils import safe_date_parse, to_iso, utcnow

# --------- 建表 SQL ---------
SCHEMA = """
CREATE TABLE IF NOT EXISTS news_items (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    source        TEXT NOT NULL,
    source_id     TEXT,
    title         TEXT NOT NULL,
    url           TEXT NOT NULL UNIQUE,
    published_at  TEXT NOT NULL,
    language      TEXT,
    summary       TEXT,
    raw           TEXT,
    discovered_at TEXT,
    created_at    TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS ingestion_cursors (
    source     TEXT NOT NULL,
    key        TEXT NOT NULL,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (source, key)
);
CREATE TABLE IF NOT EXISTS tags (
    id   INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS news_item_tags (
    news_item_id INTEGER NOT NULL,
    tag_id       INTEGER NOT NULL,
    PRIMARY KEY (news_item_id, tag_id)
);
CREATE TABLE IF NOT EXISTS tickers (
    id     INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol TEXT NOT NULL UNIQUE,
    name   TEXT
);
CREATE TABLE IF NOT EXISTS news_item_tickers (
    news_item_id INTEGER NOT NULL,
    ticker_id    INTEGER NOT NULL,
    confidence   REAL DEFAULT 1.0,
    PRIMARY KEY (news_item_id, ticker_id)
)
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_news_source_created ON news_items(source, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_news_published      ON news_items(published_at DESC);
CREATE INDEX IF NOT EXISTS idx_news_source_id      ON news_items(source, source_id)
"""


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """初始化数据库并返回连接；":memory:" 用于测试。"""
    if str(db_path) != ":memory:":
        p = Path(db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        db_path = str(p)
    db = await aiosqlite.connect(str(db_path))
    # 性能相关 pragma
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    for block in (SCHEMA, SCHEMA_IDX):
        for stmt in filter(None, block.split(";")):
            s = stmt.strip()
            if s:
                await db.execute(s + ";")
    await db.commit()
    return db


def _chunks(seq: List[str], size: int = 500) -> Iterable[List[str]]:
    for i in range(0, len(seq), size):
        yield seq[i:i + size]


class NewsStore:
    """持久化能力的薄封装；所有 sqlite 错误统一转成 PersistenceError。"""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    @classmethod
    async def open(cls, db_path: Union[str, Path]) -> "NewsStore":
        return cls(await init_db(db_path))

    async def close(self) -> None:
        await self.db.close()

    # ---------- 去重 ----------
    async def find_existing_by_canonical_urls(self, urls: Iterable[str]) -> Set[str]:
        wanted = [u for u in dict.fromkeys(urls) if u]
        found: Set[str] = set()
        try:
            for chunk in _chunks(wanted):
                marks = ",".join("?" * len(chunk))
                async with self.db.execute(
                    f"SELECT url FROM news_items WHERE url IN ({marks});", chunk
                ) as cur:
                    async for row in cur:
                        found.add(row[0])
        except sqlite3.Error as e:
            raise PersistenceError(f"find_existing failed: {e}") from e
        return found

    async def insert_ignoring_duplicates(self, items: List[NormalizedItem]) -> int:
        """幂等写入，返回真正插入的条数（url 冲突的静默跳过）"""
        if not items:
            return 0
        now = to_iso(utcnow())
        rows = [
            (
                item.source.value,
                item.source_id,
                item.title,
                item.url,
                to_iso(item.published_at),
                item.language,
                item.summary,
                json.dumps(item.raw, ensure_ascii=False, default=str),
                to_iso(item.discovered_at or utcnow()),
                now,
            )
            for item in items
        ]
        sql = """
        INSERT OR IGNORE INTO news_items(
            source, source_id, title, url, published_at, language,
            summary, raw, discovered_at, created_at
        ) VALUES(?,?,?,?,?,?,?,?,?,?)
        """
        try:
            before = self.db.total_changes
            await self.db.executemany(sql, rows)
            await self.db.commit()
            return self.db.total_changes - before
        except sqlite3.Error as e:
            raise PersistenceError(f"insert failed: {e}") from e

    async def get_item_id_by_url(self, url: str) -> Optional[int]:
        try:
            async with self.db.execute("SELECT id FROM news_items WHERE url=?;", (url,)) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"get_item_id failed: {e}") from e
        return row[0] if row else None

    async def count_items(self, source: Optional[SourceType] = None) -> int:
        if source is None:
            sql, args = "SELECT COUNT(*) FROM news_items;", ()
        else:
            sql, args = "SELECT COUNT(*) FROM news_items WHERE source=?;", (source.value,)
        async with self.db.execute(sql, args) as cur:
            row = await cur.fetchone()
        return int(row[0])

    async def recent_items(
        self,
        source: SourceType,
        *,
        since: Optional[datetime] = None,
        limit: int = 5000,
    ) -> List[Dict[str, Any]]:
        """给去重缓存回灌用：默认回溯 24 小时"""
        if since is None:
            since = utcnow() - timedelta(hours=24)
        sql = """
        SELECT source_id, url, published_at FROM news_items
         WHERE source = ? AND created_at >= ?
         ORDER BY created_at DESC
         LIMIT ?;
        """
        out: List[Dict[str, Any]] = []
        try:
            async with self.db.execute(sql, (source.value, to_iso(since), int(limit))) as cur:
                async for row in cur:
                    out.append({
                        "source_id": row[0] or row[1],
                        "url": row[1],
                        "published_at": safe_date_parse(row[2]),
                    })
        except sqlite3.Error as e:
            raise PersistenceError(f"recent_items failed: {e}") from e
        return out

    # ---------- 游标 ----------
    async def get_cursor(self, source: SourceType, key: str) -> Optional[str]:
        try:
            async with self.db.execute(
                "SELECT value FROM ingestion_cursors WHERE source=? AND key=?;",
                (source.value, key),
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"get_cursor failed: {e}") from e
        return row[0] if row else None

    async def set_cursor(self, source: SourceType, key: str, value: str) -> None:
        sql = """
        INSERT INTO ingestion_cursors(source, key, value, updated_at) VALUES(?,?,?,?)
        ON CONFLICT(source, key) DO UPDATE SET
            value      = excluded.value,
            updated_at = excluded.updated_at
        """
        try:
            await self.db.execute(sql, (source.value, key, value, to_iso(utcnow())))
            await self.db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"set_cursor failed: {e}") from e

    # ---------- 标签 / 股票代码 ----------
    async def find_or_create_tag(self, name: str) -> int:
        try:
            await self.db.execute("INSERT OR IGNORE INTO tags(name) VALUES(?);", (name,))
            async with self.db.execute("SELECT id FROM tags WHERE name=?;", (name,)) as cur:
                row = await cur.fetchone()
            await self.db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"find_or_create_tag failed: {e}") from e
        return int(row[0])

    async def link_tag(self, item_id: int, tag_id: int) -> None:
        try:
            await self.db.execute(
                "INSERT OR IGNORE INTO news_item_tags(news_item_id, tag_id) VALUES(?,?);",
                (item_id, tag_id),
            )
            await self.db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"link_tag failed: {e}") from e

    async def add_ticker(self, symbol: str, name: Optional[str] = None) -> int:
        try:
            await self.db.execute(
                "INSERT OR IGNORE INTO tickers(symbol, name) VALUES(?,?);", (symbol, name)
            )
            await self.db.commit()
            async with self.db.execute("SELECT id FROM tickers WHERE symbol=?;", (symbol,)) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"add_ticker failed: {e}") from e
        return int(row[0])

    async def link_if_ticker_exists(self, item_id: int, symbol: str, confidence: float = 1.0) -> bool:
        """只关联已登记的股票代码；不存在就跳过"""
        try:
            async with self.db.execute("SELECT id FROM tickers WHERE symbol=?;", (symbol,)) as cur:
                row = await cur.fetchone()
            if row is None:
                return False
            await self.db.execute(
                "INSERT OR IGNORE INTO news_item_tickers(news_item_id, ticker_id, confidence) VALUES(?,?,?);",
                (item_id, row[0], float(confidence)),
            )
            await self.db.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"link_ticker failed: {e}") from e
        return True

    async def tags_for_item(self, item_id: int) -> List[str]:
        sql = """
        SELECT t.name FROM tags t
          JOIN news_item_tags nt ON nt.tag_id = t.id
         WHERE nt.news_item_id = ?
         ORDER BY t.name;
        """
        async with self.db.execute(sql, (item_id,)) as cur:
            return [row[0] async for row in cur]

    async def tickers_for_item(self, item_id: int) -> List[str]:
        sql = """
        SELECT k.symbol FROM tickers k
          JOIN news_item_tickers nk ON nk.ticker_id = k.id
         WHERE nk.news_item_id = ?
         ORDER BY k.symbol;
        """
        async with self.db.execute(sql, (item_id,)) as cur:
            return [row[0] async for row in cur]
