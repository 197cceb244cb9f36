# -*- coding: utf-8 -*-
"""
price_relay/storage.py
SQLite（aiosqlite）持久化：
- 初始化/建表
- 价格记录写入（只追加，不更新不删除）
- 按日期 / (名称, 日期) 的存在性判断（每日去重）
- 告警写入
- 只读查询：最新记录、按日期/名称区间查记录、按时间区间查告警
字段对齐 price_relay.models.Record / Alert。
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, List, Optional, Union

import aiosqlite

from price_relay.models import Alert, AlertType, Record
from price_relay.utils import now_ms


# --------- 建表 SQL ---------
SCHEMA_RECORDS = """
CREATE TABLE IF NOT EXISTS records (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT NOT NULL,
    price_range  TEXT,
    avg_price    REAL,
    change       REAL,
    unit         TEXT,
    date         INTEGER NOT NULL,
    created_at   INTEGER NOT NULL
);
"""

SCHEMA_ALERTS = """
CREATE TABLE IF NOT EXISTS alerts (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    type        TEXT NOT NULL,
    message     TEXT NOT NULL,
    created_at  INTEGER NOT NULL
);
"""

SCHEMA_IDX = """
CREATE INDEX IF NOT EXISTS idx_records_date      ON records(date DESC);
CREATE INDEX IF NOT EXISTS idx_records_name_date ON records(name, date);
CREATE INDEX IF NOT EXISTS idx_alerts_created    ON alerts(created_at DESC);
"""

_RECORD_COLS = "name, price_range, avg_price, change, unit, date, created_at"


# --------- 初始化 ---------
async def init_db(db_path: Union[str, Path]) -> aiosqlite.Connection:
    """初始化数据库并返回连接。"""
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(p))
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(SCHEMA_RECORDS)
    await db.execute(SCHEMA_ALERTS)
    for stmt in SCHEMA_IDX.split(";"):
        s = stmt.strip()
        if s:
            await db.execute(s + ";")
    await db.commit()
    return db


def _row_to_record(row: Any) -> Record:
    return Record(
        name=row[0],
        price_range=row[1] or "",
        avg_price=row[2],
        change=row[3],
        unit=row[4] or "",
        date=int(row[5]),
        created_at=int(row[6]),
    )


# --------- 记录写入（纯插入） ---------
async def insert_record(db: aiosqlite.Connection, rec: Record) -> int:
    """
    追加一条记录，返回自增 id。
    created_at 为 0 时补当前时间（会回写到 rec 上）。
    失败直接抛出，由调用方决定如何记录。
    """
    if not rec.name:
        raise ValueError("insert_record: missing name")
    if rec.created_at <= 0:
        rec.created_at = now_ms()

    sql = f"INSERT INTO records({_RECORD_COLS}) VALUES(?,?,?,?,?,?,?);"
    cur = await db.execute(sql, (
        rec.name, rec.price_range, rec.avg_price, rec.change,
        rec.unit, int(rec.date), int(rec.created_at),
    ))
    await db.commit()
    return int(cur.lastrowid)


# --------- 存在性判断（每日义务 / 去重） ---------
async def has_record_for_date(db: aiosqlite.Connection, date: int) -> bool:
    async with db.execute("SELECT 1 FROM records WHERE date = ? LIMIT 1;", (int(date),)) as cur:
        row = await cur.fetchone()
    return row is not None


async def has_record(db: aiosqlite.Connection, name: str, date: int) -> bool:
    sql = "SELECT 1 FROM records WHERE name = ? AND date = ? LIMIT 1;"
    async with db.execute(sql, (name, int(date))) as cur:
        row = await cur.fetchone()
    return row is not None


# --------- 只读查询（给 CLI / 看板用） ---------
async def latest_record(db: aiosqlite.Connection) -> Optional[Record]:
    sql = f"SELECT {_RECORD_COLS} FROM records ORDER BY date DESC, id DESC LIMIT 1;"
    async with db.execute(sql) as cur:
        row = await cur.fetchone()
    return _row_to_record(row) if row else None


async def query_records(
    db: aiosqlite.Connection,
    *,
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
    name: Optional[str] = None,
    limit: int = 100,
) -> List[Record]:
    """按日期闭区间 / 名称筛选，日期倒序。"""
    where, args = [], []
    if date_from is not None:
        where.append("date >= ?")
        args.append(int(date_from))
    if date_to is not None:
        where.append("date <= ?")
        args.append(int(date_to))
    if name:
        where.append("name = ?")
        args.append(name)
    sql = f"SELECT {_RECORD_COLS} FROM records"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY date DESC, id DESC LIMIT ?;"
    args.append(int(limit))

    out: List[Record] = []
    async with db.execute(sql, args) as cur:
        async for row in cur:
            out.append(_row_to_record(row))
    return out


# --------- 告警 ---------
async def insert_alert(db: aiosqlite.Connection, alert: Alert) -> int:
    cur = await db.execute(
        "INSERT INTO alerts(type, message, created_at) VALUES(?,?,?);",
        (AlertType(alert.type).value, alert.message, int(alert.created_at)),
    )
    await db.commit()
    return int(cur.lastrowid)


async def query_alerts(
    db: aiosqlite.Connection,
    *,
    since_ms: Optional[int] = None,
    until_ms: Optional[int] = None,
    alert_type: Optional[AlertType] = None,
    limit: int = 100,
) -> List[Alert]:
    """默认回溯7天，时间倒序。"""
    if since_ms is None:
        since_ms = now_ms() - 7 * 24 * 3600 * 1000
    where, args = ["created_at >= ?"], [int(since_ms)]
    if until_ms is not None:
        where.append("created_at <= ?")
        args.append(int(until_ms))
    if alert_type is not None:
        where.append("type = ?")
        args.append(AlertType(alert_type).value)
    sql = (
        "SELECT type, message, created_at FROM alerts WHERE "
        + " AND ".join(where)
        + " ORDER BY created_at DESC, id DESC LIMIT ?;"
    )
    args.append(int(limit))

    out: List[Alert] = []
    async with db.execute(sql, args) as cur:
        async for row in cur:
            out.append(Alert(type=AlertType(row[0]), message=row[1], created_at=int(row[2])))
    return out
