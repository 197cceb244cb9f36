# -*- coding: utf-8 -*-
"""
models.py
数据模型：数据源描述、价格记录、告警、单源结果、周期状态。
字段名与 storage.py 的表结构一一对应。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


@dataclass(frozen=True)
class SourceDescriptor:
    # 唯一名称，如 "A00铝"
    name: str
    # 页面地址（http(s):// 或 dummy://）
    location: str
    # 表格首列包含该文本即视为命中
    match_key: str


@dataclass
class Record:
    name: str
    price_range: str
    avg_price: Optional[float]   # <=0 或 None 视为异常数据
    change: Optional[float]
    unit: str
    # 日期键 YYYYMMDD
    date: int
    # 入库时间（UTC毫秒）
    created_at: int = 0

    @property
    def is_anomalous(self) -> bool:
        return self.avg_price is None or self.avg_price <= 0


class AlertType(str, Enum):
    FETCH_FAILURE = "FetchFailure"
    ANOMALOUS_DATA = "AnomalousData"
    DELIVERY_FAILURE = "DeliveryFailure"


@dataclass
class Alert:
    type: AlertType
    message: str
    created_at: int


class DeliveryOutcome(str, Enum):
    DELIVERED = "Delivered"
    SKIPPED = "Skipped"
    FAILED = "Failed"


class OutcomeStatus(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    DELIVERY_FAILED = "delivery_failed"
    STALE = "stale"              # 已入库，但日期不是今天
    DUPLICATE = "duplicate"      # (name, date) 已存在，未写入
    EMPTY = "empty"
    FETCH_FAILED = "fetch_failed"
    STORAGE_FAILED = "storage_failed"


# 这些状态代表记录已写入
PERSISTED_STATUSES = frozenset({
    OutcomeStatus.DELIVERED,
    OutcomeStatus.SKIPPED,
    OutcomeStatus.DELIVERY_FAILED,
    OutcomeStatus.STALE,
})


@dataclass
class SourceOutcome:
    name: str
    status: OutcomeStatus
    record: Optional[Record] = None
    detail: str = ""

    def carries_date(self, day: int) -> bool:
        return (
            self.status in PERSISTED_STATUSES
            and self.record is not None
            and self.record.date == day
        )


def _zero_counters() -> Dict[AlertType, int]:
    return {AlertType.FETCH_FAILURE: 0, AlertType.DELIVERY_FAILURE: 0}


@dataclass
class CycleState:
    """Orchestrator 独占的进程内可变状态；交给 DeliveryGate / AlertEngine 读写。"""
    delivered_today: bool = False
    # 每次午夜重置 +1；跨午夜的一轮据此放弃改动状态
    day_generation: int = 0
    failures: Dict[AlertType, int] = field(default_factory=_zero_counters)
    retry_task: Optional["asyncio.Task"] = None

    @property
    def retry_armed(self) -> bool:
        return self.retry_task is not None and not self.retry_task.done()
