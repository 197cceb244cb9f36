# -*- coding: utf-8 -*-
"""
测试公用：假抓取器、假推送器、组装 Orchestrator。
异步代码在各测试里用 asyncio.run 驱动。
"""

from __future__ import annotations

import dataclasses
from typing import Dict, List, Optional

from price_relay.alerts import AlertEngine
from price_relay.models import Record, SourceDescriptor
from price_relay.notifier import DeliveryGate
from price_relay.orchestrator import Orchestrator
from price_relay.registry import SourceRegistry
from price_relay.storage import init_db

# 2026-10-16 周五
TODAY = 20261016
YESTERDAY = 20261015


def make_record(name: str = "A00铝", date: int = TODAY, avg_price: Optional[float] = 20310.0) -> Record:
    return Record(
        name=name,
        price_range="20290-20330",
        avg_price=avg_price,
        change=100.0,
        unit="元/吨",
        date=date,
    )


class FakeExtractor:
    """
    按数据源名返回预设结果；列表逐个弹出，只剩最后一个时重复返回。
    结果可以是 Record / None / Exception 实例（会被抛出）。
    """

    def __init__(self, script: Dict[str, list]):
        self._script = {k: list(v) for k, v in script.items()}
        self.calls: List[str] = []

    async def extract(self, desc: SourceDescriptor):
        self.calls.append(desc.name)
        items = self._script[desc.name]
        item = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(item, Exception):
            raise item
        return dataclasses.replace(item) if item is not None else None

    async def close(self):
        return


class FakeSender:
    def __init__(self, ok=True):
        # ok 可以是 bool，也可以是逐次返回值的列表；Exception 实例会被抛出
        self._ok = list(ok) if isinstance(ok, list) else [ok]
        self.payloads: List[dict] = []

    async def send(self, payload: dict) -> bool:
        self.payloads.append(payload)
        res = self._ok.pop(0) if len(self._ok) > 1 else self._ok[0]
        if isinstance(res, Exception):
            raise res
        return res

    async def close(self):
        return


class Harness:
    def __init__(self, db, orch, extractor, sender, alert_sender):
        self.db = db
        self.orch = orch
        self.extractor = extractor
        self.sender = sender
        self.alert_sender = alert_sender

    async def close(self):
        await self.orch.close()
        await self.db.close()


async def make_harness(
    tmp_path,
    script: Dict[str, list],
    *,
    sources: Optional[List[SourceDescriptor]] = None,
    sender_ok=True,
    threshold: int = 3,
    retry_interval_sec: float = 300,
    today: int = TODAY,
) -> Harness:
    db = await init_db(tmp_path / "test.db")
    registry = SourceRegistry(sources or [])
    extractor = FakeExtractor(script)
    sender = FakeSender(sender_ok)
    alert_sender = FakeSender(True)
    alerts = AlertEngine(db, alert_sender, threshold=threshold)
    gate = DeliveryGate(sender, alerts)
    orch = Orchestrator(
        db, registry, extractor, gate, alerts,
        retry_interval_sec=retry_interval_sec,
        today=lambda: today,
    )
    return Harness(db, orch, extractor, sender, alert_sender)
