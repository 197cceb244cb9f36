"""
price_relay/alerts.py
失败/告警引擎：
- 抓取失败、推送失败各自维护连续失败计数，达到阈值（默认3）发一条告警并清零
- 异常数据（均价<=0 或缺失）每次都立即告警，不走阈值
- 告警先落库，再尽力推送到告警 webhook；推送失败只记日志，不再升级
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import aiosqlite

from price_relay.models import Alert, AlertType, CycleState, Record
from price_relay.storage import insert_alert
from price_relay.utils import format_day_key, now_ms

logger = logging.getLogger(__name__)

_LABELS = {
    AlertType.FETCH_FAILURE: "抓取失败",
    AlertType.DELIVERY_FAILURE: "推送失败",
    AlertType.ANOMALOUS_DATA: "数据异常",
}


def alert_payload(text: str) -> dict:
    return {"type": "text", "content": {"text": text}}


class AlertEngine:
    def __init__(self, db: aiosqlite.Connection, sender: Any, *, threshold: int = 3):
        # sender: 任意带 async send(payload) -> bool 的适配器
        self._db = db
        self._sender = sender
        self.threshold = max(1, int(threshold))

    async def report_failure(self, state: CycleState, alert_type: AlertType, detail: str) -> Optional[Alert]:
        count = state.failures.get(alert_type, 0) + 1
        state.failures[alert_type] = count
        logger.warning("%s（连续第 %d 次）: %s", _LABELS[alert_type], count, detail)
        if count < self.threshold:
            return None

        state.failures[alert_type] = 0
        msg = f"⚠️ 连续 {count} 次{_LABELS[alert_type]}，最近一次：{detail}"
        return await self._emit(alert_type, msg)

    def report_success(self, state: CycleState, alert_type: AlertType) -> None:
        if state.failures.get(alert_type):
            logger.info("%s 计数清零（之前 %d 次）", _LABELS[alert_type], state.failures[alert_type])
        state.failures[alert_type] = 0

    async def report_anomaly(self, rec: Record) -> Alert:
        msg = (
            f"⚠️ {rec.name} {format_day_key(rec.date)} 均价异常："
            f"{rec.avg_price!r}（区间 {rec.price_range or '-'}）"
        )
        return await self._emit(AlertType.ANOMALOUS_DATA, msg)

    async def _emit(self, alert_type: AlertType, message: str) -> Alert:
        alert = Alert(type=alert_type, message=message, created_at=now_ms())
        try:
            await insert_alert(self._db, alert)
        except Exception as e:
            logger.error("告警落库失败: %r", e)
        try:
            ok = await self._sender.send(alert_payload(message))
            if not ok:
                logger.error("告警推送失败: %s", message)
        except Exception as e:
            logger.error("告警推送异常: %r", e)
        return alert
