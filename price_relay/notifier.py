"""
price_relay/notifier.py
推送模块：
- webhook 适配器：带 Bearer 鉴权的 JSON POST，2xx 即成功，只发一次不重试
- stdout 适配器：没配 URL 时自动降级，打印后视为成功
- DeliveryGate：保证每个自然日最多成功推送一次
"""

from __future__ import annotations

import json
import logging
from typing import Optional

import httpx

from price_relay.alerts import AlertEngine
from price_relay.models import AlertType, CycleState, DeliveryOutcome, Record
from price_relay.utils import format_day_key

logger = logging.getLogger(__name__)


def record_payload(rec: Record) -> dict:
    """推送给下游的字段（保持下游已有的 camelCase 约定）"""
    return {
        "name": rec.name,
        "priceRange": rec.price_range,
        "avgPrice": rec.avg_price,
        "change": rec.change,
        "unit": rec.unit,
        "date": format_day_key(rec.date),
    }


# ------------------------------------------------------------
# 渠道适配器
# ------------------------------------------------------------

class _WebhookAdapter:
    def __init__(
        self,
        url: str,
        token: str = "",
        *,
        timeout_sec: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._token = token
        self._timeout = timeout_sec
        self._client = client
        self._owns_client = client is None

    def _client_get(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(self._timeout, connect=5.0)
            self._client = httpx.AsyncClient(timeout=timeout, trust_env=True)
        return self._client

    async def send(self, payload: dict) -> bool:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            r = await self._client_get().post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("webhook 请求失败: %r", e)
            return False
        if 200 <= r.status_code < 300:
            return True
        # 只记头 300 字符
        logger.error("webhook 响应失败 http %s: %s", r.status_code, (r.text or "")[:300])
        return False

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class _StdoutAdapter:
    def __init__(self, label: str = "stdout"):
        self._label = label

    async def send(self, payload: dict) -> bool:
        print(f"\n[{self._label}] " + json.dumps(payload, ensure_ascii=False) + "\n")
        return True

    async def close(self) -> None:
        return


def build_adapter(url: str, token: str = "", *, timeout_sec: float = 10.0, label: str = "stdout"):
    """有 URL 走 webhook，否则降级为 stdout"""
    if url:
        return _WebhookAdapter(url, token, timeout_sec=timeout_sec)
    logger.warning("%s 未配置 webhook URL，自动降级为 stdout", label)
    return _StdoutAdapter(label)


# ------------------------------------------------------------
# 每日推送闸门
# ------------------------------------------------------------

class DeliveryGate:
    def __init__(self, sender, alerts: AlertEngine):
        self._sender = sender
        self._alerts = alerts

    async def deliver(self, state: CycleState, rec: Record) -> DeliveryOutcome:
        if state.delivered_today:
            logger.info("今日已推送，跳过 %s %s", rec.name, rec.date)
            return DeliveryOutcome.SKIPPED

        try:
            ok = await self._sender.send(record_payload(rec))
            detail = "下游未返回 2xx"
        except Exception as e:
            ok = False
            detail = repr(e)

        if ok:
            state.delivered_today = True
            self._alerts.report_success(state, AlertType.DELIVERY_FAILURE)
            logger.info("推送成功 %s %s avg=%s", rec.name, rec.date, rec.avg_price)
            return DeliveryOutcome.DELIVERED

        await self._alerts.report_failure(
            state, AlertType.DELIVERY_FAILURE, f"{rec.name} {format_day_key(rec.date)}: {detail}"
        )
        return DeliveryOutcome.FAILED

    async def close(self) -> None:
        await self._sender.close()
