"""
price_relay/collector.py
抓取适配器：给定 SourceDescriptor，返回 Record / None（页面可达但没有目标行），
或者抛 ExtractionError（网络、状态码、解析问题）。
超时只在这里配置，调度层不管。
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional

import httpx

from price_relay.models import Record, SourceDescriptor
from price_relay.parsers.dummy_gen import generate_table
from price_relay.parsers.html_table import RowFormatError, parse_price_table

logger = logging.getLogger(__name__)

DUMMY_SCHEME = "dummy://"


class ExtractionError(Exception):
    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class HtmlTableExtractor:
    def __init__(
        self,
        *,
        timeout_sec: float = 15.0,
        user_agent: str = "price-relay/1.0",
        client: Optional[httpx.AsyncClient] = None,
        today: Callable[[], date] = date.today,
    ):
        self._timeout = timeout_sec
        self._user_agent = user_agent
        self._client = client
        self._owns_client = client is None
        self._today = today

    def _client_get(self) -> httpx.AsyncClient:
        # 复用连接池，读取系统代理
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
                trust_env=True,
            )
        return self._client

    async def _fetch(self, desc: SourceDescriptor) -> str:
        if desc.location.startswith(DUMMY_SCHEME):
            return generate_table(desc.match_key, today=self._today())
        try:
            r = await self._client_get().get(desc.location)
        except httpx.HTTPError as e:
            raise ExtractionError(desc.name, f"请求失败 {e!r}") from e
        if r.status_code != 200:
            raise ExtractionError(desc.name, f"响应失败 status={r.status_code}")
        return r.text

    async def extract(self, desc: SourceDescriptor) -> Optional[Record]:
        html = await self._fetch(desc)
        try:
            rec = parse_price_table(html, desc.match_key, today=self._today())
        except RowFormatError as e:
            raise ExtractionError(desc.name, str(e)) from e
        if rec is None:
            logger.info("%s 页面中未找到 %s", desc.name, desc.match_key)
        return rec

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
