"""
price_relay/orchestrator.py
调度核心：抓取 -> 去重入库 -> 异常检查 -> 推送 -> 记录结果。

每日状态：Idle -> AwaitingFirstRun -> (Satisfied | RetryArmed) -> Satisfied
- 当天库里已有当天日期的记录 => Satisfied，后续调用直接返回，不再抓取
- 一轮跑完仍没有当天记录 => 启动重试循环（全局只有一个）
- 午夜 reset_daily() 清掉“今日已推送”并取消重试循环
一轮（cycle）用 asyncio.Lock 串行化，定时器只负责起任务，不直接等抓取。
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Set

import aiosqlite

from price_relay.alerts import AlertEngine
from price_relay.collector import ExtractionError
from price_relay.models import (
    AlertType,
    CycleState,
    DeliveryOutcome,
    OutcomeStatus,
    SourceDescriptor,
    SourceOutcome,
)
from price_relay.notifier import DeliveryGate
from price_relay.registry import SourceRegistry
from price_relay.storage import has_record, has_record_for_date, insert_record
from price_relay.utils import today_key

logger = logging.getLogger(__name__)

_DELIVERY_STATUS = {
    DeliveryOutcome.DELIVERED: OutcomeStatus.DELIVERED,
    DeliveryOutcome.SKIPPED: OutcomeStatus.SKIPPED,
    DeliveryOutcome.FAILED: OutcomeStatus.DELIVERY_FAILED,
}


class Phase(str, Enum):
    IDLE = "Idle"
    AWAITING_FIRST_RUN = "AwaitingFirstRun"
    RETRY_ARMED = "RetryArmed"
    SATISFIED = "Satisfied"


class Orchestrator:
    def __init__(
        self,
        db: aiosqlite.Connection,
        registry: SourceRegistry,
        extractor,
        gate: DeliveryGate,
        alerts: AlertEngine,
        *,
        retry_interval_sec: float = 300,
        today: Callable[[], int] = today_key,
    ):
        self._db = db
        self._registry = registry
        self._extractor = extractor
        self._gate = gate
        self._alerts = alerts
        self.retry_interval_sec = retry_interval_sec
        self._today = today

        self.state = CycleState()
        self.phase = Phase.IDLE
        self._lock = asyncio.Lock()
        # 由定时器拉起的 cycle 任务，持有引用防止被回收
        self._spawned: Set[asyncio.Task] = set()

    # --------- 对外入口 ---------
    async def run_daily_cycle(self) -> List[SourceOutcome]:
        """每日定时触发（调用方已确认是交易日）"""
        if self.phase == Phase.IDLE:
            self.phase = Phase.AWAITING_FIRST_RUN
        outcomes = await self.run_all_sources()
        summary = ", ".join(f"{o.name}={o.status.value}" for o in outcomes) or "已满足，跳过"
        logger.info("每日任务完成: %s | phase=%s", summary, self.phase.value)
        return outcomes

    async def run_all_sources(self) -> List[SourceOutcome]:
        """
        跑一轮全部数据源。库里已有当天记录时直接返回 []。

        注意：当天记录一旦入库，即使推送失败，当天也算已满足，
        重试循环不会再补推。DeliveryFailure 因此每天最多累计一次，
        默认阈值 3 意味着连续 3 个交易日推送失败才会告警。
        """
        async with self._lock:
            today = self._today()
            generation = self.state.day_generation
            if await has_record_for_date(self._db, today):
                if self.state.day_generation == generation:
                    self._mark_satisfied()
                return []

            outcomes: List[SourceOutcome] = []
            for desc in self._registry.cycle_sources():
                outcomes.append(await self._run_source(desc, today))

            if self.state.day_generation != generation:
                # 本轮跨过了午夜：结果属于前一天，新一天的状态保持重置后的样子
                logger.info("本轮（%s）期间已午夜重置，不再更新每日状态", today)
                self.state.delivered_today = False
            elif any(o.carries_date(today) for o in outcomes):
                self._mark_satisfied()
            else:
                logger.info("本轮没有 %s 的记录，%ss 后重试", today, self.retry_interval_sec)
                self.start_retry_loop()
            return outcomes

    def start_retry_loop(self) -> None:
        if self.state.retry_armed:
            return
        self.phase = Phase.RETRY_ARMED
        self.state.retry_task = asyncio.create_task(self._retry_loop())

    def reset_daily(self) -> None:
        logger.info("午夜重置：清除今日推送标记，取消重试循环")
        self.state.delivered_today = False
        self.state.day_generation += 1
        self._stop_retry_loop()
        self.phase = Phase.IDLE

    def spawn_cycle(self, daily: bool = False) -> Optional[asyncio.Task]:
        """在独立任务里跑一轮；已有一轮在跑时直接跳过"""
        if self._lock.locked():
            logger.info("上一轮仍在运行，本次触发跳过")
            return None
        coro = self.run_daily_cycle() if daily else self.run_all_sources()
        task = asyncio.create_task(coro)
        self._spawned.add(task)
        task.add_done_callback(self._on_cycle_done)
        return task

    async def close(self) -> None:
        self._stop_retry_loop()
        for t in list(self._spawned):
            t.cancel()
        await asyncio.gather(*self._spawned, return_exceptions=True)

    # --------- 单个数据源 ---------
    async def _run_source(self, desc: SourceDescriptor, today: int) -> SourceOutcome:
        try:
            rec = await self._extractor.extract(desc)
        except ExtractionError as e:
            await self._alerts.report_failure(self.state, AlertType.FETCH_FAILURE, str(e))
            return SourceOutcome(desc.name, OutcomeStatus.FETCH_FAILED, detail=str(e))
        except Exception as e:
            logger.exception("%s 抓取出现未预期异常", desc.name)
            await self._alerts.report_failure(self.state, AlertType.FETCH_FAILURE, f"{desc.name}: {e!r}")
            return SourceOutcome(desc.name, OutcomeStatus.FETCH_FAILED, detail=repr(e))

        if rec is None:
            detail = f"{desc.name}: 页面中未找到 {desc.match_key}"
            await self._alerts.report_failure(self.state, AlertType.FETCH_FAILURE, detail)
            return SourceOutcome(desc.name, OutcomeStatus.EMPTY, detail=detail)

        self._alerts.report_success(self.state, AlertType.FETCH_FAILURE)

        try:
            if await has_record(self._db, rec.name, rec.date):
                return SourceOutcome(desc.name, OutcomeStatus.DUPLICATE, rec, "该日期已入库")
            await insert_record(self._db, rec)
        except Exception as e:
            # 存储失败只记日志，不进告警，也不在本轮重试
            logger.error("%s 入库失败 date=%s: %r", desc.name, rec.date, e)
            return SourceOutcome(desc.name, OutcomeStatus.STORAGE_FAILED, rec, repr(e))

        if rec.is_anomalous:
            await self._alerts.report_anomaly(rec)

        if rec.date != today:
            logger.info("%s 最新日期 %s 不是今天 %s", desc.name, rec.date, today)
            return SourceOutcome(desc.name, OutcomeStatus.STALE, rec)

        outcome = await self._gate.deliver(self.state, rec)
        return SourceOutcome(desc.name, _DELIVERY_STATUS[outcome], rec)

    # --------- 重试循环 ---------
    async def _retry_loop(self) -> None:
        me = asyncio.current_task()
        try:
            while self.state.retry_task is me:
                await asyncio.sleep(self.retry_interval_sec)
                if self.state.retry_task is not me:
                    break
                task = self.spawn_cycle()
                if task is not None:
                    await asyncio.wait({task})
        except asyncio.CancelledError:
            logger.info("重试循环已取消")
            raise
        finally:
            if self.state.retry_task is me:
                self.state.retry_task = None

    def _stop_retry_loop(self) -> None:
        task = self.state.retry_task
        self.state.retry_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _mark_satisfied(self) -> None:
        if self.phase != Phase.SATISFIED:
            logger.info("今日义务已满足")
        self.phase = Phase.SATISFIED
        self._stop_retry_loop()

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        self._spawned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("cycle 异常结束: %r", task.exception())
